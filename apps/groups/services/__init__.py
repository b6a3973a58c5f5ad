"""
Groups app services layer.

Services contain business logic and orchestrate operations across models.
All state-changing operations use transactions and concurrency protection.
"""

from .exceptions import (
    GroupsServiceError,
    GroupNotFoundError,
    UserNotFoundError,
    InvalidInviteCodeError,
    AlreadyMemberError,
    NotMemberError,
    OwnerCannotLeaveError,
    CannotChangeOwnerRoleError,
    CannotRemoveOwnerError,
    UnsettledBalanceError,
    CurrencyLockedError,
    InsufficientPermissionsError,
)

from .group_management import (
    create_group,
    update_group,
    delete_group,
    get_group_by_id,
)

from .membership_management import (
    join_group,
    add_member,
    leave_group,
    remove_member,
    get_group_members,
)

from .role_management import (
    update_member_role,
    set_can_add_expenses,
)


__all__ = [
    # Exceptions
    'GroupsServiceError',
    'GroupNotFoundError',
    'UserNotFoundError',
    'InvalidInviteCodeError',
    'AlreadyMemberError',
    'NotMemberError',
    'OwnerCannotLeaveError',
    'CannotChangeOwnerRoleError',
    'CannotRemoveOwnerError',
    'UnsettledBalanceError',
    'CurrencyLockedError',
    'InsufficientPermissionsError',

    # Group Management
    'create_group',
    'update_group',
    'delete_group',
    'get_group_by_id',

    # Membership Management
    'join_group',
    'add_member',
    'leave_group',
    'remove_member',
    'get_group_members',

    # Roles and permissions
    'update_member_role',
    'set_can_add_expenses',
]
