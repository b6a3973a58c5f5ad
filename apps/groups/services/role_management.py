"""
Member roles and ledger permission flags.

Roles decide who may administer the group (approve expenses, add or remove
members); ``can_add_expenses`` decides who may put new expenses on the
ledger. The owner's role and flags are fixed.
"""

import logging
from uuid import UUID

from django.db import transaction

from apps.accounts.models import User
from apps.groups.models import Group, GroupMembership, GroupRole

from .exceptions import (
    GroupNotFoundError,
    NotMemberError,
    CannotChangeOwnerRoleError,
    InsufficientPermissionsError,
)

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = (GroupRole.ADMIN, GroupRole.MEMBER)


def _lock_member_for_admin(group_id: UUID, user_id: UUID, acting_user: User) -> GroupMembership:
    """
    Lock the target's active membership after checking the acting user is an admin.

    The owner's membership is never returned.
    """
    try:
        group = Group.objects.get(id=group_id)
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    if not group.is_admin(acting_user):
        raise InsufficientPermissionsError("Only group admins can change member permissions")

    try:
        membership = (
            GroupMembership.objects
            .select_for_update()
            .get(group=group, user_id=user_id, is_active=True)
        )
    except GroupMembership.DoesNotExist:
        raise NotMemberError("User is not a member of this group")

    if membership.role == GroupRole.OWNER:
        raise CannotChangeOwnerRoleError("Cannot change the owner's role or permissions")

    return membership


@transaction.atomic
def update_member_role(
    *,
    group_id: UUID,
    user_id: UUID,
    new_role: str,
    updated_by: User
) -> GroupMembership:
    """
    Promote a member to admin or demote an admin to member (admin only).

    Raises:
        ValueError: If new_role is not 'admin' or 'member'
        GroupNotFoundError, InsufficientPermissionsError, NotMemberError,
        CannotChangeOwnerRoleError
    """
    if new_role not in ASSIGNABLE_ROLES:
        raise ValueError(f"Invalid role. Must be one of: {list(ASSIGNABLE_ROLES)}")

    membership = _lock_member_for_admin(group_id, user_id, updated_by)

    if membership.role != new_role:
        membership.role = new_role
        membership.save(update_fields=['role'])
        logger.info("User %s is now %s in group %s", user_id, new_role, group_id)

    return membership


@transaction.atomic
def set_can_add_expenses(
    *,
    group_id: UUID,
    user_id: UUID,
    allowed: bool,
    updated_by: User
) -> GroupMembership:
    """Grant or revoke a member's right to add expenses (admin only)."""
    membership = _lock_member_for_admin(group_id, user_id, updated_by)

    membership.can_add_expenses = allowed
    membership.save(update_fields=['can_add_expenses'])
    logger.info(
        "User %s %s add expenses in group %s",
        user_id, 'may' if allowed else 'may no longer', group_id
    )
    return membership
