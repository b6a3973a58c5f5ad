"""
Membership management service.

Handles group membership operations with concurrency protection.

Memberships are never deleted: leaving or being removed deactivates the
membership so historical expenses and balances keep pointing at a member.
Rejoining reactivates the same row.
"""

import logging
from uuid import UUID

from django.db import transaction, IntegrityError
from django.db.models import F, QuerySet
from django.utils import timezone

from apps.accounts.models import User
from apps.groups.models import Group, GroupMembership, GroupRole
from apps.ledger.services.balance_ledger import get_member_balance

from .exceptions import (
    GroupNotFoundError,
    UserNotFoundError,
    InvalidInviteCodeError,
    AlreadyMemberError,
    NotMemberError,
    OwnerCannotLeaveError,
    CannotRemoveOwnerError,
    InsufficientPermissionsError,
    UnsettledBalanceError,
)

logger = logging.getLogger(__name__)


def _activate_membership(group: Group, user: User) -> GroupMembership:
    """Create the membership, or reactivate a deactivated one."""
    try:
        membership = (
            GroupMembership.objects
            .select_for_update()
            .get(group=group, user=user)
        )
    except GroupMembership.DoesNotExist:
        try:
            with transaction.atomic():
                return GroupMembership.objects.create(
                    user=user,
                    group=group,
                    role=GroupRole.MEMBER
                )
        except IntegrityError:
            # Database constraint caught duplicate membership
            raise AlreadyMemberError(f"User is already a member of {group.name}")

    if membership.is_active:
        raise AlreadyMemberError(f"User is already a member of {group.name}")

    membership.is_active = True
    membership.deactivated_at = None
    membership.role = GroupRole.MEMBER
    membership.save(update_fields=['is_active', 'deactivated_at', 'role'])
    return membership


def _deactivate_membership(group: Group, membership: GroupMembership) -> None:
    """
    Deactivate a settled member.

    Bumps the ledger version so a delta set that was validated against the
    old member list conflicts and retries instead of landing on a former
    member.
    """
    balance = get_member_balance(group_id=group.id, member_id=membership.user_id)
    if not balance.is_zero:
        raise UnsettledBalanceError(
            f"Member still has an unsettled balance of {balance}",
            balance=balance,
        )

    membership.is_active = False
    membership.deactivated_at = timezone.now()
    membership.save(update_fields=['is_active', 'deactivated_at'])
    Group.objects.filter(id=group.id).update(ledger_version=F('ledger_version') + 1)


@transaction.atomic
def join_group(
    *,
    group_id: UUID,
    user: User,
    invite_code: str
) -> GroupMembership:
    """
    Join a group using an invite code.

    Uses row-level locking to prevent race conditions when checking
    and creating memberships.

    Args:
        group_id: UUID of the group
        user: User joining the group
        invite_code: Invite code for verification

    Returns:
        Created or reactivated GroupMembership instance

    Raises:
        GroupNotFoundError: If group doesn't exist
        InvalidInviteCodeError: If invite code is incorrect
        AlreadyMemberError: If user is already an active member
    """
    # Lock the group to prevent concurrent joins
    try:
        group = (
            Group.objects
            .select_for_update()
            .get(id=group_id)
        )
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    if group.invite_code != invite_code:
        raise InvalidInviteCodeError("Invalid invite code")

    membership = _activate_membership(group, user)
    logger.info("User %s joined group %s", user.id, group.id)
    return membership


@transaction.atomic
def add_member(
    *,
    group_id: UUID,
    user_id: UUID,
    added_by: User
) -> GroupMembership:
    """
    Add a user to a group (admin only).

    Args:
        group_id: UUID of the group
        user_id: UUID of the user to add
        added_by: User performing the addition (must be admin)

    Returns:
        Created or reactivated GroupMembership instance

    Raises:
        GroupNotFoundError: If group doesn't exist
        UserNotFoundError: If the user doesn't exist
        InsufficientPermissionsError: If added_by is not admin
        AlreadyMemberError: If user is already an active member
    """
    try:
        group = (
            Group.objects
            .select_for_update()
            .get(id=group_id)
        )
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    if not group.is_admin(added_by):
        raise InsufficientPermissionsError("Only group admins can add members")

    try:
        user = User.objects.get(id=user_id, is_active=True)
    except User.DoesNotExist:
        raise UserNotFoundError(f"User with ID {user_id} not found")

    membership = _activate_membership(group, user)
    logger.info("User %s added to group %s by %s", user.id, group.id, added_by.id)
    return membership


@transaction.atomic
def leave_group(*, group_id: UUID, user: User) -> None:
    """
    Leave a group.

    Owner cannot leave their own group - they must transfer ownership or delete.
    Members can only leave once their balance is settled.

    Args:
        group_id: UUID of the group
        user: User leaving the group

    Raises:
        GroupNotFoundError: If group doesn't exist
        NotMemberError: If user is not a member
        OwnerCannotLeaveError: If user is the owner
        UnsettledBalanceError: If user's balance is non-zero
    """
    try:
        group = (
            Group.objects
            .select_for_update()
            .get(id=group_id)
        )
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    if group.owner == user:
        raise OwnerCannotLeaveError(
            "Group owner cannot leave. Transfer ownership or delete the group."
        )

    try:
        membership = (
            GroupMembership.objects
            .select_for_update()
            .get(user=user, group=group, is_active=True)
        )
    except GroupMembership.DoesNotExist:
        raise NotMemberError(f"User is not a member of {group.name}")

    _deactivate_membership(group, membership)
    logger.info("User %s left group %s", user.id, group.id)


@transaction.atomic
def remove_member(
    *,
    group_id: UUID,
    user_id: UUID,
    removed_by: User
) -> None:
    """
    Remove a member from a group (admin only).

    Cannot remove the group owner or a member with an unsettled balance.

    Args:
        group_id: UUID of the group
        user_id: UUID of the user to remove
        removed_by: User performing the removal (must be admin)

    Raises:
        GroupNotFoundError: If group doesn't exist
        NotMemberError: If target user is not a member
        CannotRemoveOwnerError: If trying to remove the owner
        InsufficientPermissionsError: If removed_by is not admin
        UnsettledBalanceError: If the member's balance is non-zero
    """
    try:
        group = (
            Group.objects
            .select_for_update()
            .get(id=group_id)
        )
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    if not group.is_admin(removed_by):
        raise InsufficientPermissionsError("Only group admins can remove members")

    if str(group.owner_id) == str(user_id):
        raise CannotRemoveOwnerError("Cannot remove the group owner")

    try:
        membership = (
            GroupMembership.objects
            .select_for_update()
            .get(group=group, user_id=user_id, is_active=True)
        )
    except GroupMembership.DoesNotExist:
        raise NotMemberError("User is not a member of this group")

    _deactivate_membership(group, membership)
    logger.info("User %s removed from group %s by %s", user_id, group.id, removed_by.id)


def get_group_members(*, group_id: UUID, include_inactive: bool = False) -> QuerySet[GroupMembership]:
    """
    Get the members of a group with optimized queries.

    Args:
        group_id: UUID of the group
        include_inactive: Also return deactivated memberships

    Returns:
        QuerySet of GroupMembership instances

    Raises:
        GroupNotFoundError: If group doesn't exist
    """
    if not Group.objects.filter(id=group_id).exists():
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    queryset = (
        GroupMembership.objects
        .filter(group_id=group_id)
        .select_related('user')
        .order_by('-role', 'joined_at')
    )
    if not include_inactive:
        queryset = queryset.filter(is_active=True)
    return queryset
