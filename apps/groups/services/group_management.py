"""
Group management service.

Handles group CRUD operations with proper transaction safety.
"""

import logging
import secrets
from typing import Optional
from uuid import UUID

from django.db import transaction, IntegrityError
from django.db.models import Prefetch

from apps.accounts.models import User
from apps.groups.models import Group, GroupMembership, GroupRole, default_ledger_currency
from apps.ledger.money import currency_exponent

from .exceptions import (
    GroupNotFoundError,
    InsufficientPermissionsError,
    CurrencyLockedError,
    UnsettledBalanceError,
)

logger = logging.getLogger(__name__)


def create_group(
    *,
    name: str,
    owner: User,
    description: str = '',
    is_private: bool = True,
    currency: Optional[str] = None,
    expense_approval_required: bool = False,
    max_retries: int = 5
) -> Group:
    """
    Create a new group and add the creator as owner.

    This is a multi-step operation wrapped in a transaction:
    1. Generate unique invite code
    2. Create the group with an empty ledger
    3. Create owner membership

    Args:
        name: Group name
        owner: User who will own the group
        description: Optional group description
        is_private: Whether group is private (default True)
        currency: Ledger currency (defaults to LEDGER_DEFAULT_CURRENCY)
        expense_approval_required: New expenses need admin approval
        max_retries: Maximum attempts to generate unique invite code

    Returns:
        Created Group instance

    Raises:
        UnsupportedCurrencyError: If the currency has no known minor unit
        RuntimeError: If cannot generate unique invite code after retries
    """
    currency = currency or default_ledger_currency()
    currency_exponent(currency)

    # Retry logic outside transaction to handle invite code collisions
    for attempt in range(max_retries):
        invite_code = secrets.token_urlsafe(12)[:16]

        try:
            # Each attempt is a separate transaction
            with transaction.atomic():
                group = Group.objects.create(
                    name=name,
                    owner=owner,
                    description=description,
                    is_private=is_private,
                    invite_code=invite_code,
                    currency=currency,
                    expense_approval_required=expense_approval_required,
                )

                GroupMembership.objects.create(
                    user=owner,
                    group=group,
                    role=GroupRole.OWNER
                )

                logger.info("Group %s created by %s (%s)", group.id, owner.id, currency)
                return group

        except IntegrityError:
            # Invite code collision (very rare)
            if attempt == max_retries - 1:
                raise RuntimeError(
                    f"Failed to generate unique invite code after {max_retries} attempts"
                )
            continue

    raise RuntimeError("Unexpected error in group creation")


def get_group_by_id(*, group_id: UUID) -> Group:
    """
    Get a group by ID with its active memberships prefetched.

    Raises:
        GroupNotFoundError: If group doesn't exist
    """
    try:
        return (
            Group.objects
            .select_related('owner')
            .prefetch_related(
                Prefetch(
                    'memberships',
                    queryset=GroupMembership.objects.filter(is_active=True).select_related('user')
                )
            )
            .get(id=group_id)
        )
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")


@transaction.atomic
def update_group(
    *,
    group_id: UUID,
    user: User,
    name: Optional[str] = None,
    description: Optional[str] = None,
    is_private: Optional[bool] = None,
    currency: Optional[str] = None,
    expense_approval_required: Optional[bool] = None
) -> Group:
    """
    Update group details (admin only).

    The ledger currency can only change while the ledger is still empty.

    Raises:
        GroupNotFoundError: If group doesn't exist
        InsufficientPermissionsError: If user is not admin
        CurrencyLockedError: If the ledger already has entries
    """
    try:
        group = (
            Group.objects
            .select_for_update()
            .get(id=group_id)
        )
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    if not group.is_admin(user):
        raise InsufficientPermissionsError("Only group admins can update the group")

    update_fields = ['updated_at']

    if name is not None:
        group.name = name
        update_fields.append('name')

    if description is not None:
        group.description = description
        update_fields.append('description')

    if is_private is not None:
        group.is_private = is_private
        update_fields.append('is_private')

    if expense_approval_required is not None:
        group.expense_approval_required = expense_approval_required
        update_fields.append('expense_approval_required')

    if currency is not None and currency != group.currency:
        if group.balances.exists() or group.expenses.exists() or group.settlements.exists():
            raise CurrencyLockedError("The ledger currency can't change once the ledger has entries")
        currency_exponent(currency)
        group.currency = currency
        update_fields.append('currency')

    group.save(update_fields=update_fields)

    return group


@transaction.atomic
def delete_group(*, group_id: UUID, user: User) -> None:
    """
    Delete a group (owner only).

    A group whose ledger isn't squared up can't be deleted. Cascading deletes
    remove memberships, expenses, balances and settlements.

    Raises:
        GroupNotFoundError: If group doesn't exist
        InsufficientPermissionsError: If user is not the owner
        UnsettledBalanceError: If any balance is non-zero
    """
    try:
        group = (
            Group.objects
            .select_for_update()
            .get(id=group_id)
        )
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    if group.owner != user:
        raise InsufficientPermissionsError("Only the group owner can delete the group")

    if group.balances.exclude(amount_minor=0).exists():
        raise UnsettledBalanceError("Settle all balances before deleting the group")

    group.delete()
    logger.info("Group %s deleted by %s", group_id, user.id)
