"""
Settlement recording service.

Records payments between group members. A completed settlement is written
to the append-only settlement log in the same transaction that applies its
effect to the balances: both succeed or neither does.
"""

import logging
from functools import partial
from typing import List, Optional
from uuid import UUID

from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from apps.accounts.models import User
from apps.groups.models import Group

from ..models import Expense, Settlement, SettlementStatus
from ..money import Money
from ..recommender import SuggestedPayment, recommend
from ..signals import settlement_completed
from .balance_ledger import (
    apply_delta_set,
    get_group_balances,
    run_with_retry,
    settlement_delta_set,
)
from .exceptions import (
    CurrencyMismatchError,
    ExpenseNotFoundError,
    GroupNotFoundError,
    InsufficientPermissionsError,
    InsufficientRelationError,
    InvalidAmountError,
    SettlementNotFoundError,
    SettlementStateError,
    UnknownMemberError,
)

logger = logging.getLogger(__name__)


def record_settlement(
    *,
    group_id: UUID,
    from_member_id: UUID,
    to_member_id: UUID,
    amount: Money,
    recorded_by: User,
    expected_version: Optional[int] = None,
    expense_id: Optional[UUID] = None,
    description: str = ''
) -> Settlement:
    """
    Record a completed payment from one member to another.

    The payer doesn't need to currently owe the payee; partial and advance
    payments are accepted and stored with the exact requested amount.

    Args:
        group_id: UUID of the group
        from_member_id: UUID of the paying member
        to_member_id: UUID of the receiving member
        amount: Amount paid, in the group's ledger currency
        recorded_by: Member recording the payment
        expected_version: Group ledger version the caller read. Without it
            the operation retries on conflicts.
        expense_id: Optional expense the payment relates to
        description: Optional note

    Returns:
        Completed Settlement instance

    Raises:
        GroupNotFoundError: If group doesn't exist
        InsufficientRelationError: If from and to are the same member
        InvalidAmountError: If amount isn't positive
        CurrencyMismatchError: If amount isn't in the group currency
        UnknownMemberError: If either side isn't an active member
        ConflictError: If expected_version is stale
        LedgerBusyError: If retries are exhausted
    """
    group = _get_group(group_id)
    _validate(group, from_member_id, to_member_id, amount, recorded_by)
    expense = _get_expense(group, expense_id)

    def attempt():
        with transaction.atomic():
            settlement = Settlement.objects.create(
                group=group,
                from_member_id=from_member_id,
                to_member_id=to_member_id,
                amount_minor=amount.minor_units,
                currency=amount.currency,
                expense=expense,
                description=description,
                status=SettlementStatus.COMPLETED,
                created_by=recorded_by,
                completed_at=timezone.now(),
            )
            _apply(settlement, expected_version)
            return settlement

    settlement = _run(attempt, expected_version)
    logger.info(
        "Settlement %s recorded in group %s: %s -> %s, %s",
        settlement.id, group.id, from_member_id, to_member_id, amount,
    )
    return settlement


@transaction.atomic
def request_settlement(
    *,
    group_id: UUID,
    from_member_id: UUID,
    to_member_id: UUID,
    amount: Money,
    requested_by: User,
    expense_id: Optional[UUID] = None,
    description: str = ''
) -> Settlement:
    """
    Create a pending settlement. Balances change only once it is completed.

    Raises:
        Same validation errors as ``record_settlement``.
    """
    group = _get_group(group_id)
    _validate(group, from_member_id, to_member_id, amount, requested_by)
    expense = _get_expense(group, expense_id)

    settlement = Settlement.objects.create(
        group=group,
        from_member_id=from_member_id,
        to_member_id=to_member_id,
        amount_minor=amount.minor_units,
        currency=amount.currency,
        expense=expense,
        description=description,
        status=SettlementStatus.PENDING,
        created_by=requested_by,
    )

    logger.info("Settlement %s requested in group %s", settlement.id, group.id)
    return settlement


def complete_settlement(
    *,
    settlement_id: UUID,
    user: User,
    expected_version: Optional[int] = None
) -> Settlement:
    """
    Complete a pending settlement and apply it to the balances.

    Only the two parties or a group admin may complete it.

    Raises:
        SettlementNotFoundError: If settlement doesn't exist
        InsufficientPermissionsError: If user isn't a party or admin
        SettlementStateError: If the settlement isn't pending
        UnknownMemberError: If a party left the group meanwhile
        ConflictError, LedgerBusyError: Ledger concurrency errors
    """
    def attempt():
        with transaction.atomic():
            settlement = _get_settlement_for_update(settlement_id)
            _check_party_or_admin(settlement, user)
            if settlement.status != SettlementStatus.PENDING:
                raise SettlementStateError(
                    f"Settlement is already {settlement.status} and can't be changed"
                )

            settlement.status = SettlementStatus.COMPLETED
            settlement.completed_at = timezone.now()
            settlement.save(update_fields=['status', 'completed_at'])

            _apply(settlement, expected_version)
            return settlement

    settlement = _run(attempt, expected_version)
    logger.info("Settlement %s completed by %s", settlement.id, user.id)
    return settlement


@transaction.atomic
def cancel_settlement(*, settlement_id: UUID, user: User) -> Settlement:
    """
    Cancel a pending settlement. Completed settlements can't be cancelled.

    Raises:
        SettlementNotFoundError: If settlement doesn't exist
        InsufficientPermissionsError: If user isn't a party or admin
        SettlementStateError: If the settlement isn't pending
    """
    settlement = _get_settlement_for_update(settlement_id)
    _check_party_or_admin(settlement, user)
    if settlement.status != SettlementStatus.PENDING:
        raise SettlementStateError(
            f"Settlement is already {settlement.status} and can't be changed"
        )

    settlement.status = SettlementStatus.CANCELLED
    settlement.cancelled_at = timezone.now()
    settlement.save(update_fields=['status', 'cancelled_at'])

    logger.info("Settlement %s cancelled by %s", settlement.id, user.id)
    return settlement


def get_recommended_settlements(*, group_id: UUID) -> List[SuggestedPayment]:
    """Suggested payments that would bring every balance in the group to zero."""
    state = get_group_balances(group_id=group_id)
    return recommend(state.balances)


def get_group_settlements(*, group_id: UUID, status: Optional[str] = None) -> QuerySet:
    queryset = (
        Settlement.objects
        .filter(group_id=group_id)
        .select_related('from_member', 'to_member', 'created_by')
    )
    if status:
        queryset = queryset.filter(status=status)
    return queryset


def get_settlement_by_id(*, settlement_id: UUID, group_id: Optional[UUID] = None) -> Settlement:
    queryset = Settlement.objects.select_related('group', 'from_member', 'to_member')
    if group_id is not None:
        queryset = queryset.filter(group_id=group_id)
    try:
        return queryset.get(id=settlement_id)
    except Settlement.DoesNotExist:
        raise SettlementNotFoundError(f"Settlement with ID {settlement_id} not found")


# =============================================================================
# Helpers
# =============================================================================

def _run(operation, expected_version):
    if expected_version is None:
        return run_with_retry(operation)
    return operation()


def _get_group(group_id) -> Group:
    try:
        return Group.objects.get(id=group_id)
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")


def _get_expense(group: Group, expense_id) -> Optional[Expense]:
    if expense_id is None:
        return None
    try:
        return Expense.objects.get(id=expense_id, group=group)
    except Expense.DoesNotExist:
        raise ExpenseNotFoundError(f"Expense with ID {expense_id} not found in this group")


def _get_settlement_for_update(settlement_id) -> Settlement:
    try:
        return (
            Settlement.objects
            .select_for_update()
            .select_related('group')
            .get(id=settlement_id)
        )
    except Settlement.DoesNotExist:
        raise SettlementNotFoundError(f"Settlement with ID {settlement_id} not found")


def _validate(group: Group, from_member_id, to_member_id, amount: Money, acting_user: User) -> None:
    if str(from_member_id) == str(to_member_id):
        raise InsufficientRelationError("A settlement needs two different members")
    if amount.currency != group.currency:
        raise CurrencyMismatchError(group.currency, amount.currency)
    if not amount.is_positive:
        raise InvalidAmountError("Settlement amount must be positive")
    if not group.has_member(acting_user):
        raise InsufficientPermissionsError("Only group members can record settlements")

    active = {
        str(user_id)
        for user_id in group.memberships
        .filter(is_active=True, user_id__in=[from_member_id, to_member_id])
        .values_list('user_id', flat=True)
    }
    for member_id in (from_member_id, to_member_id):
        if str(member_id) not in active:
            raise UnknownMemberError(member_id, group.id)


def _check_party_or_admin(settlement: Settlement, user: User) -> None:
    if user.id in (settlement.from_member_id, settlement.to_member_id):
        return
    if settlement.group.is_admin(user):
        return
    raise InsufficientPermissionsError("Only the payer, the payee or an admin can change this settlement")


def _apply(settlement: Settlement, expected_version: Optional[int]) -> None:
    apply_delta_set(
        group_id=settlement.group_id,
        deltas=settlement_delta_set(
            from_member_id=settlement.from_member_id,
            to_member_id=settlement.to_member_id,
            amount=settlement.amount,
        ),
        expected_version=expected_version,
    )
    transaction.on_commit(partial(_send_settlement_completed, settlement))


def _send_settlement_completed(settlement: Settlement) -> None:
    responses = settlement_completed.send_robust(sender=Settlement, settlement=settlement)
    for receiver, response in responses:
        if isinstance(response, Exception):
            logger.error(
                "settlement_completed receiver %r failed: %s", receiver, response,
                exc_info=(type(response), response, response.__traceback__),
            )
