"""
Expense management service.

Creates, edits and deletes group expenses and drives the approval workflow.
Every change to an expense's financial effect goes through
``apply_delta_set`` as a single delta set: an edit applies ``new - old`` in
one step, a delete applies the exact negation of the original effect.
"""

import logging
from datetime import date as date_type
from decimal import Decimal
from typing import Callable, Iterable, Optional, TypeVar
from uuid import UUID

from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from apps.accounts.models import User
from apps.groups.models import Group, GroupMembership

from ..models import Expense, ExpenseShare, ExpenseStatus, ExpenseCategory, SplitPolicyType
from ..money import Money
from ..splits import (
    EqualSplit,
    ExactSplit,
    PercentageSplit,
    SharesSplit,
    SplitPolicy,
    compute_split,
)
from .balance_ledger import (
    apply_delta_set,
    combine_delta_sets,
    expense_delta_set,
    negate_delta_set,
    run_with_retry,
)
from .exceptions import (
    CurrencyMismatchError,
    ExpenseAlreadySettledError,
    ExpenseNotFoundError,
    ExpenseVersionConflictError,
    GroupNotFoundError,
    InsufficientPermissionsError,
    InvalidAmountError,
    InvalidExpenseStateError,
    UnknownMemberError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


def create_expense(
    *,
    group_id: UUID,
    created_by: User,
    paid_by_id: UUID,
    title: str,
    amount: Money,
    policy: SplitPolicy,
    description: str = '',
    category: str = ExpenseCategory.OTHER,
    date: Optional[date_type] = None,
    expected_version: Optional[int] = None
) -> Expense:
    """
    Create an expense and apply its effect to the group balances.

    The split is computed before anything is written. In groups that require
    approval the expense starts as pending and does not touch the balances
    until approved.

    Args:
        group_id: UUID of the group
        created_by: Member recording the expense
        paid_by_id: UUID of the member who paid
        title: Short description
        amount: Total, in the group's ledger currency
        policy: Split policy naming the participants
        description: Optional longer description
        category: Expense category
        date: Date of the expense (defaults to today)
        expected_version: Group ledger version the caller read. Without it
            the operation retries on conflicts.

    Returns:
        Created Expense instance

    Raises:
        GroupNotFoundError: If group doesn't exist
        InsufficientPermissionsError: If creator can't add expenses
        InvalidAmountError: If amount isn't positive
        CurrencyMismatchError: If amount isn't in the group currency
        UnknownMemberError: If payer or a participant isn't an active member
        SplitError: If the split can't be computed
        ConflictError: If expected_version is stale
        LedgerBusyError: If retries are exhausted
    """
    group = _get_group(group_id)

    membership = group.get_membership(created_by)
    if membership is None:
        raise InsufficientPermissionsError("Only group members can add expenses")
    if not membership.can_add_expenses:
        raise InsufficientPermissionsError("You are not allowed to add expenses to this group")

    _check_amount(group, amount)
    shares = compute_split(amount, policy)
    _check_active_members(group, [paid_by_id, *policy.participants])

    status = (
        ExpenseStatus.PENDING
        if group.expense_approval_required
        else ExpenseStatus.APPROVED
    )

    def attempt():
        with transaction.atomic():
            expense = Expense.objects.create(
                group=group,
                created_by=created_by,
                paid_by_id=paid_by_id,
                title=title,
                description=description,
                category=category,
                date=date or timezone.localdate(),
                amount_minor=amount.minor_units,
                currency=amount.currency,
                split_policy=policy.kind,
                status=status,
            )
            _save_shares(expense, shares, policy)

            if expense.affects_balances:
                apply_delta_set(
                    group_id=group.id,
                    deltas=expense_delta_set(paid_by_id=paid_by_id, total=amount, shares=shares),
                    expected_version=expected_version,
                )
            return expense

    expense = _run(attempt, expected_version)
    logger.info(
        "Expense %s created in group %s: %s paid by %s (%s)",
        expense.id, group.id, amount, paid_by_id, expense.status,
    )
    return expense


def update_expense(
    *,
    expense_id: UUID,
    user: User,
    expected_version: int,
    title: Optional[str] = None,
    description: Optional[str] = None,
    category: Optional[str] = None,
    date: Optional[date_type] = None,
    amount: Optional[Money] = None,
    paid_by_id: Optional[UUID] = None,
    policy: Optional[SplitPolicy] = None,
    expected_ledger_version: Optional[int] = None
) -> Expense:
    """
    Edit an expense.

    When the amount, payer or split changes on an approved expense, the old
    effect is reversed and the new one applied as one delta set. If only the
    amount changes, the stored split is reused (equal, percentage and share
    weights are kept; exact amounts must be resent).

    Args:
        expense_id: UUID of the expense
        user: Member editing (creator or group admin)
        expected_version: Expense version the caller read
        expected_ledger_version: Group ledger version the caller read.
            Without it the operation retries on conflicts.

    Returns:
        Updated Expense instance

    Raises:
        ExpenseNotFoundError: If expense doesn't exist
        InsufficientPermissionsError: If user is neither creator nor admin
        ExpenseAlreadySettledError: If the expense is settled
        ExpenseVersionConflictError: If the expense changed since it was read
        SplitError, CurrencyMismatchError, UnknownMemberError: Invalid new data
        ConflictError, LedgerBusyError: Ledger concurrency errors
    """
    financial_change = amount is not None or paid_by_id is not None or policy is not None

    def attempt():
        with transaction.atomic():
            expense = _get_expense_for_update(expense_id)
            _check_can_modify(expense, user)

            if expense.status == ExpenseStatus.SETTLED:
                raise ExpenseAlreadySettledError("Settled expenses cannot be edited")
            if expense.version != expected_version:
                raise ExpenseVersionConflictError(expense.id, expected_version, expense.version)

            if financial_change:
                _change_financials(
                    expense,
                    amount=amount,
                    paid_by_id=paid_by_id,
                    policy=policy,
                    expected_ledger_version=expected_ledger_version,
                )

            if title is not None:
                expense.title = title
            if description is not None:
                expense.description = description
            if category is not None:
                expense.category = category
            if date is not None:
                expense.date = date

            expense.version += 1
            expense.save()
            return expense

    expense = _run(attempt, expected_ledger_version)
    logger.info("Expense %s updated to version %s by %s", expense.id, expense.version, user.id)
    return expense


def delete_expense(
    *,
    expense_id: UUID,
    user: User,
    expected_version: Optional[int] = None,
    expected_ledger_version: Optional[int] = None
) -> None:
    """
    Delete an expense, reversing its effect on the balances.

    Raises:
        ExpenseNotFoundError: If expense doesn't exist
        InsufficientPermissionsError: If user is neither creator nor admin
        ExpenseAlreadySettledError: If the expense is settled
        ExpenseVersionConflictError: If expected_version is given and stale
        ConflictError, LedgerBusyError: Ledger concurrency errors
    """
    def attempt():
        with transaction.atomic():
            expense = _get_expense_for_update(expense_id)
            _check_can_modify(expense, user)

            if expense.status == ExpenseStatus.SETTLED:
                raise ExpenseAlreadySettledError("Settled expenses cannot be deleted")
            if expected_version is not None and expense.version != expected_version:
                raise ExpenseVersionConflictError(expense.id, expected_version, expense.version)

            if expense.affects_balances:
                apply_delta_set(
                    group_id=expense.group_id,
                    deltas=negate_delta_set(_stored_delta_set(expense)),
                    expected_version=expected_ledger_version,
                    allow_inactive_members=True,
                )
            expense.delete()

    _run(attempt, expected_ledger_version)
    logger.info("Expense %s deleted by %s", expense_id, user.id)


def approve_expense(
    *,
    expense_id: UUID,
    user: User,
    expected_ledger_version: Optional[int] = None
) -> Expense:
    """
    Approve a pending expense (admin only) and apply it to the balances.

    Raises:
        ExpenseNotFoundError: If expense doesn't exist
        InsufficientPermissionsError: If user is not an admin
        InvalidExpenseStateError: If the expense isn't pending
        UnknownMemberError: If a participant left the group meanwhile
    """
    def attempt():
        with transaction.atomic():
            expense = _get_expense_for_update(expense_id)
            if not expense.group.is_admin(user):
                raise InsufficientPermissionsError("Only admins can approve expenses")
            if expense.status != ExpenseStatus.PENDING:
                raise InvalidExpenseStateError(f"Cannot approve an expense that is {expense.status}")

            expense.status = ExpenseStatus.APPROVED
            expense.approved_by = user
            expense.approved_at = timezone.now()
            expense.version += 1
            expense.save()

            apply_delta_set(
                group_id=expense.group_id,
                deltas=_stored_delta_set(expense),
                expected_version=expected_ledger_version,
            )
            return expense

    expense = _run(attempt, expected_ledger_version)
    logger.info("Expense %s approved by %s", expense.id, user.id)
    return expense


@transaction.atomic
def reject_expense(*, expense_id: UUID, user: User, reason: str = '') -> Expense:
    """
    Reject a pending expense (admin only). Balances are not touched.

    Raises:
        ExpenseNotFoundError: If expense doesn't exist
        InsufficientPermissionsError: If user is not an admin
        InvalidExpenseStateError: If the expense isn't pending
    """
    expense = _get_expense_for_update(expense_id)
    if not expense.group.is_admin(user):
        raise InsufficientPermissionsError("Only admins can reject expenses")
    if expense.status != ExpenseStatus.PENDING:
        raise InvalidExpenseStateError(f"Cannot reject an expense that is {expense.status}")

    expense.status = ExpenseStatus.REJECTED
    expense.rejection_reason = reason
    expense.version += 1
    expense.save()

    logger.info("Expense %s rejected by %s", expense.id, user.id)
    return expense


@transaction.atomic
def mark_expense_settled(*, expense_id: UUID, user: User) -> Expense:
    """
    Mark an approved expense as settled.

    Its effect stays in the balances; the expense is frozen from now on.

    Raises:
        ExpenseNotFoundError: If expense doesn't exist
        InsufficientPermissionsError: If user is neither creator nor admin
        InvalidExpenseStateError: If the expense isn't approved
    """
    expense = _get_expense_for_update(expense_id)
    _check_can_modify(expense, user)
    if expense.status != ExpenseStatus.APPROVED:
        raise InvalidExpenseStateError(f"Cannot settle an expense that is {expense.status}")

    expense.status = ExpenseStatus.SETTLED
    expense.settled_at = timezone.now()
    expense.version += 1
    expense.save()

    logger.info("Expense %s marked settled by %s", expense.id, user.id)
    return expense


def get_group_expenses(*, group_id: UUID, status: Optional[str] = None) -> QuerySet:
    queryset = (
        Expense.objects
        .filter(group_id=group_id)
        .select_related('paid_by', 'created_by')
        .prefetch_related('shares__member')
    )
    if status:
        queryset = queryset.filter(status=status)
    return queryset


def get_expense_by_id(*, expense_id: UUID, group_id: Optional[UUID] = None) -> Expense:
    queryset = Expense.objects.select_related('group', 'paid_by', 'created_by')
    if group_id is not None:
        queryset = queryset.filter(group_id=group_id)
    try:
        return queryset.get(id=expense_id)
    except Expense.DoesNotExist:
        raise ExpenseNotFoundError(f"Expense with ID {expense_id} not found")


def policy_from_shares(expense: Expense, shares: Iterable[ExpenseShare]) -> SplitPolicy:
    """Rebuild the split policy an expense was created with from its stored shares."""
    shares = list(shares)

    if expense.split_policy == SplitPolicyType.EQUAL:
        return EqualSplit(tuple(s.member_id for s in shares))
    if expense.split_policy == SplitPolicyType.EXACT:
        return ExactSplit(tuple((s.member_id, s.amount) for s in shares))
    if expense.split_policy == SplitPolicyType.PERCENTAGE:
        return PercentageSplit(tuple((s.member_id, s.weight) for s in shares))
    if expense.split_policy == SplitPolicyType.BY_SHARES:
        return SharesSplit(tuple((s.member_id, int(s.weight)) for s in shares))
    raise InvalidExpenseStateError(f"Unknown split policy {expense.split_policy!r}")


# =============================================================================
# Helpers
# =============================================================================

def _run(operation: Callable[[], T], expected_version: Optional[int]) -> T:
    # A pinned version means the caller wants to see the conflict
    if expected_version is None:
        return run_with_retry(operation)
    return operation()


def _get_group(group_id) -> Group:
    try:
        return Group.objects.get(id=group_id)
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")


def _get_expense_for_update(expense_id) -> Expense:
    try:
        return (
            Expense.objects
            .select_for_update()
            .select_related('group')
            .get(id=expense_id)
        )
    except Expense.DoesNotExist:
        raise ExpenseNotFoundError(f"Expense with ID {expense_id} not found")


def _check_can_modify(expense: Expense, user: User) -> None:
    if expense.created_by_id == user.id:
        return
    if expense.group.is_admin(user):
        return
    raise InsufficientPermissionsError("Only the creator or a group admin can change this expense")


def _check_amount(group: Group, amount: Money) -> None:
    if amount.currency != group.currency:
        raise CurrencyMismatchError(group.currency, amount.currency)
    if not amount.is_positive:
        raise InvalidAmountError("Expense amount must be positive")


def _check_active_members(group: Group, member_ids) -> None:
    ids = set()
    for member_id in member_ids:
        try:
            ids.add(member_id if isinstance(member_id, UUID) else UUID(str(member_id)))
        except ValueError:
            raise UnknownMemberError(member_id, group.id)

    active = set(
        GroupMembership.objects
        .filter(group=group, user_id__in=ids, is_active=True)
        .values_list('user_id', flat=True)
    )
    missing = sorted(ids - active, key=str)
    if missing:
        raise UnknownMemberError(missing[0], group.id)


def _share_weights(policy: SplitPolicy) -> dict:
    if isinstance(policy, PercentageSplit):
        return {str(m): Decimal(str(p)) for m, p in policy.percentages}
    if isinstance(policy, SharesSplit):
        return {str(m): Decimal(count) for m, count in policy.shares}
    return {}


def _save_shares(expense: Expense, shares, policy: SplitPolicy) -> None:
    weights = _share_weights(policy)
    ExpenseShare.objects.bulk_create([
        ExpenseShare(
            expense=expense,
            member_id=share.member_id,
            amount_minor=share.amount.minor_units,
            weight=weights.get(str(share.member_id)),
            position=position,
        )
        for position, share in enumerate(shares)
    ])


def _stored_delta_set(expense: Expense):
    return expense_delta_set(
        paid_by_id=expense.paid_by_id,
        total=expense.total,
        shares=expense.get_shares(),
    )


def _change_financials(expense, *, amount, paid_by_id, policy, expected_ledger_version):
    old_shares = expense.get_shares()
    old_deltas = expense_delta_set(
        paid_by_id=expense.paid_by_id,
        total=expense.total,
        shares=old_shares,
    )

    new_total = amount if amount is not None else expense.total
    new_payer = paid_by_id if paid_by_id is not None else expense.paid_by_id
    new_policy = policy if policy is not None else policy_from_shares(expense, old_shares)

    _check_amount(expense.group, new_total)
    new_shares = compute_split(new_total, new_policy)

    # Members who were already on the expense may have left since
    previous = {str(expense.paid_by_id)} | {str(s.member_id) for s in old_shares}
    added = [m for m in [new_payer, *new_policy.participants] if str(m) not in previous]
    if added:
        _check_active_members(expense.group, added)

    expense.amount_minor = new_total.minor_units
    expense.currency = new_total.currency
    expense.paid_by_id = new_payer
    expense.split_policy = new_policy.kind
    expense.shares.all().delete()
    _save_shares(expense, new_shares, new_policy)

    if expense.affects_balances:
        new_deltas = expense_delta_set(paid_by_id=new_payer, total=new_total, shares=new_shares)
        apply_delta_set(
            group_id=expense.group_id,
            deltas=combine_delta_sets(negate_delta_set(old_deltas), new_deltas),
            expected_version=expected_ledger_version,
            allow_inactive_members=True,
        )
