"""
Balance ledger service.

Keeps one signed balance per (group, member). Positive means the group owes
the member, negative means the member owes the group. The balances of a
group always sum to exactly zero.

Concurrency uses optimistic version checks instead of long-held locks:

- every group carries a ``ledger_version``; a delta set is only applied if
  the caller's expected version still matches, and applying it bumps the
  version by one;
- every balance row carries its own ``version`` and is written with a
  conditional ``UPDATE ... WHERE version = <read version>``.

A stale version raises ``ConflictError``. The whole delta set is applied
inside one database transaction, so a failure leaves every balance as it was.
"""

import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar
from uuid import UUID

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F

from apps.groups.models import Group, GroupMembership

from ..models import Balance
from ..money import Money, sum_money
from ..recommender import BalanceSnapshot
from ..signals import balance_changed
from .exceptions import (
    ConflictError,
    CurrencyMismatchError,
    GroupNotFoundError,
    LedgerBusyError,
    LedgerInvariantError,
    UnknownMemberError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

T = TypeVar('T')

# member id -> signed Money
DeltaSet = Dict[UUID, Money]


@dataclass(frozen=True)
class LedgerState:
    """Balances of a group as of a single ledger version."""

    group_id: UUID
    currency: str
    version: int
    balances: List[BalanceSnapshot]

    @property
    def total(self) -> Money:
        return sum_money((b.amount for b in self.balances), self.currency)


# =============================================================================
# Delta set builders
# =============================================================================

def _member_key(member_id) -> UUID:
    if isinstance(member_id, UUID):
        return member_id
    return UUID(str(member_id))


def _accumulate(deltas: DeltaSet, member_id, amount: Money) -> None:
    key = _member_key(member_id)
    if key in deltas:
        deltas[key] = deltas[key].add(amount)
    else:
        deltas[key] = amount


def expense_delta_set(*, paid_by_id, total: Money, shares: Iterable[Any]) -> DeltaSet:
    """
    Ledger effect of an expense.

    The payer is credited the full total and every participant is debited
    their share. A payer who is also a participant nets ``total - share``.
    ``shares`` may be split ``Share`` values or stored ``ExpenseShare`` rows;
    both expose ``member_id`` and ``amount``.
    """
    deltas: DeltaSet = {}
    _accumulate(deltas, paid_by_id, total)
    for share in shares:
        _accumulate(deltas, share.member_id, share.amount.negate())
    return deltas


def settlement_delta_set(*, from_member_id, to_member_id, amount: Money) -> DeltaSet:
    """
    Ledger effect of ``from`` paying ``to``.

    The payer's debt shrinks (balance goes up) and the payee's credit shrinks
    (balance goes down).
    """
    deltas: DeltaSet = {}
    _accumulate(deltas, from_member_id, amount)
    _accumulate(deltas, to_member_id, amount.negate())
    return deltas


def negate_delta_set(deltas: DeltaSet) -> DeltaSet:
    return {member_id: amount.negate() for member_id, amount in deltas.items()}


def combine_delta_sets(*delta_sets: DeltaSet) -> DeltaSet:
    """Merge delta sets member by member (e.g. reverse-old plus apply-new)."""
    combined: DeltaSet = {}
    for deltas in delta_sets:
        for member_id, amount in deltas.items():
            _accumulate(combined, member_id, amount)
    return combined


# =============================================================================
# Reads
# =============================================================================

def get_group_version(*, group_id: UUID) -> int:
    version = (
        Group.objects
        .filter(id=group_id)
        .values_list('ledger_version', flat=True)
        .first()
    )
    if version is None:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")
    return version


def get_member_balance(*, group_id: UUID, member_id: UUID) -> Money:
    """Current balance of one member; zero if the member never had one."""
    try:
        group = Group.objects.only('currency').get(id=group_id)
    except Group.DoesNotExist:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    amount = (
        Balance.objects
        .filter(group_id=group_id, member_id=member_id)
        .values_list('amount_minor', flat=True)
        .first()
    )
    return Money(amount or 0, group.currency)


def get_group_balances(*, group_id: UUID, max_attempts: Optional[int] = None) -> LedgerState:
    """
    Read every balance of a group together with the ledger version.

    The version is read before and after the balances; if a write slipped in
    between, the read is repeated so the returned balances always belong to
    the returned version.

    Raises:
        GroupNotFoundError: If group doesn't exist
        LedgerBusyError: If the ledger kept changing during every attempt
    """
    attempts = _max_attempts(max_attempts)

    for _ in range(attempts):
        try:
            group = Group.objects.only('currency', 'ledger_version').get(id=group_id)
        except Group.DoesNotExist:
            raise GroupNotFoundError(f"Group with ID {group_id} not found")

        rows = (
            Balance.objects
            .filter(group_id=group_id)
            .values_list('member_id', 'amount_minor', 'currency')
        )
        balances = sorted(
            (
                BalanceSnapshot(member_id=member_id, amount=Money(amount, currency))
                for member_id, amount, currency in rows
            ),
            key=lambda snapshot: str(snapshot.member_id),
        )

        if get_group_version(group_id=group_id) == group.ledger_version:
            return LedgerState(
                group_id=group.id,
                currency=group.currency,
                version=group.ledger_version,
                balances=balances,
            )

    raise LedgerBusyError(f"Ledger of group {group_id} kept changing while being read")


# =============================================================================
# Writes
# =============================================================================

def _apply_delta(
    *,
    group_id: UUID,
    member_id: UUID,
    delta: Money,
    expected_version: Optional[int] = None
) -> int:
    """
    Version-checked write of a single member's balance.

    Creates the balance lazily on first use. A lone delta would break the
    zero-sum rule, so this only runs inside the transaction opened by
    ``apply_delta_set``.

    Args:
        group_id: UUID of the group
        member_id: UUID of the member
        delta: Signed amount to add to the balance
        expected_version: Balance version the caller read (defaults to the
            version read here)

    Returns:
        The balance's new version

    Raises:
        ConflictError: If the balance changed since it was read
        CurrencyMismatchError: If the balance is kept in another currency
        LedgerInvariantError: If called outside a transaction
    """
    if not transaction.get_connection().in_atomic_block:
        raise LedgerInvariantError("Balances may only be written inside a ledger transaction")

    try:
        balance, _ = Balance.objects.get_or_create(
            group_id=group_id,
            member_id=member_id,
            defaults={'currency': delta.currency},
        )
    except IntegrityError:
        raise ConflictError(f"Balance of member {member_id} was created concurrently")

    if balance.currency != delta.currency:
        raise CurrencyMismatchError(balance.currency, delta.currency)

    read_version = balance.version if expected_version is None else expected_version

    updated = (
        Balance.objects
        .filter(pk=balance.pk, version=read_version)
        .update(
            amount_minor=F('amount_minor') + delta.minor_units,
            version=F('version') + 1,
        )
    )
    if updated != 1:
        current = Balance.objects.filter(pk=balance.pk).values_list('version', flat=True).first()
        raise ConflictError(
            f"Balance of member {member_id} is at version {current}, not {read_version}",
            expected_version=read_version,
            current_version=current,
        )

    return read_version + 1


def apply_delta_set(
    *,
    group_id: UUID,
    deltas: DeltaSet,
    expected_version: Optional[int] = None,
    allow_inactive_members: bool = False
) -> int:
    """
    Apply a zero-sum set of balance changes to a group, all or nothing.

    This is the only way balances change. Validation happens before
    anything is written; the group version bump and every balance write then
    share one transaction.

    Args:
        group_id: UUID of the group
        deltas: member id -> signed Money; must sum to zero
        expected_version: Group ledger version the caller read. Defaults to
            the version read here, which still detects writers that commit in
            between.
        allow_inactive_members: Accept deactivated members. Used when
            reversing the effect of historical expenses.

    Returns:
        The group's new ledger version

    Raises:
        GroupNotFoundError: If group doesn't exist
        CurrencyMismatchError: If a delta isn't in the group currency
        UnknownMemberError: If a member doesn't belong to the group
        LedgerInvariantError: If the deltas don't sum to zero
        ConflictError: If the group or a balance changed since it was read
    """
    group_row = (
        Group.objects
        .filter(id=group_id)
        .values('currency', 'ledger_version')
        .first()
    )
    if group_row is None:
        raise GroupNotFoundError(f"Group with ID {group_id} not found")

    currency = group_row['currency']
    normalized: DeltaSet = {}
    for member_id, amount in deltas.items():
        if amount.currency != currency:
            raise CurrencyMismatchError(currency, amount.currency)
        try:
            _accumulate(normalized, member_id, amount)
        except ValueError:
            raise UnknownMemberError(member_id, group_id)

    total = sum_money(normalized.values(), currency)
    if not total.is_zero:
        logger.error(
            "Rejected unbalanced delta set for group %s: sum is %s (%s)",
            group_id, total, {str(k): v.minor_units for k, v in normalized.items()},
        )
        raise LedgerInvariantError(f"Delta set for group {group_id} sums to {total}, not zero")

    if expected_version is None:
        expected_version = group_row['ledger_version']

    with transaction.atomic():
        bumped = (
            Group.objects
            .filter(id=group_id, ledger_version=expected_version)
            .update(ledger_version=F('ledger_version') + 1)
        )
        if bumped != 1:
            current = get_group_version(group_id=group_id)
            logger.warning(
                "Ledger conflict on group %s: expected version %s, found %s",
                group_id, expected_version, current,
            )
            raise ConflictError(
                f"Group ledger is at version {current}, not {expected_version}",
                expected_version=expected_version,
                current_version=current,
            )

        # Membership changes bump the version too, so this check sees the
        # same member set the version guard just pinned
        _check_members(group_id, normalized.keys(), allow_inactive_members)

        # Fixed write order keeps concurrent writers from deadlocking
        for member_id in sorted(normalized, key=str):
            _apply_delta(group_id=group_id, member_id=member_id, delta=normalized[member_id])

        new_balances = {
            member_id: Money(amount, currency)
            for member_id, amount in (
                Balance.objects
                .filter(group_id=group_id, member_id__in=list(normalized))
                .values_list('member_id', 'amount_minor')
            )
        }
        new_version = expected_version + 1
        transaction.on_commit(partial(_send_balance_changed, group_id, new_balances, new_version))

    logger.info(
        "Applied %d balance deltas to group %s (ledger version %s)",
        len(normalized), group_id, new_version,
    )
    return new_version


def run_with_retry(operation: Callable[[], T], *, max_retries: Optional[int] = None) -> T:
    """
    Call ``operation`` until it stops raising ``ConflictError``.

    ``operation`` must re-read whatever state it depends on (at least the
    group ledger version) on every call, so a retry applies the same delta
    set against fresh state instead of doubling it.

    Raises:
        LedgerBusyError: If every attempt conflicted
    """
    attempts = _max_attempts(max_retries)
    last_error = None

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConflictError as e:
            last_error = e
            logger.warning("Ledger conflict, attempt %d of %d: %s", attempt, attempts, e)

    raise LedgerBusyError(
        f"Ledger is busy, giving up after {attempts} attempts. Please try again."
    ) from last_error


# =============================================================================
# Helpers
# =============================================================================

def _max_attempts(value: Optional[int]) -> int:
    if value is None:
        value = getattr(settings, 'LEDGER_MAX_RETRIES', DEFAULT_MAX_RETRIES)
    return max(1, int(value))


def _check_members(group_id, member_ids, allow_inactive: bool) -> None:
    memberships = GroupMembership.objects.filter(group_id=group_id, user_id__in=list(member_ids))
    if not allow_inactive:
        memberships = memberships.filter(is_active=True)

    known = set(memberships.values_list('user_id', flat=True))
    for member_id in member_ids:
        if member_id not in known:
            raise UnknownMemberError(member_id, group_id)


def _send_balance_changed(group_id, new_balances: Dict[UUID, Money], ledger_version: int) -> None:
    for member_id, new_balance in new_balances.items():
        responses = balance_changed.send_robust(
            sender=Balance,
            group_id=group_id,
            member_id=member_id,
            new_balance=new_balance,
            ledger_version=ledger_version,
        )
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    "balance_changed receiver %r failed: %s", receiver, response,
                    exc_info=(type(response), response, response.__traceback__),
                )
