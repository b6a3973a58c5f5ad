"""
Split calculator.

Turns an expense total plus a split policy into per-member shares whose sum
is exactly the total. Each policy is its own small type carrying only the
data it needs:

- ``EqualSplit``: member ids only.
- ``ExactSplit``: an explicit Money amount per member.
- ``PercentageSplit``: a percentage per member (up to 2 decimal places,
  summing to exactly 100).
- ``SharesSplit``: a positive integer share count per member.

All arithmetic is done on integer minor units. Rounding remainders are
handed out one minor unit at a time in a deterministic order, so the same
input always produces the same shares.

Example::

    >>> total = Money(100, 'INR')
    >>> [s.amount.minor_units for s in compute_split(total, EqualSplit(('a', 'b', 'c')))]
    [34, 33, 33]
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, List, Tuple, Union

from .money import Money, CurrencyMismatchError, sum_money


PERCENT_SCALE = 100          # percentages carry at most 2 decimal places
FULL_PERCENT = 100 * PERCENT_SCALE


class SplitError(Exception):
    """Base exception for split calculation errors."""
    pass


class EmptyParticipantsError(SplitError):
    """Raised when a split has no participants."""
    pass


class InvalidWeightError(SplitError):
    """Raised when a participant's amount, percentage or share count is invalid."""
    pass


class DuplicateParticipantError(SplitError):
    """Raised when the same member appears twice in one split."""
    pass


class SplitMismatchError(SplitError):
    """
    Raised when explicit amounts or percentages do not add up.

    ``discrepancy`` is signed: provided minus expected. It is a ``Money`` for
    exact splits and a ``Decimal`` number of percentage points for
    percentage splits.
    """

    def __init__(self, message, discrepancy):
        self.discrepancy = discrepancy
        super().__init__(message)


class SplitInvariantError(SplitError):
    """Computed shares do not sum to the total. Indicates a defect."""
    pass


@dataclass(frozen=True)
class Share:
    member_id: Any
    amount: Money


@dataclass(frozen=True)
class EqualSplit:
    participants: Tuple[Any, ...]

    kind: ClassVar[str] = 'equal'


@dataclass(frozen=True)
class ExactSplit:
    amounts: Tuple[Tuple[Any, Money], ...]

    kind: ClassVar[str] = 'exact'

    @property
    def participants(self):
        return tuple(member_id for member_id, _ in self.amounts)


@dataclass(frozen=True)
class PercentageSplit:
    percentages: Tuple[Tuple[Any, Decimal], ...]

    kind: ClassVar[str] = 'percentage'

    @property
    def participants(self):
        return tuple(member_id for member_id, _ in self.percentages)


@dataclass(frozen=True)
class SharesSplit:
    shares: Tuple[Tuple[Any, int], ...]

    kind: ClassVar[str] = 'by_shares'

    @property
    def participants(self):
        return tuple(member_id for member_id, _ in self.shares)


SplitPolicy = Union[EqualSplit, ExactSplit, PercentageSplit, SharesSplit]

SPLIT_POLICY_KINDS = {
    EqualSplit.kind: EqualSplit,
    ExactSplit.kind: ExactSplit,
    PercentageSplit.kind: PercentageSplit,
    SharesSplit.kind: SharesSplit,
}


def _member_key(member_id):
    return str(member_id)


def _check_participants(member_ids):
    if not member_ids:
        raise EmptyParticipantsError("At least one participant required")

    seen = set()
    for member_id in member_ids:
        key = _member_key(member_id)
        if key in seen:
            raise DuplicateParticipantError(f"Member {member_id} appears more than once in the split")
        seen.add(key)


def compute_split(total: Money, policy: SplitPolicy) -> List[Share]:
    """
    Split ``total`` across the policy's participants.

    Shares are returned in the participants' input order. Nothing is
    persisted here; callers only touch the ledger after this succeeds.

    Raises:
        EmptyParticipantsError: No participants.
        DuplicateParticipantError: A member is listed twice.
        InvalidWeightError: Non-positive amount, percentage or share count.
        SplitMismatchError: Exact amounts or percentages don't add up.
        CurrencyMismatchError: An exact amount is in another currency.
    """
    _check_participants(policy.participants)

    if isinstance(policy, EqualSplit):
        units = _split_equal(total.minor_units, policy.participants)
    elif isinstance(policy, ExactSplit):
        units = _split_exact(total, policy.amounts)
    elif isinstance(policy, PercentageSplit):
        units = _split_percentage(total, policy.percentages)
    elif isinstance(policy, SharesSplit):
        units = _split_by_shares(total.minor_units, policy.shares)
    else:
        raise TypeError(f"Unknown split policy: {type(policy).__name__}")

    shares = [
        Share(member_id=member_id, amount=Money(amount, total.currency))
        for member_id, amount in zip(policy.participants, units)
    ]

    if sum(units) != total.minor_units:
        raise SplitInvariantError(
            f"Split calculation error: {sum(units)} != {total.minor_units}"
        )

    return shares


def _split_equal(total_units, member_ids):
    """
    Integer division with the remainder handed out one unit at a time.

    The first ``remainder`` participants by ascending member id get one
    extra minor unit.
    """
    count = len(member_ids)
    base, remainder = divmod(total_units, count)

    order = sorted(range(count), key=lambda i: _member_key(member_ids[i]))
    units = [base] * count
    for index in order[:remainder]:
        units[index] += 1
    return units


def _split_exact(total, amounts):
    for member_id, amount in amounts:
        if amount.currency != total.currency:
            raise CurrencyMismatchError(total.currency, amount.currency)
        if amount.minor_units <= 0:
            raise InvalidWeightError(f"Amount for member {member_id} must be positive")

    provided = sum_money((amount for _, amount in amounts), total.currency)
    discrepancy = provided.subtract(total)
    if not discrepancy.is_zero:
        raise SplitMismatchError(
            f"Split amounts total {provided} but expense total is {total} "
            f"(discrepancy {discrepancy.minor_units:+d} minor units)",
            discrepancy=discrepancy,
        )
    return [amount.minor_units for _, amount in amounts]


def _to_basis_points(member_id, percentage):
    try:
        value = Decimal(str(percentage))
    except (InvalidOperation, ValueError):
        raise InvalidWeightError(f"Percentage for member {member_id} is not a number")

    if not value.is_finite() or value <= 0 or value > 100:
        raise InvalidWeightError(f"Percentage for member {member_id} must be in (0, 100]")

    scaled = value * PERCENT_SCALE
    if scaled != scaled.to_integral_value():
        raise InvalidWeightError(
            f"Percentage for member {member_id} may have at most 2 decimal places"
        )
    return int(scaled)


def _split_percentage(total, percentages):
    """
    Round each share with banker's rounding, then absorb the rounding error.

    A positive leftover goes to the most under-allocated shares first, a
    negative one is taken from the most over-allocated. Ties go to the
    lowest member id.
    """
    basis_points = [_to_basis_points(member_id, pct) for member_id, pct in percentages]

    total_bp = sum(basis_points)
    if total_bp != FULL_PERCENT:
        discrepancy = Decimal(total_bp - FULL_PERCENT) / PERCENT_SCALE
        raise SplitMismatchError(
            f"Percentages total {Decimal(total_bp) / PERCENT_SCALE}% instead of 100% "
            f"(discrepancy {discrepancy:+}%)",
            discrepancy=discrepancy,
        )

    units = [total.multiply_by_ratio(bp, FULL_PERCENT).minor_units for bp in basis_points]
    leftover = total.minor_units - sum(units)
    if leftover == 0:
        return units

    # residual > 0: share was rounded down; residual < 0: rounded up
    residuals = [
        total.minor_units * bp - amount * FULL_PERCENT
        for bp, amount in zip(basis_points, units)
    ]
    member_ids = [member_id for member_id, _ in percentages]

    if leftover > 0:
        order = sorted(
            range(len(units)),
            key=lambda i: (-residuals[i], _member_key(member_ids[i])),
        )
        for index in order[:leftover]:
            units[index] += 1
    else:
        order = sorted(
            range(len(units)),
            key=lambda i: (residuals[i], _member_key(member_ids[i])),
        )
        for index in order[:-leftover]:
            units[index] -= 1

    return units


def _split_by_shares(total_units, shares):
    """
    Floor each share, then give the remainder to the largest fractional
    remainders first, ties broken by ascending member id.
    """
    counts = []
    for member_id, count in shares:
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidWeightError(f"Share count for member {member_id} must be a positive integer")
        counts.append(count)

    total_shares = sum(counts)
    floors = []
    fractions = []
    for count in counts:
        quotient, fraction = divmod(total_units * count, total_shares)
        floors.append(quotient)
        fractions.append(fraction)

    remainder = total_units - sum(floors)
    member_ids = [member_id for member_id, _ in shares]
    order = sorted(
        range(len(counts)),
        key=lambda i: (-fractions[i], _member_key(member_ids[i])),
    )
    for index in order[:remainder]:
        floors[index] += 1
    return floors
