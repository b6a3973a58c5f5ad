"""
Settlement recommender.

Greedy debt clearing: the largest creditor is repeatedly matched against
the largest debtor until one side runs out. This is not guaranteed to find
the globally smallest number of payments, but it never emits more than
``n - 1`` payments for ``n`` non-zero balances, runs in O(n log n), and is
fully deterministic (ties are broken by ascending member id).

Pure function: no database access, no side effects.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List

from .money import Money, CurrencyMismatchError


@dataclass(frozen=True)
class BalanceSnapshot:
    """A member's signed balance. Positive means the group owes the member."""

    member_id: Any
    amount: Money


@dataclass(frozen=True)
class SuggestedPayment:
    from_member: Any
    to_member: Any
    amount: Money


def recommend(balances: Iterable[BalanceSnapshot]) -> List[SuggestedPayment]:
    """
    Propose member-to-member payments that bring every balance to zero.

    For a zero-sum input the emitted amounts add up to the sum of the
    positive balances, and applying every payment zeroes the group.

    Raises:
        CurrencyMismatchError: If the balances are not all in one currency.
    """
    balances = list(balances)
    if not balances:
        return []

    currency = balances[0].amount.currency
    for balance in balances:
        if balance.amount.currency != currency:
            raise CurrencyMismatchError(currency, balance.amount.currency)

    # Working copies as [member_id, remaining_units]; settled balances dropped
    creditors = [
        [b.member_id, b.amount.minor_units] for b in balances if b.amount.minor_units > 0
    ]
    debtors = [
        [b.member_id, b.amount.minor_units] for b in balances if b.amount.minor_units < 0
    ]

    creditors.sort(key=lambda entry: (-entry[1], str(entry[0])))
    debtors.sort(key=lambda entry: (entry[1], str(entry[0])))

    payments = []
    i = j = 0
    while i < len(creditors) and j < len(debtors):
        creditor = creditors[i]
        debtor = debtors[j]

        transfer = min(creditor[1], -debtor[1])
        if transfer >= 1:
            payments.append(SuggestedPayment(
                from_member=debtor[0],
                to_member=creditor[0],
                amount=Money(transfer, currency),
            ))

        creditor[1] -= transfer
        debtor[1] += transfer

        if creditor[1] == 0:
            i += 1
        if debtor[1] == 0:
            j += 1

    return payments
