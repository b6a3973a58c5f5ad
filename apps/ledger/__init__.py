"""
Ledger App - Group Expense Ledger

This app keeps track of who owes whom inside a group. Expenses are split into
exact per-member shares, their effect is folded into one running balance per
member, and a settlement recommender proposes the payments that square the
group up.

Key Features:
- Fixed-point Money (integer minor units, round-half-to-even at the boundary)
- Equal, exact, percentage and by-shares split policies
- Zero-sum balance ledger with optimistic concurrency (group ledger version)
- Greedy settlement recommendations, deterministic for a given input
- Append-only settlement log

Architecture:
- Pure core: money.py, splits.py, recommender.py (no database access)
- Models: Expense, ExpenseShare, Balance, Settlement
- Services: balance_ledger, expense_management, settlement_recording
- Views: RESTful API nested under a group
- Exceptions: Domain exception hierarchy (exceptions.py)
"""
