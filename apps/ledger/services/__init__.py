"""
Ledger app services layer.

All balance changes go through ``balance_ledger.apply_delta_set``; the
expense and settlement services build delta sets and hand them over.
"""

from .exceptions import (
    LedgerServiceError,
    UnknownMemberError,
    InvalidAmountError,
    InsufficientRelationError,
    ConflictError,
    LedgerBusyError,
    ExpenseVersionConflictError,
    ExpenseAlreadySettledError,
    InvalidExpenseStateError,
    SettlementStateError,
    InsufficientPermissionsError,
    GroupNotFoundError,
    ExpenseNotFoundError,
    SettlementNotFoundError,
    LedgerInvariantError,
)

from .balance_ledger import (
    LedgerState,
    apply_delta_set,
    expense_delta_set,
    settlement_delta_set,
    negate_delta_set,
    combine_delta_sets,
    get_group_version,
    get_group_balances,
    get_member_balance,
    run_with_retry,
)

from .expense_management import (
    create_expense,
    update_expense,
    delete_expense,
    approve_expense,
    reject_expense,
    mark_expense_settled,
    get_group_expenses,
    get_expense_by_id,
)

from .settlement_recording import (
    record_settlement,
    request_settlement,
    complete_settlement,
    cancel_settlement,
    get_recommended_settlements,
    get_group_settlements,
    get_settlement_by_id,
)


__all__ = [
    # Exceptions
    'LedgerServiceError',
    'UnknownMemberError',
    'InvalidAmountError',
    'InsufficientRelationError',
    'ConflictError',
    'LedgerBusyError',
    'ExpenseVersionConflictError',
    'ExpenseAlreadySettledError',
    'InvalidExpenseStateError',
    'SettlementStateError',
    'InsufficientPermissionsError',
    'GroupNotFoundError',
    'ExpenseNotFoundError',
    'SettlementNotFoundError',
    'LedgerInvariantError',

    # Balance ledger
    'LedgerState',
    'apply_delta_set',
    'expense_delta_set',
    'settlement_delta_set',
    'negate_delta_set',
    'combine_delta_sets',
    'get_group_version',
    'get_group_balances',
    'get_member_balance',
    'run_with_retry',

    # Expenses
    'create_expense',
    'update_expense',
    'delete_expense',
    'approve_expense',
    'reject_expense',
    'mark_expense_settled',
    'get_group_expenses',
    'get_expense_by_id',

    # Settlements
    'record_settlement',
    'request_settlement',
    'complete_settlement',
    'cancel_settlement',
    'get_recommended_settlements',
    'get_group_settlements',
    'get_settlement_by_id',
]
