"""
Domain exceptions for the ledger app.

These exceptions represent rejected ledger operations. Services raise them,
views translate them to HTTP responses. Every rejected mutation leaves the
stored balances, expenses and settlements unchanged.

Exception Hierarchy:
    LedgerServiceError (base)
    ├── validation
    │   ├── UnknownMemberError
    │   ├── InvalidAmountError
    │   └── InsufficientRelationError
    ├── concurrency
    │   ├── ConflictError
    │   ├── LedgerBusyError
    │   └── ExpenseVersionConflictError
    ├── business rules
    │   ├── ExpenseAlreadySettledError
    │   ├── InvalidExpenseStateError
    │   ├── SettlementStateError
    │   └── InsufficientPermissionsError
    ├── lookups
    │   ├── GroupNotFoundError
    │   ├── ExpenseNotFoundError
    │   └── SettlementNotFoundError
    └── LedgerInvariantError

Money and split validation errors (``CurrencyMismatchError``,
``SplitMismatchError``, ``InvalidWeightError``, ``EmptyParticipantsError``)
live next to the code that raises them, in ``money.py`` and ``splits.py``.
"""

from ..money import CurrencyMismatchError  # noqa: F401


class LedgerServiceError(Exception):
    """Base exception for all ledger service errors."""
    pass


# =============================================================================
# Validation
# =============================================================================

class UnknownMemberError(LedgerServiceError):
    """Raised when a member is not (or no longer) part of the group."""

    def __init__(self, member_id, group_id, message=None):
        self.member_id = member_id
        self.group_id = group_id
        super().__init__(message or f"Member {member_id} is not part of group {group_id}")


class InvalidAmountError(LedgerServiceError):
    """Raised when an expense or settlement amount is not positive."""
    pass


class InsufficientRelationError(LedgerServiceError):
    """Raised when a settlement does not connect two distinct members."""
    pass


# =============================================================================
# Concurrency
# =============================================================================

class ConflictError(LedgerServiceError):
    """
    Raised when a version-checked write finds a stale version.

    The caller must re-read the current state and retry the whole
    operation with the same (not a doubled) delta set.
    """

    def __init__(self, message, expected_version=None, current_version=None):
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(message)


class LedgerBusyError(LedgerServiceError):
    """Raised when an operation keeps conflicting after all retries."""
    pass


class ExpenseVersionConflictError(LedgerServiceError):
    """Raised when an expense was modified since the caller read it."""

    def __init__(self, expense_id, expected_version, current_version):
        self.expense_id = expense_id
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Expense {expense_id} is at version {current_version}, "
            f"not {expected_version}. Reload it and try again."
        )


# =============================================================================
# Business rules
# =============================================================================

class ExpenseAlreadySettledError(LedgerServiceError):
    """Raised when editing or deleting an expense that was already settled."""
    pass


class InvalidExpenseStateError(LedgerServiceError):
    """Raised on an expense status transition that is not allowed."""
    pass


class SettlementStateError(LedgerServiceError):
    """Raised when a completed or cancelled settlement would be changed."""
    pass


class InsufficientPermissionsError(LedgerServiceError):
    """Raised when the acting member may not perform the operation."""
    pass


# =============================================================================
# Lookups
# =============================================================================

class GroupNotFoundError(LedgerServiceError):
    pass


class ExpenseNotFoundError(LedgerServiceError):
    pass


class SettlementNotFoundError(LedgerServiceError):
    pass


# =============================================================================
# Invariant violations
# =============================================================================

class LedgerInvariantError(LedgerServiceError):
    """
    A ledger invariant would be broken, e.g. a delta set that does not sum
    to zero. This indicates a programming defect: the operation is aborted
    without writing anything and the condition is logged.
    """
    pass
