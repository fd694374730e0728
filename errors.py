"""Failure types raised by the ledger services.

Every error carries a stable ``code`` so callers can branch on the reason
without parsing messages. The API layer maps codes to HTTP statuses.
"""

from typing import Optional


class LedgerError(ValueError):
    code = "ledger_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    code = "validation_error"


class NotFound(LedgerError):
    code = "not_found"


class CategoryNotFound(NotFound):
    pass


class TransactionNotFound(NotFound):
    pass


class BudgetNotFound(NotFound):
    pass


class AllocationNotFound(NotFound):
    pass


class SpendingNotFound(NotFound):
    pass


class TypeMismatch(LedgerError):
    code = "type_mismatch"


class TransactionNotIncome(TypeMismatch):
    pass


class TransactionNotExpense(TypeMismatch):
    pass


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"


class StoreError(LedgerError):
    code = "store_error"


class AggregationFailed(LedgerError):
    code = "aggregation_failed"

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause
