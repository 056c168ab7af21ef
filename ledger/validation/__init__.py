"""Transaction validation and ledger error types."""

from ledger.validation.errors import (
    InsufficientFundsError,
    LedgerError,
    RecordNotFoundError,
    SharedLimitError,
    TransactionValidationError,
)
from ledger.validation.validator import TransactionValidator

__all__ = [
    "InsufficientFundsError",
    "LedgerError",
    "RecordNotFoundError",
    "SharedLimitError",
    "TransactionValidationError",
    "TransactionValidator",
]
