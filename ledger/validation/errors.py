"""
Ledger Errors

Every rejection the ledger makes carries a machine-readable `code`. A
presentation layer turns `to_dict()` into its own error response without
parsing messages.

Storage-level failures (including retryable version conflicts) live in
`ledger.services.storage`, not here.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base exception for ledger rejections."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class TransactionValidationError(LedgerError):
    """Malformed transaction (transfer without a destination, self-transfer)."""

    DESTINATION_REQUIRED = "DESTINATION_REQUIRED"
    SELF_TRANSFER = "SELF_TRANSFER"


class InsufficientFundsError(LedgerError):
    """The source account cannot cover the amount."""

    INSUFFICIENT_CREDIT = "INSUFFICIENT_CREDIT"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        code: str,
        available: float,
        required: float,
        is_shared_limit: bool = False,
        message: Optional[str] = None,
    ):
        self.available = available
        self.required = required
        self.is_shared_limit = is_shared_limit
        if message is None:
            if code == self.INSUFFICIENT_CREDIT:
                label = "Insufficient shared credit" if is_shared_limit else "Insufficient credit"
            else:
                label = "Insufficient balance"
            message = f"{label}. Available: {available:.2f}, Required: {required:.2f}"
        super().__init__(code, message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            available=self.available,
            required=self.required,
            is_shared_limit=self.is_shared_limit,
        )
        return data


class RecordNotFoundError(LedgerError):
    """A referenced record does not exist for this user."""

    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    DESTINATION_NOT_FOUND = "DESTINATION_NOT_FOUND"
    CATEGORY_NOT_FOUND = "CATEGORY_NOT_FOUND"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    SHARED_LIMIT_NOT_FOUND = "SHARED_LIMIT_NOT_FOUND"


class SharedLimitError(LedgerError):
    """Invalid change to shared credit limit membership."""

    NOT_A_CREDIT_ACCOUNT = "NOT_A_CREDIT_ACCOUNT"
    ALREADY_LINKED = "ALREADY_LINKED"
    LINKED_ELSEWHERE = "LINKED_ELSEWHERE"
    NOT_LINKED = "NOT_LINKED"
