"""
Data Models Package

This package contains all Pydantic models used by the ledger.
All data flowing through the system must conform to these schemas.
"""

from ledger.models.account import (
    Account,
    AccountType,
    BankAccount,
    CashAccount,
    Category,
    CreditAccount,
    SharedCreditLimit,
    is_asset_account,
    is_liability_account,
    parse_account,
)
from ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditSeverity,
    LedgerEventType,
)
from ledger.models.transaction import (
    Transaction,
    TransactionDraft,
    TransactionType,
    TransactionUpdate,
)

__all__ = [
    # Account models
    "Account",
    "AccountType",
    "BankAccount",
    "CashAccount",
    "Category",
    "CreditAccount",
    "SharedCreditLimit",
    "is_asset_account",
    "is_liability_account",
    "parse_account",
    # Transaction models
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    "TransactionUpdate",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditSeverity",
    "LedgerEventType",
]
