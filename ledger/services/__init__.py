"""Services package."""

from ledger.services.storage import (
    AuditStorageInterface,
    ConflictError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConflictError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    "NotFoundError",
    "StorageError",
]
