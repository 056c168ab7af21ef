"""
Storage Services Package

Provides abstract interfaces and concrete implementations for ledger storage.
Ships an in-memory backend; a database backend implements the same interfaces.
"""

from ledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    NotFoundError,
    StorageError,
)
from ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemoryUnitOfWork,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "LedgerUnitOfWork",
    # Exceptions
    "ConflictError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "InMemoryUnitOfWork",
]
