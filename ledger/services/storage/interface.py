"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Ship an in-memory store for tests and embedding
2. Put a relational database behind the same flows later
3. Keep the balance rules decoupled from storage implementation

Every balance-changing operation runs inside a LedgerUnitOfWork:

- Reads record the version of each row they return.
- Writes are staged, not applied.
- `commit()` applies all staged writes at once, or none of them. It raises
  ConflictError if any row read in the unit changed since it was read.

A transaction record and the balance update it implies are therefore
never written separately.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from ledger.models.account import Account, Category, CreditAccount, SharedCreditLimit
from ledger.models.audit import AuditEvent
from ledger.models.transaction import Transaction


class LedgerUnitOfWork(ABC):
    """
    One atomic read-validate-write cycle, bound to a single user.

    Rows belonging to other users are invisible: lookups return None.

    Usage:
        async with storage.unit_of_work(user_id) as uow:
            account = await uow.get_account(account_id)
            uow.stage_account(updated)
            await uow.commit()

    Leaving the block without committing (or with an exception) discards
    everything staged.
    """

    def __init__(self, user_id: str):
        self.user_id = user_id

    async def __aenter__(self) -> 'LedgerUnitOfWork':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.rollback()

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        """Read an account and record its version."""
        pass

    @abstractmethod
    async def get_shared_limit(self, limit_id: UUID) -> Optional[SharedCreditLimit]:
        """Read a shared limit row and record its version."""
        pass

    @abstractmethod
    async def get_pool_members(self, limit_id: UUID) -> list[CreditAccount]:
        """
        Read every non-archived card linked to a shared limit.

        Records the version of each member and of the limit row itself, so
        a concurrent link/unlink or sibling spend invalidates this unit.
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """Read a transaction and record its version."""
        pass

    @abstractmethod
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        """Categories visible to this user (their own plus system ones)."""
        pass

    @abstractmethod
    def stage_account(self, account: Account) -> None:
        """Queue an account write; an invalid row raises StorageError."""
        pass

    @abstractmethod
    def stage_shared_limit(self, shared_limit: SharedCreditLimit) -> None:
        pass

    @abstractmethod
    def stage_transaction(self, transaction: Transaction) -> None:
        """Stage an insert or replacement of a transaction."""
        pass

    @abstractmethod
    def stage_transaction_delete(self, transaction_id: UUID) -> None:
        pass

    @abstractmethod
    async def commit(self) -> None:
        """
        Apply all staged writes atomically.

        Raises:
            ConflictError: A row read in this unit changed since it was read
            StorageError: The backend failed; nothing was applied
        """
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Discard staged writes. Safe to call after commit."""
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage.

    Any storage implementation (in-memory, PostgreSQL, etc.) must
    implement these methods. Reads outside a unit of work are for queries
    and never feed a balance write.
    """

    @abstractmethod
    def unit_of_work(self, user_id: str) -> LedgerUnitOfWork:
        """Open a unit of work scoped to `user_id`."""
        pass

    @abstractmethod
    async def get_account(self, user_id: str, account_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    async def list_accounts(
        self,
        user_id: str,
        include_archived: bool = False,
    ) -> list[Account]:
        pass

    @abstractmethod
    async def get_shared_limit(
        self,
        user_id: str,
        limit_id: UUID,
    ) -> Optional[SharedCreditLimit]:
        pass

    @abstractmethod
    async def list_shared_limits(self, user_id: str) -> list[SharedCreditLimit]:
        pass

    @abstractmethod
    async def get_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        account_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Transactions in the order they were first committed.

        With `account_id`, only those touching that account on either leg.
        """
        pass

    @abstractmethod
    async def save_account(self, account: Account) -> None:
        """
        Create or replace an account row outside any transaction flow.

        For account setup (opening balance, limits, archiving). Bumps the
        row version, so in-flight units that read it will conflict.
        """
        pass

    @abstractmethod
    async def save_shared_limit(self, shared_limit: SharedCreditLimit) -> None:
        pass

    @abstractmethod
    async def save_category(self, category: Category) -> None:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one user action, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Events about one transaction or account, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConflictError(StorageError):
    """
    A row read by a unit of work changed before it committed.

    Retryable: re-reading and re-validating may succeed.
    """

    def __init__(self, message: str, rows: Optional[list[str]] = None):
        self.rows = rows or []
        super().__init__(message)
