"""
In-Memory Storage

Process-local implementation of the storage interfaces, used by the test
suite and by embedders that keep ledger state in memory.

Every row carries a version number that increments on each write. A unit
of work remembers the version of each row it read (0 for "absent") and
commit compares them under a single lock before applying anything.

Reads suspend once on the event loop the way a network round-trip would,
so concurrent flows interleave and version conflicts actually happen.
"""

import asyncio
from typing import NamedTuple, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from ledger.models.account import (
    Account,
    AccountType,
    Category,
    CreditAccount,
    SharedCreditLimit,
    parse_account,
)
from ledger.models.audit import AuditEvent
from ledger.models.transaction import Transaction
from ledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    LedgerStorageInterface,
    LedgerUnitOfWork,
    NotFoundError,
    StorageError,
)

logger = structlog.get_logger()

ACCOUNTS = "account"
SHARED_LIMITS = "shared_limit"
TRANSACTIONS = "transaction"


class _Row(NamedTuple):
    version: int
    value: object


def _account_row(account: Account) -> Account:
    """Rebuild an account through its variant so copied rows are validated too."""
    try:
        return parse_account(account.model_dump())
    except ValidationError as e:
        raise StorageError(f"Invalid account {account.id}: {e}") from e


class InMemoryUnitOfWork(LedgerUnitOfWork):
    """Unit of work over an InMemoryLedgerStorage."""

    def __init__(self, storage: 'InMemoryLedgerStorage', user_id: str):
        super().__init__(user_id)
        self._storage = storage
        self._read_versions: dict[tuple[str, UUID], int] = {}
        self._staged: dict[tuple[str, UUID], Optional[object]] = {}
        self._closed = False

    def _read(self, table: str, row_id: UUID):
        row = self._storage._row(table, row_id)
        key = (table, row_id)
        if key not in self._read_versions:
            self._read_versions[key] = row.version if row else 0
        if row is None or row.value.user_id != self.user_id:
            return None
        return row.value.model_copy(deep=True)

    def _stage(self, table: str, row_id: UUID, value: Optional[object]) -> None:
        if self._closed:
            raise StorageError("Unit of work is already closed")
        if value is not None and value.user_id != self.user_id:
            raise StorageError(f"Cannot write {table} {row_id} for another user")
        self._staged[(table, row_id)] = value

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        await asyncio.sleep(0)
        return self._read(ACCOUNTS, account_id)

    async def get_shared_limit(self, limit_id: UUID) -> Optional[SharedCreditLimit]:
        await asyncio.sleep(0)
        return self._read(SHARED_LIMITS, limit_id)

    async def get_pool_members(self, limit_id: UUID) -> list[CreditAccount]:
        await asyncio.sleep(0)
        self._read(SHARED_LIMITS, limit_id)
        members = []
        for account_id, row in list(self._storage._accounts.items()):
            account = row.value
            if (
                account.user_id == self.user_id
                and account.type == AccountType.CREDIT
                and account.shared_credit_limit_id == limit_id
                and not account.is_archived
            ):
                members.append(self._read(ACCOUNTS, account_id))
        return members

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        await asyncio.sleep(0)
        return self._read(TRANSACTIONS, transaction_id)

    async def get_category(self, category_id: UUID) -> Optional[Category]:
        await asyncio.sleep(0)
        category = self._storage._categories.get(category_id)
        if category is None or not category.is_visible_to(self.user_id):
            return None
        return category.model_copy()

    def stage_account(self, account: Account) -> None:
        self._stage(ACCOUNTS, account.id, _account_row(account))

    def stage_shared_limit(self, shared_limit: SharedCreditLimit) -> None:
        self._stage(SHARED_LIMITS, shared_limit.id, shared_limit)

    def stage_transaction(self, transaction: Transaction) -> None:
        self._stage(TRANSACTIONS, transaction.id, transaction)

    def stage_transaction_delete(self, transaction_id: UUID) -> None:
        self._stage(TRANSACTIONS, transaction_id, None)

    async def commit(self) -> None:
        if self._closed:
            raise StorageError("Unit of work is already closed")

        async with self._storage._lock:
            stale = [
                f"{table}:{row_id}"
                for (table, row_id), version in self._read_versions.items()
                if self._storage._version(table, row_id) != version
            ]
            if stale:
                logger.info("unit_of_work_conflict", user_id=self.user_id, rows=stale)
                raise ConflictError(
                    f"{len(stale)} row(s) changed since they were read",
                    rows=stale,
                )

            for (table, row_id), value in self._staged.items():
                if value is None and self._storage._row(table, row_id) is None:
                    raise NotFoundError(f"{table} {row_id} not found")

            for (table, row_id), value in self._staged.items():
                if value is None:
                    self._storage._delete(table, row_id)
                else:
                    self._storage._put(table, row_id, value)

        self._closed = True
        self._staged.clear()

    async def rollback(self) -> None:
        self._staged.clear()
        self._closed = True


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Dict-backed ledger storage.

    Stored models are copied on the way in and out, so callers never hold
    a reference to a live row.
    """

    def __init__(self):
        self._accounts: dict[UUID, _Row] = {}
        self._shared_limits: dict[UUID, _Row] = {}
        self._transactions: dict[UUID, _Row] = {}
        self._categories: dict[UUID, Category] = {}
        self._lock = asyncio.Lock()

    def _table(self, table: str) -> dict[UUID, _Row]:
        if table == ACCOUNTS:
            return self._accounts
        if table == SHARED_LIMITS:
            return self._shared_limits
        if table == TRANSACTIONS:
            return self._transactions
        raise StorageError(f"Unknown table: {table}")

    def _row(self, table: str, row_id: UUID) -> Optional[_Row]:
        return self._table(table).get(row_id)

    def _version(self, table: str, row_id: UUID) -> int:
        row = self._row(table, row_id)
        return row.version if row else 0

    def _put(self, table: str, row_id: UUID, value) -> None:
        rows = self._table(table)
        # Replacing a key keeps its insertion position
        rows[row_id] = _Row(self._version(table, row_id) + 1, value.model_copy(deep=True))

    def _delete(self, table: str, row_id: UUID) -> None:
        rows = self._table(table)
        if row_id not in rows:
            raise NotFoundError(f"{table} {row_id} not found")
        del rows[row_id]

    def _owned(self, table: str, user_id: str, row_id: UUID):
        row = self._row(table, row_id)
        if row is None or row.value.user_id != user_id:
            return None
        return row.value.model_copy(deep=True)

    def unit_of_work(self, user_id: str) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self, user_id)

    async def get_account(self, user_id: str, account_id: UUID) -> Optional[Account]:
        return self._owned(ACCOUNTS, user_id, account_id)

    async def list_accounts(
        self,
        user_id: str,
        include_archived: bool = False,
    ) -> list[Account]:
        return [
            row.value.model_copy(deep=True)
            for row in self._accounts.values()
            if row.value.user_id == user_id
            and (include_archived or not row.value.is_archived)
        ]

    async def get_shared_limit(
        self,
        user_id: str,
        limit_id: UUID,
    ) -> Optional[SharedCreditLimit]:
        return self._owned(SHARED_LIMITS, user_id, limit_id)

    async def list_shared_limits(self, user_id: str) -> list[SharedCreditLimit]:
        return [
            row.value.model_copy(deep=True)
            for row in self._shared_limits.values()
            if row.value.user_id == user_id
        ]

    async def get_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        return self._owned(TRANSACTIONS, user_id, transaction_id)

    async def list_transactions(
        self,
        user_id: str,
        account_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        return [
            row.value.model_copy(deep=True)
            for row in self._transactions.values()
            if row.value.user_id == user_id
            and (account_id is None or account_id in row.value.account_ids())
        ]

    async def save_account(self, account: Account) -> None:
        async with self._lock:
            self._put(ACCOUNTS, account.id, _account_row(account))

    async def save_shared_limit(self, shared_limit: SharedCreditLimit) -> None:
        async with self._lock:
            self._put(SHARED_LIMITS, shared_limit.id, shared_limit)

    async def save_category(self, category: Category) -> None:
        self._categories[category.id] = category.model_copy()


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
