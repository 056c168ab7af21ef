"""
Main Orchestrator for the Ledger

This module ties together storage, validation and audit, and defines the
end-to-end flows for:
1. Transactions (create, update, delete, balance adjustment)
2. Shared credit limit membership (link, unlink)

DESIGN DECISION: The orchestrator enforces the boundaries:
- A transaction record and its balance update are committed together or
  not at all
- Every check reads the same rows the write is conditioned on
- Every mutation and every rejection is audited

Each operation is one attempt function run inside a fresh unit of work.
When a concurrent writer changed a row the attempt read, commit raises
ConflictError and the whole attempt (read, validate, write) is retried
with exponential backoff. Rejections are never retried.
"""

from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, TypeVar
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledger.audit import AuditLogger, create_correlation_id
from ledger.config import LedgerSettings, get_settings
from ledger.engine import (
    LedgerSnapshot,
    compute_apply_delta,
    compute_reversal_delta,
    merge_deltas,
)
from ledger.finance.money import approximately_equal, round_money, to_amount, to_decimal
from ledger.models.account import Account, AccountType, CreditAccount, SharedCreditLimit
from ledger.models.transaction import (
    Transaction,
    TransactionDraft,
    TransactionType,
    TransactionUpdate,
)
from ledger.queries import LedgerQueryExecutor
from ledger.services.storage import (
    AuditStorageInterface,
    ConflictError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    LedgerUnitOfWork,
)
from ledger.validation import (
    LedgerError,
    RecordNotFoundError,
    SharedLimitError,
    TransactionValidator,
)

logger = structlog.get_logger()

T = TypeVar("T")


class _LedgerFlow:
    """Retry and audit plumbing shared by the mutation flows."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().ledger

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(ConflictError),
            stop=stop_after_attempt(self._settings.max_conflict_retries),
            wait=wait_exponential(
                multiplier=self._settings.conflict_backoff_multiplier,
                max=self._settings.conflict_backoff_max_seconds,
            ),
            reraise=True,
        )

    async def _run(
        self,
        user_id: str,
        operation: str,
        attempt_fn: Callable[[LedgerUnitOfWork], Awaitable[T]],
        correlation_id: UUID,
    ) -> T:
        """
        Run `attempt_fn` in a new unit of work until it commits.

        LedgerErrors are audited and re-raised immediately. ConflictError
        is re-raised once the attempts run out.
        """
        max_attempts = self._settings.max_conflict_retries
        try:
            async for attempt in self._retrying():
                with attempt:
                    number = attempt.retry_state.attempt_number
                    try:
                        async with self._storage.unit_of_work(user_id) as uow:
                            result = await attempt_fn(uow)
                    except ConflictError as e:
                        logger.warning(
                            "ledger_conflict",
                            operation=operation,
                            user_id=user_id,
                            attempt=number,
                            rows=e.rows,
                        )
                        if self._audit_logger and number < max_attempts:
                            await self._audit_logger.log_conflict_retried(
                                user_id=user_id,
                                operation=operation,
                                attempt=number,
                                error_message=str(e),
                                correlation_id=correlation_id,
                            )
                        raise
        except LedgerError as e:
            logger.info(
                "ledger_mutation_rejected",
                operation=operation,
                user_id=user_id,
                code=e.code,
            )
            if self._audit_logger:
                await self._audit_logger.log_mutation_rejected(
                    user_id=user_id,
                    operation=operation,
                    error_code=e.code,
                    error_message=e.message,
                    details={k: v for k, v in e.to_dict().items() if k not in ("code", "message")},
                    correlation_id=correlation_id,
                )
            raise
        except ConflictError as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="ConflictError",
                    error_message=f"{operation} gave up after {max_attempts} attempts: {e}",
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
            raise
        return result

    async def _load_snapshot(
        self,
        uow: LedgerUnitOfWork,
        account_ids: Iterable[Optional[UUID]],
    ) -> LedgerSnapshot:
        """
        Read the given accounts plus, for pooled cards, the shared limit and
        all of its members.
        """
        accounts: dict[UUID, Account] = {}
        shared_limits = {}

        for account_id in account_ids:
            if account_id is None or account_id in accounts:
                continue
            account = await uow.get_account(account_id)
            if account is not None:
                accounts[account_id] = account

        pooled = [
            a for a in list(accounts.values())
            if a.type == AccountType.CREDIT and a.shared_credit_limit_id is not None
        ]
        for account in pooled:
            limit_id = account.shared_credit_limit_id
            if limit_id in shared_limits:
                continue
            shared_limit = await uow.get_shared_limit(limit_id)
            if shared_limit is None:
                continue
            shared_limits[limit_id] = shared_limit
            for member in await uow.get_pool_members(limit_id):
                accounts.setdefault(member.id, member)

        return LedgerSnapshot(accounts=accounts, shared_limits=shared_limits)

    def _stage_balances(
        self,
        uow: LedgerUnitOfWork,
        snapshot: LedgerSnapshot,
        deltas: dict[UUID, float],
    ) -> None:
        """Stage one balance write per account with a non-zero net delta."""
        updated = snapshot.with_deltas(deltas)
        now = datetime.utcnow()
        for account_id, delta in deltas.items():
            account = updated.get_account(account_id)
            if account is None or delta == 0:
                continue
            uow.stage_account(account.model_copy(update={"updated_at": now}))


class TransactionFlow(_LedgerFlow):
    """
    Orchestrates transaction mutations.

    Flow per attempt:
    1. Read the accounts involved (and their shared limit pools)
    2. Validate against that snapshot
    3. Stage the transaction row and net balance deltas
    4. Commit atomically
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        super().__init__(storage, audit_logger, settings)
        self._validator = validator or TransactionValidator()

    async def _check_category(self, uow: LedgerUnitOfWork, category_id: Optional[UUID]) -> None:
        if category_id is None:
            return
        if await uow.get_category(category_id) is None:
            raise RecordNotFoundError(
                RecordNotFoundError.CATEGORY_NOT_FOUND,
                "Category not found",
            )

    async def _insert(
        self,
        uow: LedgerUnitOfWork,
        user_id: str,
        draft: TransactionDraft,
    ) -> tuple[Transaction, dict[UUID, float]]:
        self._validator.validate_shape(draft)
        await self._check_category(uow, draft.category_id)

        snapshot = await self._load_snapshot(
            uow, [draft.account_id, draft.destination_account_id]
        )
        self._validator.validate(draft, snapshot)

        transaction = Transaction.from_draft(draft, user_id)
        deltas = merge_deltas(compute_apply_delta(transaction))

        self._stage_balances(uow, snapshot, deltas)
        uow.stage_transaction(transaction)
        await uow.commit()
        return transaction, deltas

    async def create_transaction(
        self,
        user_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a new transaction and apply it to balances.

        Raises:
            TransactionValidationError, RecordNotFoundError,
            InsufficientFundsError: rejected, nothing written
            ConflictError: concurrent writers kept winning
        """
        correlation_id = correlation_id or create_correlation_id()

        async def attempt(uow: LedgerUnitOfWork):
            return await self._insert(uow, user_id, draft)

        transaction, deltas = await self._run(user_id, "create", attempt, correlation_id)

        logger.info(
            "transaction_created",
            user_id=user_id,
            transaction_id=str(transaction.id),
            type=transaction.type.value,
        )
        if self._audit_logger:
            await self._audit_logger.log_transaction_created(
                user_id=user_id,
                transaction_id=transaction.id,
                transaction_type=transaction.type.value,
                amount=str(transaction.amount),
                deltas=deltas,
                correlation_id=correlation_id,
            )
        return transaction

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        update: TransactionUpdate,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Edit a transaction.

        The new version is validated against balances with the old version
        already reversed, and each account gets one net write.
        """
        correlation_id = correlation_id or create_correlation_id()

        async def attempt(uow: LedgerUnitOfWork):
            existing = await uow.get_transaction(transaction_id)
            if existing is None:
                raise RecordNotFoundError(
                    RecordNotFoundError.TRANSACTION_NOT_FOUND,
                    "Transaction not found",
                )

            draft = update.apply_to(existing)
            self._validator.validate_shape(draft)
            if "category_id" in update.model_fields_set:
                await self._check_category(uow, draft.category_id)

            snapshot = await self._load_snapshot(uow, [
                existing.account_id,
                existing.destination_account_id,
                draft.account_id,
                draft.destination_account_id,
            ])

            reversal = compute_reversal_delta(existing)
            reverted = snapshot.with_deltas(merge_deltas(reversal))
            self._validator.validate(draft, reverted)

            deltas = merge_deltas(reversal, compute_apply_delta(draft))
            self._stage_balances(uow, snapshot, deltas)

            updated = Transaction(**{
                **existing.model_dump(),
                **draft.model_dump(),
                "updated_at": datetime.utcnow(),
            })
            uow.stage_transaction(updated)
            await uow.commit()
            return updated, deltas

        updated, deltas = await self._run(user_id, "update", attempt, correlation_id)

        logger.info("transaction_updated", user_id=user_id, transaction_id=str(transaction_id))
        if self._audit_logger:
            await self._audit_logger.log_transaction_updated(
                user_id=user_id,
                transaction_id=transaction_id,
                changed_fields=sorted(update.model_fields_set),
                deltas=deltas,
                correlation_id=correlation_id,
            )
        return updated

    async def delete_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """Delete a transaction and reverse its balance effect. Returns it."""
        correlation_id = correlation_id or create_correlation_id()

        async def attempt(uow: LedgerUnitOfWork):
            existing = await uow.get_transaction(transaction_id)
            if existing is None:
                raise RecordNotFoundError(
                    RecordNotFoundError.TRANSACTION_NOT_FOUND,
                    "Transaction not found",
                )

            snapshot = await self._load_snapshot(
                uow, [existing.account_id, existing.destination_account_id]
            )
            deltas = merge_deltas(compute_reversal_delta(existing))
            self._stage_balances(uow, snapshot, deltas)
            uow.stage_transaction_delete(existing.id)
            await uow.commit()
            return existing, deltas

        deleted, deltas = await self._run(user_id, "delete", attempt, correlation_id)

        logger.info("transaction_deleted", user_id=user_id, transaction_id=str(transaction_id))
        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                user_id=user_id,
                transaction_id=transaction_id,
                deltas=deltas,
                correlation_id=correlation_id,
            )
        return deleted

    async def adjust_balance(
        self,
        user_id: str,
        account_id: UUID,
        target_balance,
        note: str = "Balance adjustment",
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Bring an account to `target_balance` with a synthesized transaction.

        Above the current balance -> INCOME of the difference; below ->
        EXPENSE of the difference (validated like any expense). Returns None
        when the account is already at the target.
        """
        correlation_id = correlation_id or create_correlation_id()
        target = round_money(to_amount(target_balance))

        async def attempt(uow: LedgerUnitOfWork):
            account = await uow.get_account(account_id)
            if account is None:
                raise RecordNotFoundError(
                    RecordNotFoundError.ACCOUNT_NOT_FOUND,
                    "Account not found",
                )
            current = round_money(to_amount(account.balance))
            difference = round_money(target - current)
            if approximately_equal(difference, 0):
                return None, current, {}

            draft = TransactionDraft(
                amount=to_decimal(abs(difference)),
                type=TransactionType.INCOME if difference > 0 else TransactionType.EXPENSE,
                account_id=account_id,
                note=note or "Balance adjustment",
            )
            transaction, deltas = await self._insert(uow, user_id, draft)
            return transaction, current, deltas

        transaction, previous, deltas = await self._run(
            user_id, "adjust_balance", attempt, correlation_id
        )
        if transaction is None:
            return None

        logger.info(
            "balance_adjusted",
            user_id=user_id,
            account_id=str(account_id),
            transaction_id=str(transaction.id),
        )
        if self._audit_logger:
            await self._audit_logger.log_balance_adjusted(
                user_id=user_id,
                account_id=account_id,
                previous_balance=previous,
                target_balance=target,
                transaction_id=transaction.id,
                correlation_id=correlation_id,
            )
        return transaction


class SharedLimitFlow(_LedgerFlow):
    """
    Orchestrates shared credit limit membership.

    Linking or unlinking also rewrites the shared limit row, so any
    in-flight spend that read the pool conflicts and re-validates against
    the new membership.
    """

    async def _load(
        self,
        uow: LedgerUnitOfWork,
        limit_id: UUID,
        account_id: UUID,
    ) -> tuple[SharedCreditLimit, CreditAccount]:
        shared_limit = await uow.get_shared_limit(limit_id)
        if shared_limit is None:
            raise RecordNotFoundError(
                RecordNotFoundError.SHARED_LIMIT_NOT_FOUND,
                "Shared credit limit not found",
            )
        account = await uow.get_account(account_id)
        if account is None:
            raise RecordNotFoundError(
                RecordNotFoundError.ACCOUNT_NOT_FOUND,
                "Account not found",
            )
        if account.type != AccountType.CREDIT:
            raise SharedLimitError(
                SharedLimitError.NOT_A_CREDIT_ACCOUNT,
                "Only credit cards can be linked to shared credit limits",
            )
        return shared_limit, account

    def _stage_membership(
        self,
        uow: LedgerUnitOfWork,
        shared_limit: SharedCreditLimit,
        account: CreditAccount,
        new_limit_id: Optional[UUID],
    ) -> CreditAccount:
        now = datetime.utcnow()
        updated = account.model_copy(update={
            "shared_credit_limit_id": new_limit_id,
            "updated_at": now,
        })
        uow.stage_account(updated)
        uow.stage_shared_limit(shared_limit.model_copy(update={"updated_at": now}))
        return updated

    async def link_account(
        self,
        user_id: str,
        limit_id: UUID,
        account_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> CreditAccount:
        """Attach a credit card to a shared limit. Returns the updated card."""
        correlation_id = correlation_id or create_correlation_id()

        async def attempt(uow: LedgerUnitOfWork):
            shared_limit, account = await self._load(uow, limit_id, account_id)
            if account.shared_credit_limit_id == limit_id:
                raise SharedLimitError(
                    SharedLimitError.ALREADY_LINKED,
                    "This card is already linked to this shared limit",
                )
            if account.shared_credit_limit_id is not None:
                raise SharedLimitError(
                    SharedLimitError.LINKED_ELSEWHERE,
                    "This card is already linked to another shared limit. Unlink it first.",
                )
            updated = self._stage_membership(uow, shared_limit, account, limit_id)
            await uow.commit()
            return updated

        updated = await self._run(user_id, "link_account", attempt, correlation_id)

        logger.info("account_linked", user_id=user_id, account_id=str(account_id))
        if self._audit_logger:
            await self._audit_logger.log_account_linked(
                user_id=user_id,
                account_id=account_id,
                shared_limit_id=limit_id,
                correlation_id=correlation_id,
            )
        return updated

    async def unlink_account(
        self,
        user_id: str,
        limit_id: UUID,
        account_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> CreditAccount:
        """Detach a credit card from a shared limit. Returns the updated card."""
        correlation_id = correlation_id or create_correlation_id()

        async def attempt(uow: LedgerUnitOfWork):
            shared_limit, account = await self._load(uow, limit_id, account_id)
            if account.shared_credit_limit_id != limit_id:
                raise SharedLimitError(
                    SharedLimitError.NOT_LINKED,
                    "This card is not linked to this shared limit",
                )
            updated = self._stage_membership(uow, shared_limit, account, None)
            await uow.commit()
            return updated

        updated = await self._run(user_id, "unlink_account", attempt, correlation_id)

        logger.info("account_unlinked", user_id=user_id, account_id=str(account_id))
        if self._audit_logger:
            await self._audit_logger.log_account_unlinked(
                user_id=user_id,
                account_id=account_id,
                shared_limit_id=limit_id,
                correlation_id=correlation_id,
            )
        return updated


def create_app_components(
    storage: Optional[LedgerStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> tuple[TransactionFlow, SharedLimitFlow, LedgerQueryExecutor]:
    """
    Factory function to create all application components.

    Args:
        storage: Ledger storage. Defaults to a fresh in-memory store.
        audit_storage: Audit store. Defaults to a fresh in-memory log.

    Returns:
        (transaction_flow, shared_limit_flow, query_executor)
    """
    storage = storage or InMemoryLedgerStorage()
    audit_logger = AuditLogger(audit_storage or InMemoryAuditStorage())
    settings = get_settings().ledger

    transaction_flow = TransactionFlow(
        storage=storage,
        audit_logger=audit_logger,
        settings=settings,
    )
    shared_limit_flow = SharedLimitFlow(
        storage=storage,
        audit_logger=audit_logger,
        settings=settings,
    )
    query_executor = LedgerQueryExecutor(storage, settings=settings)

    return transaction_flow, shared_limit_flow, query_executor
