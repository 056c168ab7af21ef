"""
Integration tests for the mutation flows against the in-memory store.

Covers create/update/delete, balance adjustment, shared limit linking,
replay of long random histories, concurrent spends and conflict retries.
"""

import asyncio
import random

import pytest
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from ledger.audit import AuditLogger
from ledger.config import LedgerSettings
from ledger.finance.money import to_amount
from ledger.models.account import (
    BankAccount,
    CashAccount,
    Category,
    CreditAccount,
    SharedCreditLimit,
)
from ledger.models.audit import LedgerEventType
from ledger.models.transaction import TransactionDraft, TransactionType, TransactionUpdate
from ledger.orchestrator import SharedLimitFlow, TransactionFlow, create_app_components
from ledger.queries import LedgerQueryExecutor
from ledger.services.storage import (
    ConflictError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)
from ledger.validation import (
    InsufficientFundsError,
    RecordNotFoundError,
    SharedLimitError,
    TransactionValidationError,
)

USER = "u1"


def _settings(retries=5):
    return LedgerSettings(
        max_conflict_retries=retries,
        conflict_backoff_multiplier=0.0,
        conflict_backoff_max_seconds=0.0,
    )


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def flow(storage, audit_storage):
    return TransactionFlow(storage, audit_logger=AuditLogger(audit_storage), settings=_settings())


@pytest.fixture
def limits_flow(storage, audit_storage):
    return SharedLimitFlow(storage, audit_logger=AuditLogger(audit_storage), settings=_settings())


async def _seed(storage, *rows):
    for row in rows:
        if isinstance(row, SharedCreditLimit):
            await storage.save_shared_limit(row)
        elif isinstance(row, Category):
            await storage.save_category(row)
        else:
            await storage.save_account(row)


async def _balance(storage, account_id):
    return (await storage.get_account(USER, account_id)).balance


def _draft(amount, tx_type, account_id, destination=None, **kwargs):
    return TransactionDraft(
        amount=Decimal(str(amount)),
        type=tx_type,
        account_id=account_id,
        destination_account_id=destination,
        **kwargs,
    )


class TestCreateTransaction:
    """Tests for TransactionFlow.create_transaction."""

    @pytest.mark.asyncio
    async def test_expense_reduces_bank_balance(self, storage, flow):
        """Test the transaction and balance are written together."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("1000"))
        await _seed(storage, bank)

        tx = await flow.create_transaction(USER, _draft(250, TransactionType.EXPENSE, bank.id))

        assert await _balance(storage, bank.id) == Decimal("750")
        assert await storage.get_transaction(USER, tx.id) is not None

    @pytest.mark.asyncio
    async def test_credit_expense_deepens_debt(self, storage, flow):
        """Test EXPENSE 15000 on CREDIT(-5000, 100000)."""
        card = CreditAccount(user_id=USER, name="Card", balance=Decimal("-5000"), credit_limit=Decimal("100000"))
        await _seed(storage, card)

        await flow.create_transaction(USER, _draft(15000, TransactionType.EXPENSE, card.id))
        assert await _balance(storage, card.id) == Decimal("-20000")

    @pytest.mark.asyncio
    async def test_rejection_writes_nothing(self, storage, flow, audit_storage):
        """Test INSUFFICIENT_CREDIT leaves no record and no balance change."""
        card = CreditAccount(user_id=USER, name="Card", balance=Decimal("-5000"), credit_limit=Decimal("100000"))
        await _seed(storage, card)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await flow.create_transaction(USER, _draft(96000, TransactionType.EXPENSE, card.id))

        assert exc_info.value.available == 95000
        assert exc_info.value.required == 96000
        assert await _balance(storage, card.id) == Decimal("-5000")
        assert await storage.list_transactions(USER) == []

        events = await audit_storage.get_recent_events()
        assert events[0].event_type == LedgerEventType.MUTATION_REJECTED
        assert events[0].error_code == "INSUFFICIENT_CREDIT"

    @pytest.mark.asyncio
    async def test_transfer_pays_card(self, storage, flow):
        """Test both legs of a transfer."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("10000"))
        card = CreditAccount(user_id=USER, name="Card", balance=Decimal("-3000"), credit_limit=Decimal("50000"))
        await _seed(storage, bank, card)

        await flow.create_transaction(USER, _draft(4000, TransactionType.TRANSFER, bank.id, card.id))

        assert await _balance(storage, bank.id) == Decimal("6000")
        assert await _balance(storage, card.id) == Decimal("1000")

    @pytest.mark.asyncio
    async def test_transfer_shape_errors(self, storage, flow):
        """Test DESTINATION_REQUIRED and SELF_TRANSFER."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        with pytest.raises(TransactionValidationError) as exc_info:
            await flow.create_transaction(USER, _draft(10, TransactionType.TRANSFER, bank.id))
        assert exc_info.value.code == "DESTINATION_REQUIRED"

        with pytest.raises(TransactionValidationError) as exc_info:
            await flow.create_transaction(USER, _draft(10, TransactionType.TRANSFER, bank.id, bank.id))
        assert exc_info.value.code == "SELF_TRANSFER"

    @pytest.mark.asyncio
    async def test_unknown_category(self, storage, flow):
        """Test CATEGORY_NOT_FOUND fails before any write."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        with pytest.raises(RecordNotFoundError) as exc_info:
            await flow.create_transaction(
                USER, _draft(10, TransactionType.EXPENSE, bank.id, category_id=uuid4())
            )
        assert exc_info.value.code == "CATEGORY_NOT_FOUND"
        assert await _balance(storage, bank.id) == Decimal("100")

    @pytest.mark.asyncio
    async def test_sub_cent_amount_matches_applied_delta(self, storage, flow):
        """Test the stored amount is exactly what moved the balance."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        tx = await flow.create_transaction(USER, _draft("0.005", TransactionType.EXPENSE, bank.id))
        stored = await storage.get_transaction(USER, tx.id)

        assert stored.amount == Decimal("0.01")
        assert await _balance(storage, bank.id) == Decimal("99.99")
        executor = LedgerQueryExecutor(storage, settings=_settings())
        assert await executor.replay_account_balance(USER, bank.id, 100) == 99.99

        with pytest.raises(ValidationError):
            _draft("0.004", TransactionType.EXPENSE, bank.id)
        assert len(await storage.list_transactions(USER)) == 1

    @pytest.mark.asyncio
    async def test_known_category(self, storage, flow):
        """Test a visible category is accepted."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        food = Category(name="Food", type="EXPENSE", is_system=True)
        await _seed(storage, bank, food)

        tx = await flow.create_transaction(
            USER, _draft(10, TransactionType.EXPENSE, bank.id, category_id=food.id)
        )
        assert tx.category_id == food.id

    @pytest.mark.asyncio
    async def test_other_users_account_not_found(self, storage, flow):
        """Test accounts of another user are invisible."""
        bank = BankAccount(user_id="someone-else", name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        with pytest.raises(RecordNotFoundError) as exc_info:
            await flow.create_transaction(USER, _draft(10, TransactionType.INCOME, bank.id))
        assert exc_info.value.code == "ACCOUNT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_audit_event_recorded(self, storage, flow, audit_storage):
        """Test a successful create is audited with its deltas."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        tx = await flow.create_transaction(USER, _draft(40, TransactionType.EXPENSE, bank.id))

        events = await audit_storage.get_events_by_entity("transaction", tx.id)
        assert len(events) == 1
        assert events[0].event_type == LedgerEventType.TRANSACTION_CREATED
        assert events[0].details["balance_deltas"] == {str(bank.id): -40.0}


class TestSharedLimitSpending:
    """Pool-aware checks through the flow."""

    @pytest.mark.asyncio
    async def test_sibling_debt_limits_spend(self, storage, flow):
        """Test a card cannot spend what a sibling already used."""
        pool = SharedCreditLimit(user_id=USER, name="Pool", total_limit=Decimal("100000"))
        a = CreditAccount(user_id=USER, name="A", balance=Decimal("-70000"),
                          credit_limit=Decimal("100000"), shared_credit_limit_id=pool.id)
        b = CreditAccount(user_id=USER, name="B", balance=Decimal("0"),
                          credit_limit=Decimal("100000"), shared_credit_limit_id=pool.id)
        await _seed(storage, pool, a, b)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await flow.create_transaction(USER, _draft(30001, TransactionType.EXPENSE, b.id))
        assert exc_info.value.is_shared_limit is True
        assert exc_info.value.available == 30000

        await flow.create_transaction(USER, _draft(30000, TransactionType.EXPENSE, b.id))
        assert await _balance(storage, b.id) == Decimal("-30000")


class TestUpdateTransaction:
    """Tests for the edit protocol through the flow."""

    @pytest.mark.asyncio
    async def test_edit_amount_and_revert(self, storage, flow):
        """Test editing then reverting leaves the balance unchanged."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("1000"))
        await _seed(storage, bank)

        tx = await flow.create_transaction(USER, _draft(200, TransactionType.EXPENSE, bank.id))
        after_create = await _balance(storage, bank.id)

        await flow.update_transaction(USER, tx.id, TransactionUpdate(amount=Decimal("350")))
        assert await _balance(storage, bank.id) == Decimal("650")

        await flow.update_transaction(USER, tx.id, TransactionUpdate(amount=Decimal("200")))
        assert await _balance(storage, bank.id) == after_create

    @pytest.mark.asyncio
    async def test_edit_validates_against_reverted_balance(self, storage, flow):
        """Test raising an expense that already drained the account."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        tx = await flow.create_transaction(USER, _draft(100, TransactionType.EXPENSE, bank.id))
        assert await _balance(storage, bank.id) == Decimal("0")

        # 100 is freed by the reversal, so 100 is the ceiling
        await flow.update_transaction(USER, tx.id, TransactionUpdate(amount=Decimal("100")))
        with pytest.raises(InsufficientFundsError) as exc_info:
            await flow.update_transaction(USER, tx.id, TransactionUpdate(amount=Decimal("100.01")))
        assert exc_info.value.available == 100
        assert await _balance(storage, bank.id) == Decimal("0")

    @pytest.mark.asyncio
    async def test_move_expense_between_accounts(self, storage, flow):
        """Test changing the account reverses one and applies the other."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("500"))
        cash = CashAccount(user_id=USER, name="Wallet", balance=Decimal("500"))
        await _seed(storage, bank, cash)

        tx = await flow.create_transaction(USER, _draft(100, TransactionType.EXPENSE, bank.id))
        await flow.update_transaction(USER, tx.id, TransactionUpdate(account_id=cash.id))

        assert await _balance(storage, bank.id) == Decimal("500")
        assert await _balance(storage, cash.id) == Decimal("400")

    @pytest.mark.asyncio
    async def test_expense_to_transfer(self, storage, flow):
        """Test changing type adds the destination leg."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("500"))
        cash = CashAccount(user_id=USER, name="Wallet", balance=Decimal("0"))
        await _seed(storage, bank, cash)

        tx = await flow.create_transaction(USER, _draft(100, TransactionType.EXPENSE, bank.id))
        updated = await flow.update_transaction(USER, tx.id, TransactionUpdate(
            type=TransactionType.TRANSFER,
            destination_account_id=cash.id,
        ))

        assert updated.type == TransactionType.TRANSFER
        assert await _balance(storage, bank.id) == Decimal("400")
        assert await _balance(storage, cash.id) == Decimal("100")

    @pytest.mark.asyncio
    async def test_note_only_edit_keeps_balances(self, storage, flow):
        """Test metadata edits do not touch balances."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("500"))
        await _seed(storage, bank)

        tx = await flow.create_transaction(USER, _draft(100, TransactionType.EXPENSE, bank.id))
        updated = await flow.update_transaction(USER, tx.id, TransactionUpdate(note="Lunch"))

        assert updated.note == "Lunch"
        assert updated.created_at == tx.created_at
        assert await _balance(storage, bank.id) == Decimal("400")

    @pytest.mark.asyncio
    async def test_update_missing_transaction(self, flow):
        """Test TRANSACTION_NOT_FOUND."""
        with pytest.raises(RecordNotFoundError) as exc_info:
            await flow.update_transaction(USER, uuid4(), TransactionUpdate(note="x"))
        assert exc_info.value.code == "TRANSACTION_NOT_FOUND"


class TestDeleteTransaction:
    """Tests for TransactionFlow.delete_transaction."""

    @pytest.mark.asyncio
    async def test_delete_reverses_transfer(self, storage, flow):
        """Test deleting a transfer restores both legs."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("1000"))
        card = CreditAccount(user_id=USER, name="Card", balance=Decimal("-400"), credit_limit=Decimal("1000"))
        await _seed(storage, bank, card)

        tx = await flow.create_transaction(USER, _draft(400, TransactionType.TRANSFER, bank.id, card.id))
        await flow.delete_transaction(USER, tx.id)

        assert await _balance(storage, bank.id) == Decimal("1000")
        assert await _balance(storage, card.id) == Decimal("-400")
        assert await storage.get_transaction(USER, tx.id) is None

    @pytest.mark.asyncio
    async def test_delete_missing(self, flow):
        """Test deleting twice."""
        with pytest.raises(RecordNotFoundError):
            await flow.delete_transaction(USER, uuid4())


class TestAdjustBalance:
    """Tests for TransactionFlow.adjust_balance."""

    @pytest.mark.asyncio
    async def test_adjust_up_creates_income(self, storage, flow):
        """Test a higher target synthesizes INCOME."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        tx = await flow.adjust_balance(USER, bank.id, 175.5)

        assert tx.type == TransactionType.INCOME
        assert tx.amount == Decimal("75.50")
        assert tx.note == "Balance adjustment"
        assert await _balance(storage, bank.id) == Decimal("175.50")

    @pytest.mark.asyncio
    async def test_adjust_down_creates_expense(self, storage, flow):
        """Test a lower target synthesizes EXPENSE."""
        card = CreditAccount(user_id=USER, name="Card", balance=Decimal("-100"), credit_limit=Decimal("1000"))
        await _seed(storage, card)

        tx = await flow.adjust_balance(USER, card.id, "-250", note="Statement sync")

        assert tx.type == TransactionType.EXPENSE
        assert tx.amount == Decimal("150.00")
        assert tx.note == "Statement sync"
        assert await _balance(storage, card.id) == Decimal("-250")

    @pytest.mark.asyncio
    async def test_adjust_noop(self, storage, flow):
        """Test no transaction when already at target."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        assert await flow.adjust_balance(USER, bank.id, Decimal("100.0001")) is None
        assert await storage.list_transactions(USER) == []

    @pytest.mark.asyncio
    async def test_adjust_missing_account(self, flow):
        """Test ACCOUNT_NOT_FOUND."""
        with pytest.raises(RecordNotFoundError):
            await flow.adjust_balance(USER, uuid4(), 10)


class TestSharedLimitFlow:
    """Tests for linking and unlinking cards."""

    @pytest.mark.asyncio
    async def test_link_and_unlink(self, storage, limits_flow, audit_storage):
        """Test a card joins and leaves a pool."""
        pool = SharedCreditLimit(user_id=USER, name="Pool", total_limit=Decimal("1000"))
        card = CreditAccount(user_id=USER, name="Card")
        await _seed(storage, pool, card)

        linked = await limits_flow.link_account(USER, pool.id, card.id)
        assert linked.shared_credit_limit_id == pool.id
        assert (await storage.get_account(USER, card.id)).shared_credit_limit_id == pool.id

        unlinked = await limits_flow.unlink_account(USER, pool.id, card.id)
        assert unlinked.shared_credit_limit_id is None

        events = await audit_storage.get_events_by_entity("account", card.id)
        assert [e.event_type for e in events] == [
            LedgerEventType.ACCOUNT_LINKED,
            LedgerEventType.ACCOUNT_UNLINKED,
        ]

    @pytest.mark.asyncio
    async def test_only_credit_cards(self, storage, limits_flow):
        """Test NOT_A_CREDIT_ACCOUNT."""
        pool = SharedCreditLimit(user_id=USER, name="Pool", total_limit=Decimal("1000"))
        bank = BankAccount(user_id=USER, name="Bank")
        await _seed(storage, pool, bank)

        with pytest.raises(SharedLimitError) as exc_info:
            await limits_flow.link_account(USER, pool.id, bank.id)
        assert exc_info.value.code == "NOT_A_CREDIT_ACCOUNT"

    @pytest.mark.asyncio
    async def test_already_linked(self, storage, limits_flow):
        """Test ALREADY_LINKED and LINKED_ELSEWHERE."""
        pool = SharedCreditLimit(user_id=USER, name="Pool", total_limit=Decimal("1000"))
        other = SharedCreditLimit(user_id=USER, name="Other", total_limit=Decimal("1000"))
        card = CreditAccount(user_id=USER, name="Card", shared_credit_limit_id=pool.id)
        await _seed(storage, pool, other, card)

        with pytest.raises(SharedLimitError) as exc_info:
            await limits_flow.link_account(USER, pool.id, card.id)
        assert exc_info.value.code == "ALREADY_LINKED"

        with pytest.raises(SharedLimitError) as exc_info:
            await limits_flow.link_account(USER, other.id, card.id)
        assert exc_info.value.code == "LINKED_ELSEWHERE"

    @pytest.mark.asyncio
    async def test_unlink_not_linked(self, storage, limits_flow):
        """Test NOT_LINKED."""
        pool = SharedCreditLimit(user_id=USER, name="Pool", total_limit=Decimal("1000"))
        card = CreditAccount(user_id=USER, name="Card")
        await _seed(storage, pool, card)

        with pytest.raises(SharedLimitError) as exc_info:
            await limits_flow.unlink_account(USER, pool.id, card.id)
        assert exc_info.value.code == "NOT_LINKED"

    @pytest.mark.asyncio
    async def test_missing_pool(self, storage, limits_flow):
        """Test SHARED_LIMIT_NOT_FOUND."""
        card = CreditAccount(user_id=USER, name="Card")
        await _seed(storage, card)

        with pytest.raises(RecordNotFoundError) as exc_info:
            await limits_flow.link_account(USER, uuid4(), card.id)
        assert exc_info.value.code == "SHARED_LIMIT_NOT_FOUND"


class TestReplay:
    """Stored balances equal replayed history."""

    @pytest.mark.asyncio
    async def test_random_history_has_no_drift(self, storage, flow):
        """Test a long random mix of mutations replays to the stored balances."""
        rng = random.Random(2024)
        opening = {
            "bank": Decimal("5000"),
            "cash": Decimal("300"),
            "card": Decimal("-1000"),
        }
        bank = BankAccount(user_id=USER, name="Bank", balance=opening["bank"])
        cash = CashAccount(user_id=USER, name="Wallet", balance=opening["cash"])
        card = CreditAccount(user_id=USER, name="Card", balance=opening["card"], credit_limit=Decimal("20000"))
        await _seed(storage, bank, cash, card)
        ids = [bank.id, cash.id, card.id]

        live = []
        accepted = 0
        for _ in range(220):
            roll = rng.random()
            try:
                if roll < 0.15 and live:
                    tx = rng.choice(live)
                    await flow.delete_transaction(USER, tx.id)
                    live.remove(tx)
                elif roll < 0.3 and live:
                    tx = rng.choice(live)
                    amount = Decimal(str(round(rng.uniform(0.01, 400), 2)))
                    updated = await flow.update_transaction(USER, tx.id, TransactionUpdate(amount=amount))
                    live[live.index(tx)] = updated
                else:
                    tx_type = rng.choice(list(TransactionType))
                    amount = round(rng.uniform(0.01, 400), 2)
                    if tx_type == TransactionType.TRANSFER:
                        src, dst = rng.sample(ids, 2)
                        draft = _draft(amount, tx_type, src, dst)
                    else:
                        draft = _draft(amount, tx_type, rng.choice(ids))
                    live.append(await flow.create_transaction(USER, draft))
                accepted += 1
            except InsufficientFundsError:
                pass

        assert accepted >= 100

        executor = LedgerQueryExecutor(storage, settings=_settings())
        for account_id, start in zip(ids, opening.values()):
            replayed = await executor.replay_account_balance(USER, account_id, start)
            stored = to_amount(await _balance(storage, account_id))
            assert replayed == pytest.approx(stored, abs=0.001)


class TestConcurrency:
    """Optimistic concurrency through the flows."""

    @pytest.mark.asyncio
    async def test_two_concurrent_expenses(self, storage, flow):
        """Test two EXPENSE 80 on BANK 100: exactly one succeeds."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        results = await asyncio.gather(
            flow.create_transaction(USER, _draft(80, TransactionType.EXPENSE, bank.id)),
            flow.create_transaction(USER, _draft(80, TransactionType.EXPENSE, bank.id)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientFundsError)
        assert failures[0].code == "INSUFFICIENT_BALANCE"
        assert await _balance(storage, bank.id) == Decimal("20")
        assert len(await storage.list_transactions(USER)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_pool_spends(self, storage, flow):
        """Test sibling cards racing for the last of a shared limit."""
        pool = SharedCreditLimit(user_id=USER, name="Pool", total_limit=Decimal("1000"))
        a = CreditAccount(user_id=USER, name="A", shared_credit_limit_id=pool.id)
        b = CreditAccount(user_id=USER, name="B", shared_credit_limit_id=pool.id)
        await _seed(storage, pool, a, b)

        results = await asyncio.gather(
            flow.create_transaction(USER, _draft(600, TransactionType.EXPENSE, a.id)),
            flow.create_transaction(USER, _draft(600, TransactionType.EXPENSE, b.id)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert failures[0].code == "INSUFFICIENT_CREDIT"
        total = to_amount(await _balance(storage, a.id)) + to_amount(await _balance(storage, b.id))
        assert total == -600

    @pytest.mark.asyncio
    async def test_many_concurrent_incomes_all_land(self, storage, flow):
        """Test retries let every non-conflicting intent commit."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("0"))
        await _seed(storage, bank)

        await asyncio.gather(*[
            flow.create_transaction(USER, _draft(10, TransactionType.INCOME, bank.id))
            for _ in range(4)
        ])

        assert await _balance(storage, bank.id) == Decimal("40")
        assert len(await storage.list_transactions(USER)) == 4


class _InterferingStorage(InMemoryLedgerStorage):
    """Changes an account behind the flow's back before the first commits."""

    def __init__(self, account_id, interference_count=1):
        super().__init__()
        self._account_id = account_id
        self._remaining = interference_count
        self.units_opened = 0

    def unit_of_work(self, user_id):
        self.units_opened += 1
        uow = super().unit_of_work(user_id)
        original_commit = uow.commit

        async def commit():
            if self._remaining > 0:
                self._remaining -= 1
                row = self._accounts[self._account_id]
                await self.save_account(row.value.model_copy(update={
                    "balance": row.value.balance - Decimal("30"),
                }))
            await original_commit()

        uow.commit = commit
        return uow


class TestConflictRetry:
    """Tests for tenacity-driven retries."""

    @pytest.mark.asyncio
    async def test_retry_revalidates_and_succeeds(self, audit_storage):
        """Test a conflict is retried against fresh state."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        storage = _InterferingStorage(bank.id)
        await _seed(storage, bank)
        flow = TransactionFlow(storage, audit_logger=AuditLogger(audit_storage), settings=_settings())

        await flow.create_transaction(USER, _draft(50, TransactionType.EXPENSE, bank.id))

        assert storage.units_opened == 2
        assert await _balance(storage, bank.id) == Decimal("20")
        event_types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert LedgerEventType.CONFLICT_RETRIED in event_types

    @pytest.mark.asyncio
    async def test_retry_can_end_in_rejection(self):
        """Test the re-read state can make the intent inadmissible."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        storage = _InterferingStorage(bank.id)
        await _seed(storage, bank)
        flow = TransactionFlow(storage, settings=_settings())

        with pytest.raises(InsufficientFundsError):
            await flow.create_transaction(USER, _draft(80, TransactionType.EXPENSE, bank.id))
        assert await _balance(storage, bank.id) == Decimal("70")

    @pytest.mark.asyncio
    async def test_exhausted_retries_surface_conflict(self):
        """Test ConflictError after the configured attempts."""
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("1000"))
        storage = _InterferingStorage(bank.id, interference_count=10)
        await _seed(storage, bank)
        flow = TransactionFlow(storage, settings=_settings(retries=3))

        with pytest.raises(ConflictError):
            await flow.create_transaction(USER, _draft(10, TransactionType.EXPENSE, bank.id))
        assert storage.units_opened == 3
        assert await storage.list_transactions(USER) == []


class TestAppComponents:
    """Tests for the component factory."""

    @pytest.mark.asyncio
    async def test_components_share_storage(self):
        """Test flows and queries see the same ledger."""
        storage = InMemoryLedgerStorage()
        transactions, _, queries = create_app_components(storage=storage)
        bank = BankAccount(user_id=USER, name="Bank", balance=Decimal("100"))
        await _seed(storage, bank)

        await transactions.create_transaction(USER, _draft(25, TransactionType.INCOME, bank.id))

        summary = await queries.get_net_worth(USER)
        assert summary.net_worth == 125


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
