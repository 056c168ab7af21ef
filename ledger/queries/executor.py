"""
Query Execution Engine

DESIGN DECISION: Derived figures are never stored.
Net worth, monthly totals, pool usage and credit insights are
recomputed from stored rows on every read, with the same pure
calculators the write path uses. A reader can never see a total that
disagrees with the balances.

Reads here are outside any unit of work and never feed a balance write.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from ledger.config import LedgerSettings, get_settings
from ledger.engine.impact import replay_balance, report_amount
from ledger.finance.credit import (
    CreditCardStatus,
    SharedLimitStats,
    calculate_shared_limit_stats,
    get_available_credit,
    get_credit_card_status,
)
from ledger.finance.insights import CreditInsightsReport, build_credit_insights
from ledger.finance.net_worth import NetWorthSummary, calculate_net_worth
from ledger.finance.summary import MonthlySummary, calculate_monthly_summary
from ledger.models.account import AccountType, CreditAccount
from ledger.models.transaction import TransactionType
from ledger.services.storage import LedgerStorageInterface


class QueryExecutionError(Exception):
    """Error during query execution."""
    pass


class CardStatusView(BaseModel):
    """A card's own status plus the availability that actually limits it."""
    account_id: UUID
    status: CreditCardStatus
    available_credit: float
    shared_credit_limit_id: Optional[UUID] = None


class ReportRow(BaseModel):
    """One transaction in report sign convention."""
    transaction_id: UUID
    date: datetime
    type: TransactionType
    account_id: UUID
    destination_account_id: Optional[UUID] = None
    amount: float
    note: Optional[str] = None


class LedgerQueryExecutor:
    """
    Read-side queries over ledger storage.

    GUARANTEES:
    - Only returns figures computed from stored rows
    - Never writes
    - Unknown ids raise QueryExecutionError rather than returning zeros
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger

    async def get_net_worth(self, user_id: str) -> NetWorthSummary:
        accounts = await self._storage.list_accounts(user_id)
        return calculate_net_worth(accounts)

    async def get_shared_limit_stats(self, user_id: str, limit_id: UUID) -> SharedLimitStats:
        shared_limit = await self._storage.get_shared_limit(user_id, limit_id)
        if shared_limit is None:
            raise QueryExecutionError(f"Shared credit limit {limit_id} not found")
        members = await self._pool_members(user_id, limit_id)
        return calculate_shared_limit_stats(shared_limit.total_limit, members)

    async def list_shared_limit_stats(self, user_id: str) -> dict[UUID, SharedLimitStats]:
        """Stats for every shared limit the user owns, keyed by limit id."""
        accounts = await self._storage.list_accounts(user_id)
        result = {}
        for shared_limit in await self._storage.list_shared_limits(user_id):
            members = [
                a for a in accounts
                if a.type == AccountType.CREDIT and a.shared_credit_limit_id == shared_limit.id
            ]
            result[shared_limit.id] = calculate_shared_limit_stats(
                shared_limit.total_limit, members
            )
        return result

    async def get_card_status(self, user_id: str, account_id: UUID) -> CardStatusView:
        account = await self._storage.get_account(user_id, account_id)
        if account is None or account.type != AccountType.CREDIT:
            raise QueryExecutionError(f"Credit card {account_id} not found")

        shared_limit = None
        members: list[CreditAccount] = []
        if account.is_pooled:
            shared_limit = await self._storage.get_shared_limit(
                user_id, account.shared_credit_limit_id
            )
            if shared_limit is not None:
                members = await self._pool_members(user_id, shared_limit.id)

        return CardStatusView(
            account_id=account.id,
            status=get_credit_card_status(account.balance, account.credit_limit),
            available_credit=get_available_credit(account, shared_limit, members),
            shared_credit_limit_id=shared_limit.id if shared_limit else None,
        )

    async def get_credit_insights(
        self,
        user_id: str,
        today: Optional[date] = None,
    ) -> CreditInsightsReport:
        accounts = await self._storage.list_accounts(user_id)
        cards = [a for a in accounts if a.type == AccountType.CREDIT]
        shared_limits = await self._storage.list_shared_limits(user_id)
        return build_credit_insights(
            cards,
            shared_limits,
            today=today,
            upcoming_window_days=self._settings.upcoming_due_window_days,
        )

    async def get_monthly_summary(
        self,
        user_id: str,
        today: Optional[date] = None,
    ) -> MonthlySummary:
        """This month's income and spending against last month's."""
        transactions = await self._storage.list_transactions(user_id)
        return calculate_monthly_summary(transactions, today=today)

    async def replay_account_balance(
        self,
        user_id: str,
        account_id: UUID,
        opening_balance=0,
    ) -> float:
        """Recompute a balance from `opening_balance` and stored history."""
        transactions = await self._storage.list_transactions(user_id, account_id)
        return replay_balance(opening_balance, transactions, account_id)

    async def get_transaction_report(
        self,
        user_id: str,
        account_id: Optional[UUID] = None,
    ) -> list[ReportRow]:
        """Transactions with report-signed amounts, newest first."""
        transactions = await self._storage.list_transactions(user_id, account_id)
        rows = [
            ReportRow(
                transaction_id=tx.id,
                date=tx.date,
                type=tx.type,
                account_id=tx.account_id,
                destination_account_id=tx.destination_account_id,
                amount=report_amount(tx.amount, tx.type),
                note=tx.note,
            )
            for tx in transactions
        ]
        return sorted(rows, key=lambda row: row.date, reverse=True)

    async def _pool_members(self, user_id: str, limit_id: UUID) -> list[CreditAccount]:
        accounts = await self._storage.list_accounts(user_id)
        return [
            a for a in accounts
            if a.type == AccountType.CREDIT and a.shared_credit_limit_id == limit_id
        ]
