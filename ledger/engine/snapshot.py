"""
Ledger Snapshot

The accounts and shared limits one mutation read from storage, frozen at
the moment they were read. Validation runs against a snapshot, never
against live storage, so a check and the write it guards always see the
same numbers.
"""

from typing import Mapping, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ledger.finance.money import to_amount, to_decimal
from ledger.models.account import Account, AccountType, CreditAccount, SharedCreditLimit


class LedgerSnapshot(BaseModel):
    """Point-in-time view of the rows a mutation touches."""

    model_config = ConfigDict(frozen=True)

    accounts: dict[UUID, Account] = Field(default_factory=dict)
    shared_limits: dict[UUID, SharedCreditLimit] = Field(default_factory=dict)

    def get_account(self, account_id: Optional[UUID]) -> Optional[Account]:
        if account_id is None:
            return None
        return self.accounts.get(account_id)

    def get_shared_limit(self, limit_id: Optional[UUID]) -> Optional[SharedCreditLimit]:
        if limit_id is None:
            return None
        return self.shared_limits.get(limit_id)

    def pool_members(self, limit_id: UUID) -> list[CreditAccount]:
        """Non-archived credit cards linked to a shared limit."""
        return [
            account for account in self.accounts.values()
            if account.type == AccountType.CREDIT
            and account.shared_credit_limit_id == limit_id
            and not account.is_archived
        ]

    def with_deltas(self, deltas: Mapping[UUID, float]) -> 'LedgerSnapshot':
        """
        A new snapshot with `deltas` added to account balances.

        Deltas for accounts not in the snapshot are ignored.
        """
        accounts = dict(self.accounts)
        for account_id, delta in deltas.items():
            account = accounts.get(account_id)
            if account is None:
                continue
            new_balance = to_decimal(to_amount(account.balance) + delta)
            accounts[account_id] = account.model_copy(update={"balance": new_balance})
        return self.model_copy(update={"accounts": accounts})
