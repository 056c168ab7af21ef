"""
Net Worth

Assets minus liabilities across a user's active accounts.

- BANK / CASH: a positive balance is an asset, an overdraft is a liability.
- CREDIT: money owed is a liability, credit held by the card is an asset.

Archived accounts are excluded.
"""

from typing import Iterable

from pydantic import BaseModel

from ledger.finance.credit import balance_to_outstanding
from ledger.finance.money import round_money, to_amount
from ledger.models.account import Account, is_asset_account, is_liability_account


class NetWorthSummary(BaseModel):
    total_assets: float
    total_liabilities: float
    net_worth: float


def calculate_net_worth(accounts: Iterable[Account]) -> NetWorthSummary:
    """Sum assets and liabilities; the result does not depend on order."""
    assets = 0.0
    liabilities = 0.0

    for account in accounts:
        if account.is_archived:
            continue
        balance = round_money(to_amount(account.balance))

        if is_liability_account(account.type):
            if balance < 0:
                liabilities += balance_to_outstanding(balance)
            else:
                assets += balance
        elif is_asset_account(account.type):
            if balance >= 0:
                assets += balance
            else:
                liabilities += abs(balance)

    total_assets = round_money(assets)
    total_liabilities = round_money(liabilities)
    return NetWorthSummary(
        total_assets=total_assets,
        total_liabilities=total_liabilities,
        net_worth=round_money(total_assets - total_liabilities),
    )
