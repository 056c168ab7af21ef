"""
Credit Card Calculations

CRITICAL: A stored credit card balance is inverted relative to what users
see. Negative means money owed, positive means the card holds credit (an
overpayment or refund), zero means settled.

`outstanding_to_balance` and `balance_to_outstanding` are the only place
this inversion is written. Everything user-facing about a card
(outstanding, available credit, utilization) comes out of
`get_credit_card_status`, `calculate_shared_limit_stats` or
`get_available_credit`.

DESIGN DECISION: While a card is linked to a shared limit its own
`credit_limit` is ignored entirely; the pool's `total_limit` is the only
limit for availability and utilization.
"""

from typing import Any, Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ledger.finance.money import round_money, to_amount
from ledger.models.account import CreditAccount, SharedCreditLimit


class CreditCardStatus(BaseModel):
    """User-facing view of one card against its own limit."""

    outstanding: float = Field(..., ge=0, description="Amount owed")
    credit_balance: float = Field(..., ge=0, description="Overpayment held by the card")
    has_credit: bool
    available_credit: float = Field(
        ...,
        description="Limit plus signed balance; may exceed the limit when in credit"
    )
    utilization: int = Field(
        ...,
        ge=0,
        description="Percent of limit used, rounded; can exceed 100"
    )


class LinkedAccountStats(BaseModel):
    """One member card's contribution to a shared limit."""

    account_id: Optional[UUID] = None
    name: Optional[str] = None
    balance: float
    outstanding: float
    credit_balance: float


class SharedLimitStats(BaseModel):
    """Aggregate usage of a shared credit limit."""

    total_limit: float
    total_outstanding: float
    total_credit_balance: float
    net_outstanding: float
    available_credit: float
    utilization: int
    accounts: list[LinkedAccountStats] = Field(default_factory=list)


def outstanding_to_balance(outstanding: Any) -> float:
    """User-entered amount owed -> stored credit balance."""
    balance = -round_money(to_amount(outstanding))
    return balance if balance != 0 else 0.0


def balance_to_outstanding(balance: Any) -> float:
    """Stored credit balance -> signed amount owed."""
    outstanding = -round_money(to_amount(balance))
    return outstanding if outstanding != 0 else 0.0


def get_credit_card_status(balance: Any, credit_limit: Any) -> CreditCardStatus:
    """
    Compute outstanding, credit held, available credit and utilization.

    Never raises: a missing or zero limit gives 0% utilization.
    """
    bal = round_money(to_amount(balance))
    limit = round_money(to_amount(credit_limit))

    has_credit = bal > 0
    outstanding = 0.0 if has_credit else abs(balance_to_outstanding(bal))
    credit_balance = bal if has_credit else 0.0

    if has_credit or limit <= 0:
        utilization = 0
    else:
        utilization = int(round_money(outstanding / limit * 100, 0))

    return CreditCardStatus(
        outstanding=outstanding,
        credit_balance=credit_balance,
        has_credit=has_credit,
        available_credit=round_money(limit + bal),
        utilization=utilization,
    )


def _member_stats(member: Any) -> LinkedAccountStats:
    if isinstance(member, CreditAccount):
        account_id, name, raw = member.id, member.name, member.balance
    elif isinstance(member, dict):
        account_id, name, raw = member.get("id"), member.get("name"), member.get("balance")
    else:
        account_id, name, raw = None, None, member

    balance = round_money(to_amount(raw))
    return LinkedAccountStats(
        account_id=account_id,
        name=name,
        balance=balance,
        outstanding=max(balance_to_outstanding(balance), 0.0),
        credit_balance=max(balance, 0.0),
    )


def calculate_shared_limit_stats(total_limit: Any, members: Iterable[Any]) -> SharedLimitStats:
    """
    Aggregate a pool of cards drawing on one limit.

    `members` may be CreditAccount objects, dicts with a `balance` key, or
    bare balances. Credit held on one card offsets what is owed on another.
    """
    limit = round_money(to_amount(total_limit))
    accounts = [_member_stats(m) for m in members]

    total_outstanding = round_money(sum(a.outstanding for a in accounts))
    total_credit = round_money(sum(a.credit_balance for a in accounts))
    net_outstanding = round_money(max(0.0, total_outstanding - total_credit))

    if limit > 0:
        utilization = int(round_money(net_outstanding / limit * 100, 0))
    else:
        utilization = 0

    return SharedLimitStats(
        total_limit=limit,
        total_outstanding=total_outstanding,
        total_credit_balance=total_credit,
        net_outstanding=net_outstanding,
        available_credit=round_money(limit - net_outstanding),
        utilization=utilization,
        accounts=accounts,
    )


def get_available_credit(
    account: CreditAccount,
    shared_limit: Optional[SharedCreditLimit] = None,
    pool_members: Iterable[CreditAccount] = (),
) -> float:
    """
    Credit the card can still spend.

    Pooled cards: pool limit plus every member's signed balance (the
    account itself must be among `pool_members`). Otherwise the card's own
    limit plus its signed balance.
    """
    if account.is_pooled and shared_limit is not None:
        total = to_amount(shared_limit.total_limit)
        for member in pool_members:
            total += round_money(to_amount(member.balance))
        return round_money(total)

    return get_credit_card_status(account.balance, account.credit_limit).available_credit
