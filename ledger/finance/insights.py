"""
Credit Card Insights

Per-card utilization and due-date view, a portfolio summary, and the two
alert lists shown on the dashboard.

DESIGN DECISION: Pooled cards report the pool's availability and
utilization, because that is what limits their spending. In the summary
each pool's limit is counted once, not once per member card.
"""

from datetime import date
from typing import Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ledger.finance.credit import (
    calculate_shared_limit_stats,
    get_available_credit,
    get_credit_card_status,
)
from ledger.finance.due_dates import (
    UtilizationStatus,
    calculate_days_until_due,
    get_utilization_status,
)
from ledger.finance.money import round_money, to_amount
from ledger.models.account import CreditAccount, SharedCreditLimit


class CreditCardInsight(BaseModel):
    """Everything the dashboard shows for one card."""

    account_id: UUID
    name: str
    bank_name: Optional[str] = None
    last_four_digits: Optional[str] = None
    credit_limit: float = Field(
        ...,
        description="Card's own limit (0 when unset); informational for pooled cards"
    )
    outstanding: float
    available_credit: float
    utilization: int
    utilization_status: UtilizationStatus
    billing_cycle_day: Optional[int] = None
    payment_due_day: Optional[int] = None
    days_until_due: Optional[int] = None
    utilization_alert_enabled: bool
    utilization_alert_percent: int
    shared_credit_limit_id: Optional[UUID] = None
    is_part_of_shared_limit: bool = False


class CreditSummary(BaseModel):
    total_cards: int
    total_credit_limit: float
    total_outstanding: float
    total_available: float
    overall_utilization: int


class CreditAlerts(BaseModel):
    high_utilization: list[CreditCardInsight] = Field(default_factory=list)
    upcoming_dues: list[CreditCardInsight] = Field(default_factory=list)


class CreditInsightsReport(BaseModel):
    cards: list[CreditCardInsight] = Field(default_factory=list)
    summary: CreditSummary
    alerts: CreditAlerts


def build_credit_insights(
    cards: Iterable[CreditAccount],
    shared_limits: Iterable[SharedCreditLimit] = (),
    today: Optional[date] = None,
    upcoming_window_days: int = 7,
) -> CreditInsightsReport:
    """
    Build the insights report for a user's credit cards.

    Archived cards are ignored. A card pointing at a shared limit missing
    from `shared_limits` is treated as standalone.
    """
    today = today or date.today()
    active = sorted(
        (card for card in cards if not card.is_archived),
        key=lambda card: card.name,
    )
    limits = {limit.id: limit for limit in shared_limits}

    members: dict[UUID, list[CreditAccount]] = {}
    for card in active:
        if card.shared_credit_limit_id in limits:
            members.setdefault(card.shared_credit_limit_id, []).append(card)

    insights = []
    for card in active:
        pool = limits.get(card.shared_credit_limit_id) if card.is_pooled else None
        own_limit = round_money(to_amount(card.credit_limit))
        status = get_credit_card_status(card.balance, own_limit)

        if pool is not None:
            pool_members = members[pool.id]
            utilization = calculate_shared_limit_stats(pool.total_limit, pool_members).utilization
            available = get_available_credit(card, pool, pool_members)
        else:
            utilization = status.utilization
            available = status.available_credit

        insights.append(CreditCardInsight(
            account_id=card.id,
            name=card.name,
            bank_name=card.bank_name,
            last_four_digits=card.last_four_digits,
            credit_limit=own_limit,
            outstanding=status.outstanding,
            available_credit=available,
            utilization=utilization,
            utilization_status=get_utilization_status(
                utilization, card.utilization_alert_percent
            ),
            billing_cycle_day=card.billing_cycle_day,
            payment_due_day=card.payment_due_day,
            days_until_due=(
                calculate_days_until_due(card.payment_due_day, today)
                if card.payment_due_day else None
            ),
            utilization_alert_enabled=card.utilization_alert_enabled,
            utilization_alert_percent=card.utilization_alert_percent,
            shared_credit_limit_id=card.shared_credit_limit_id,
            is_part_of_shared_limit=pool is not None,
        ))

    summary = _summarize(active, limits, members)

    high_utilization = [
        card for card in insights
        if card.utilization_alert_enabled
        and card.utilization >= card.utilization_alert_percent
    ]
    upcoming_dues = sorted(
        (
            card for card in insights
            if card.days_until_due is not None
            and card.days_until_due <= upcoming_window_days
        ),
        key=lambda card: card.days_until_due,
    )

    return CreditInsightsReport(
        cards=insights,
        summary=summary,
        alerts=CreditAlerts(high_utilization=high_utilization, upcoming_dues=upcoming_dues),
    )


def _summarize(
    cards: list[CreditAccount],
    limits: dict[UUID, SharedCreditLimit],
    members: dict[UUID, list[CreditAccount]],
) -> CreditSummary:
    total_limit = 0.0
    total_outstanding = 0.0
    total_available = 0.0
    seen_pools: set[UUID] = set()

    for card in cards:
        total_outstanding += get_credit_card_status(card.balance, 0).outstanding

        pool = limits.get(card.shared_credit_limit_id) if card.is_pooled else None
        if pool is None:
            limit = to_amount(card.credit_limit)
            total_limit += limit
            total_available += max(0.0, limit + to_amount(card.balance))
        elif pool.id not in seen_pools:
            seen_pools.add(pool.id)
            total_limit += to_amount(pool.total_limit)
            total_available += max(0.0, get_available_credit(card, pool, members[pool.id]))

    total_limit = round_money(total_limit)
    total_outstanding = round_money(total_outstanding)
    overall = int(round_money(total_outstanding / total_limit * 100, 0)) if total_limit > 0 else 0

    return CreditSummary(
        total_cards=len(cards),
        total_credit_limit=total_limit,
        total_outstanding=total_outstanding,
        total_available=round_money(total_available),
        overall_utilization=overall,
    )
