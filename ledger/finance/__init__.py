"""
Finance Calculators

Pure functions over account data. Nothing here reads storage or settings.
"""

from ledger.finance.credit import (
    CreditCardStatus,
    LinkedAccountStats,
    SharedLimitStats,
    balance_to_outstanding,
    calculate_shared_limit_stats,
    get_available_credit,
    get_credit_card_status,
    outstanding_to_balance,
)
from ledger.finance.due_dates import (
    UtilizationStatus,
    calculate_days_until_due,
    get_utilization_status,
)
from ledger.finance.insights import CreditInsightsReport, build_credit_insights
from ledger.finance.money import (
    approximately_equal,
    calculate_percentage,
    calculate_percentage_change,
    parse_amount,
    round_money,
    to_amount,
    to_decimal,
)
from ledger.finance.net_worth import NetWorthSummary, calculate_net_worth
from ledger.finance.summary import MonthlySummary, calculate_monthly_summary

__all__ = [
    # Money
    "approximately_equal",
    "calculate_percentage",
    "calculate_percentage_change",
    "parse_amount",
    "round_money",
    "to_amount",
    "to_decimal",
    # Credit
    "CreditCardStatus",
    "LinkedAccountStats",
    "SharedLimitStats",
    "balance_to_outstanding",
    "calculate_shared_limit_stats",
    "get_available_credit",
    "get_credit_card_status",
    "outstanding_to_balance",
    # Aggregates
    "CreditInsightsReport",
    "MonthlySummary",
    "NetWorthSummary",
    "UtilizationStatus",
    "build_credit_insights",
    "calculate_days_until_due",
    "calculate_monthly_summary",
    "calculate_net_worth",
    "get_utilization_status",
]
