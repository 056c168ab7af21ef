"""
Monthly Summary

Income and spending for the current calendar month against the previous
one. Transfers move money between the user's own accounts and are left
out of both figures.
"""

from datetime import date
from typing import Iterable, Optional

from pydantic import BaseModel

from ledger.finance.money import (
    calculate_percentage,
    calculate_percentage_change,
    round_money,
    to_amount,
)
from ledger.models.transaction import Transaction, TransactionType


class MonthlySummary(BaseModel):
    month_start: date
    monthly_income: float
    monthly_expenses: float
    previous_income: float
    previous_expenses: float
    income_change: float
    expense_change: float
    savings_rate: float
    transaction_count: int


def _previous_month_start(month_start: date) -> date:
    if month_start.month == 1:
        return month_start.replace(year=month_start.year - 1, month=12)
    return month_start.replace(month=month_start.month - 1)


def calculate_monthly_summary(
    transactions: Iterable[Transaction],
    today: Optional[date] = None,
) -> MonthlySummary:
    """
    Totals for the month containing `today` and the month before it.

    Changes are percentages of the previous month's figure. The savings
    rate is what was kept out of the month's income, and 0 with no income.
    """
    today = today or date.today()
    month_start = today.replace(day=1)
    previous_start = _previous_month_start(month_start)

    income = expenses = previous_income = previous_expenses = 0.0
    count = 0
    for tx in transactions:
        if tx.type == TransactionType.TRANSFER:
            continue
        day = tx.date.date()
        amount = to_amount(tx.amount)
        if month_start <= day <= today:
            count += 1
            if tx.type == TransactionType.INCOME:
                income += amount
            else:
                expenses += amount
        elif previous_start <= day < month_start:
            if tx.type == TransactionType.INCOME:
                previous_income += amount
            else:
                previous_expenses += amount

    income = round_money(income)
    expenses = round_money(expenses)
    previous_income = round_money(previous_income)
    previous_expenses = round_money(previous_expenses)
    return MonthlySummary(
        month_start=month_start,
        monthly_income=income,
        monthly_expenses=expenses,
        previous_income=previous_income,
        previous_expenses=previous_expenses,
        income_change=calculate_percentage_change(income, previous_income),
        expense_change=calculate_percentage_change(expenses, previous_expenses),
        savings_rate=calculate_percentage(income - expenses, income),
        transaction_count=count,
    )
