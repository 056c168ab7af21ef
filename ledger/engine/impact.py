"""
Transaction Impact

Pure balance arithmetic for transactions. Nothing here reads storage or
decides whether a transaction is allowed; that is `ledger.validation`.

The single rule everything else builds on:

    INCOME    +amount on account_id
    EXPENSE   -amount on account_id
    TRANSFER  -amount on account_id, +amount on destination_account_id

This holds for every account type. On a credit card an EXPENSE makes the
balance more negative (more owed) and a TRANSFER into it is a payment.

DESIGN DECISION: Edits are never written as "revert old, then apply new"
as two separate writes. The flow computes the reversal and the new apply
deltas, validates the new entry against the reverted state, then writes
`merge_deltas(reversal, apply)`: one net figure per account.
"""

from typing import Any, Iterable, Optional, Protocol, Union
from uuid import UUID

from pydantic import BaseModel

from ledger.finance.money import round_money, to_amount
from ledger.models.account import AccountType
from ledger.models.transaction import TransactionType


class LedgerEntry(Protocol):
    """Anything shaped like a transaction: stored entries and drafts both fit."""
    amount: Any
    type: TransactionType
    account_id: UUID
    destination_account_id: Optional[UUID]


class BalanceDelta(BaseModel):
    """A signed change to one account's stored balance."""
    account_id: UUID
    amount: float


class TransactionImpact(BaseModel):
    """Single-account preview of a transaction, for forms."""
    new_balance: float
    balance_change: float
    is_allowed: bool
    error_message: Optional[str] = None


def get_balance_change(amount: Any, transaction_type: Union[TransactionType, str]) -> float:
    """
    Balance change on the source account alone.

    TRANSFER returns 0 here: its two legs only exist in `compute_apply_delta`.
    """
    tx_amount = round_money(abs(to_amount(amount)))
    if transaction_type == TransactionType.INCOME:
        return tx_amount
    if transaction_type == TransactionType.EXPENSE:
        return -tx_amount
    return 0.0


def compute_apply_delta(entry: LedgerEntry) -> list[BalanceDelta]:
    """Deltas that committing `entry` applies to stored balances."""
    amount = round_money(abs(to_amount(entry.amount)))

    if entry.type == TransactionType.INCOME:
        return [BalanceDelta(account_id=entry.account_id, amount=amount)]
    if entry.type == TransactionType.EXPENSE:
        return [BalanceDelta(account_id=entry.account_id, amount=-amount)]

    if entry.destination_account_id is None:
        raise ValueError("Transfer has no destination account")
    return [
        BalanceDelta(account_id=entry.account_id, amount=-amount),
        BalanceDelta(account_id=entry.destination_account_id, amount=amount),
    ]


def compute_reversal_delta(entry: LedgerEntry) -> list[BalanceDelta]:
    """Exact negation of `compute_apply_delta(entry)`."""
    return [
        BalanceDelta(account_id=d.account_id, amount=round_money(-d.amount))
        for d in compute_apply_delta(entry)
    ]


def merge_deltas(*groups: Iterable[BalanceDelta]) -> dict[UUID, float]:
    """
    Net several delta lists into one figure per account.

    Accounts whose deltas cancel out keep a 0 entry so callers still know
    the account was involved.
    """
    merged: dict[UUID, float] = {}
    for group in groups:
        for delta in group:
            merged[delta.account_id] = round_money(
                merged.get(delta.account_id, 0.0) + delta.amount
            )
    return merged


def calculate_transaction_impact(
    current_balance: Any,
    amount: Any,
    transaction_type: Union[TransactionType, str],
    account_type: Union[AccountType, str],
    available_credit: Optional[float] = None,
) -> TransactionImpact:
    """
    Preview what an INCOME or EXPENSE does to one account.

    Credit cards are checked against `available_credit` (0 when not
    given); bank and cash accounts against their balance.
    """
    balance = round_money(to_amount(current_balance))
    tx_amount = round_money(abs(to_amount(amount)))
    change = get_balance_change(tx_amount, transaction_type)

    error_message = None
    if transaction_type == TransactionType.EXPENSE:
        if account_type == AccountType.CREDIT:
            available = round_money(to_amount(available_credit))
            if tx_amount > available:
                error_message = (
                    f"Insufficient credit. Available: {available:.2f}, "
                    f"Required: {tx_amount:.2f}"
                )
        elif tx_amount > balance:
            error_message = (
                f"Insufficient balance. Available: {balance:.2f}, "
                f"Required: {tx_amount:.2f}"
            )

    return TransactionImpact(
        new_balance=round_money(balance + change),
        balance_change=change,
        is_allowed=error_message is None,
        error_message=error_message,
    )


def replay_balance(opening: Any, entries: Iterable[LedgerEntry], account_id: UUID) -> float:
    """Recompute an account balance from an opening figure and its history."""
    balance = round_money(to_amount(opening))
    for entry in entries:
        for delta in compute_apply_delta(entry):
            if delta.account_id == account_id:
                balance = round_money(balance + delta.amount)
    return balance


def report_amount(amount: Any, transaction_type: Union[TransactionType, str]) -> float:
    """
    Signed amount for exports and reports: income positive, expenses and
    transfers negative. Not a balance delta.
    """
    tx_amount = round_money(abs(to_amount(amount)))
    return tx_amount if transaction_type == TransactionType.INCOME else -tx_amount
