"""
Ledger Engine

Balance deltas for transactions and the snapshot they are checked against.
"""

from ledger.engine.impact import (
    BalanceDelta,
    TransactionImpact,
    calculate_transaction_impact,
    compute_apply_delta,
    compute_reversal_delta,
    get_balance_change,
    merge_deltas,
    replay_balance,
    report_amount,
)
from ledger.engine.snapshot import LedgerSnapshot

__all__ = [
    "BalanceDelta",
    "LedgerSnapshot",
    "TransactionImpact",
    "calculate_transaction_impact",
    "compute_apply_delta",
    "compute_reversal_delta",
    "get_balance_change",
    "merge_deltas",
    "replay_balance",
    "report_amount",
]
