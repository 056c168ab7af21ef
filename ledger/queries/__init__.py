"""Query execution package."""

from ledger.queries.executor import (
    CardStatusView,
    LedgerQueryExecutor,
    QueryExecutionError,
    ReportRow,
)

__all__ = ["CardStatusView", "LedgerQueryExecutor", "QueryExecutionError", "ReportRow"]
