"""
Audit Logger

DESIGN DECISION: Every balance-changing action in the ledger is logged.
This provides:
1. Complete traceability of every balance
2. Debugging capability when mutations are rejected or retried
3. User can see history of their ledger

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash a committed mutation if
  logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger.config import LoggingSettings, get_settings
from ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from ledger.services.storage import AuditStorageInterface


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """
    Configure structlog on top of the standard library logger.

    JSON lines by default; the console renderer when `json_output` is off.
    """
    settings = settings or get_settings().logging

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.level),
    )
    logging.getLogger().setLevel(getattr(logging, settings.level))

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (for persistence and user visibility), if given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_created(
        self,
        user_id: str,
        transaction_id: UUID,
        transaction_type: str,
        amount: str,
        deltas: dict[UUID, float],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_created(
            user_id=user_id,
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=amount,
            deltas=deltas,
            correlation_id=correlation_id,
        ))

    async def log_transaction_updated(
        self,
        user_id: str,
        transaction_id: UUID,
        changed_fields: list[str],
        deltas: dict[UUID, float],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(
            user_id=user_id,
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            deltas=deltas,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        user_id: str,
        transaction_id: UUID,
        deltas: dict[UUID, float],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            deltas=deltas,
            correlation_id=correlation_id,
        ))

    async def log_balance_adjusted(
        self,
        user_id: str,
        account_id: UUID,
        previous_balance: float,
        target_balance: float,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balance_adjusted(
            user_id=user_id,
            account_id=account_id,
            previous_balance=previous_balance,
            target_balance=target_balance,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_account_linked(
        self,
        user_id: str,
        account_id: UUID,
        shared_limit_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_linked(
            user_id=user_id,
            account_id=account_id,
            shared_limit_id=shared_limit_id,
            correlation_id=correlation_id,
        ))

    async def log_account_unlinked(
        self,
        user_id: str,
        account_id: UUID,
        shared_limit_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_unlinked(
            user_id=user_id,
            account_id=account_id,
            shared_limit_id=shared_limit_id,
            correlation_id=correlation_id,
        ))

    async def log_mutation_rejected(
        self,
        user_id: str,
        operation: str,
        error_code: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a deterministic rejection (validation, funds, missing record)."""
        await self.log(AuditEventBuilder.mutation_rejected(
            user_id=user_id,
            operation=operation,
            error_code=error_code,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_conflict_retried(
        self,
        user_id: str,
        operation: str,
        attempt: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.conflict_retried(
            user_id=user_id,
            operation=operation,
            attempt=attempt,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            user_id=user_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., saving a transaction).
    Pass it through all subsequent operations.
    """
    return uuid4()
