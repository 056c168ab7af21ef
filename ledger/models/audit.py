"""
Audit Models for the Ledger

Every balance-changing action, and every rejected attempt at one, is
recorded as an AuditEvent. This provides:
1. Traceability of how each balance reached its value
2. Debugging information when a mutation is rejected or retried
3. A history the user can be shown

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class LedgerEventType(str, Enum):
    """
    Types of events we audit.

    One per mutation outcome, plus conflict retries.
    """
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    BALANCE_ADJUSTED = "balance_adjusted"

    # Shared credit limits
    ACCOUNT_LINKED = "account_linked"
    ACCOUNT_UNLINKED = "account_unlinked"

    # Failures
    MUTATION_REJECTED = "mutation_rejected"
    CONFLICT_RETRIED = "conflict_retried"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: LedgerEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - who and what is this about?
    user_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking the events of one user action
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


def _deltas_detail(deltas: dict[UUID, float]) -> dict[str, float]:
    return {str(account_id): amount for account_id, amount in deltas.items()}


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(user_id, tx_id, ...)
        event = AuditEventBuilder.mutation_rejected(user_id, "create", error)
    """

    @staticmethod
    def transaction_created(
        user_id: str,
        transaction_id: UUID,
        transaction_type: str,
        amount: str,
        deltas: dict[UUID, float],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=LedgerEventType.TRANSACTION_CREATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{transaction_type} of {amount} recorded",
            details={
                "type": transaction_type,
                "amount": amount,
                "balance_deltas": _deltas_detail(deltas),
            },
        )

    @staticmethod
    def transaction_updated(
        user_id: str,
        transaction_id: UUID,
        changed_fields: list[str],
        deltas: dict[UUID, float],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=LedgerEventType.TRANSACTION_UPDATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction updated: {', '.join(changed_fields) or 'no changes'}",
            details={
                "changed_fields": changed_fields,
                "balance_deltas": _deltas_detail(deltas),
            },
        )

    @staticmethod
    def transaction_deleted(
        user_id: str,
        transaction_id: UUID,
        deltas: dict[UUID, float],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=LedgerEventType.TRANSACTION_DELETED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction deleted and its balance effect reversed",
            details={"balance_deltas": _deltas_detail(deltas)},
        )

    @staticmethod
    def balance_adjusted(
        user_id: str,
        account_id: UUID,
        previous_balance: float,
        target_balance: float,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=LedgerEventType.BALANCE_ADJUSTED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance adjusted from {previous_balance:.2f} to {target_balance:.2f}",
            details={
                "previous_balance": previous_balance,
                "target_balance": target_balance,
                "transaction_id": str(transaction_id),
            },
        )

    @staticmethod
    def account_linked(
        user_id: str,
        account_id: UUID,
        shared_limit_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=LedgerEventType.ACCOUNT_LINKED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description="Card linked to shared credit limit",
            details={"shared_credit_limit_id": str(shared_limit_id)},
        )

    @staticmethod
    def account_unlinked(
        user_id: str,
        account_id: UUID,
        shared_limit_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=LedgerEventType.ACCOUNT_UNLINKED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description="Card unlinked from shared credit limit",
            details={"shared_credit_limit_id": str(shared_limit_id)},
        )

    @staticmethod
    def mutation_rejected(
        user_id: str,
        operation: str,
        error_code: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=LedgerEventType.MUTATION_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected: {error_code}",
            details={"operation": operation, **(details or {})},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def conflict_retried(
        user_id: str,
        operation: str,
        attempt: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=LedgerEventType.CONFLICT_RETRIED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"{operation} hit a concurrent write, retrying (attempt {attempt})",
            details={"operation": operation, "attempt": attempt},
            error_code="CONFLICT",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=LedgerEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
