"""
Transaction Models

A Transaction is a stored ledger entry. Its existence corresponds to
exactly one balance delta already applied to its account(s); the flows in
`ledger.orchestrator` are the only code that creates, edits or deletes one.

TransactionDraft is what a caller proposes; TransactionUpdate is a partial
edit of an existing entry.

DESIGN DECISION: Amounts are always stored positive. Direction comes from
`type`, so a negative amount is a malformed request, not a refund.
Amounts are held in whole cents, the same precision balance deltas are
applied at, so a stored amount is always the delta it stands for.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CENT = Decimal("0.01")


class TransactionType(str, Enum):
    """Direction of a transaction."""
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


def to_cents(amount: Decimal) -> Decimal:
    """Round an amount half-up to whole cents; it must stay positive."""
    try:
        cents = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError("Amount is too large") from None
    if cents <= 0:
        raise ValueError("Amount must be at least 0.01")
    return cents


class TransactionDraft(BaseModel):
    """
    A proposed transaction, before validation against account state.

    Shape rules that need no account data (positive amount, bounded note)
    are enforced here. Transfer destination rules carry ledger error codes
    and live in `ledger.validation`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        gt=0,
        description="Always positive; direction comes from type"
    )
    type: TransactionType
    account_id: UUID = Field(
        ...,
        description="Source account (the only account for INCOME/EXPENSE)"
    )
    destination_account_id: Optional[UUID] = Field(
        default=None,
        description="Receiving account; TRANSFER only"
    )
    category_id: Optional[UUID] = None
    date: datetime = Field(default_factory=datetime.utcnow)
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator('amount')
    @classmethod
    def round_amount(cls, v: Decimal) -> Decimal:
        return to_cents(v)

    @model_validator(mode='after')
    def drop_stray_destination(self) -> 'TransactionDraft':
        """Only transfers have a destination account."""
        if self.type != TransactionType.TRANSFER:
            self.destination_account_id = None
        return self


class TransactionUpdate(BaseModel):
    """
    Partial edit of a stored transaction.

    Unset fields keep their stored value. `destination_account_id` may be
    set explicitly to None, which is different from leaving it unset.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = Field(default=None, gt=0)
    type: Optional[TransactionType] = None
    account_id: Optional[UUID] = None
    destination_account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    date: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator('amount')
    @classmethod
    def round_amount(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return None if v is None else to_cents(v)

    def apply_to(self, existing: 'Transaction') -> TransactionDraft:
        """Merge this edit over a stored transaction into a new draft."""
        changes = {
            name: getattr(self, name)
            for name in self.model_fields_set
        }
        merged = {
            "amount": existing.amount,
            "type": existing.type,
            "account_id": existing.account_id,
            "destination_account_id": existing.destination_account_id,
            "category_id": existing.category_id,
            "date": existing.date,
            "note": existing.note,
        }
        # Explicit None is honoured only where clearing makes sense
        for name, value in changes.items():
            if value is None and name not in ("destination_account_id", "category_id", "note"):
                continue
            merged[name] = value
        return TransactionDraft(**merged)


class Transaction(BaseModel):
    """
    A committed ledger entry.

    CRITICAL: Only the mutation flows persist Transaction objects, and
    always in the same unit of work as the matching balance update.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    amount: Decimal = Field(..., gt=0)
    type: TransactionType
    account_id: UUID
    destination_account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    date: datetime = Field(default_factory=datetime.utcnow)
    note: Optional[str] = Field(default=None, max_length=500)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('amount')
    @classmethod
    def round_amount(cls, v: Decimal) -> Decimal:
        return to_cents(v)

    @model_validator(mode='after')
    def validate_transfer_legs(self) -> 'Transaction':
        """A stored transfer always has two distinct legs."""
        if self.type == TransactionType.TRANSFER:
            if self.destination_account_id is None:
                raise ValueError("Transfer requires a destination account")
            if self.destination_account_id == self.account_id:
                raise ValueError("Transfer source and destination must differ")
        elif self.destination_account_id is not None:
            raise ValueError("Only transfers have a destination account")
        return self

    @classmethod
    def from_draft(cls, draft: TransactionDraft, user_id: str, **overrides) -> 'Transaction':
        """Materialize a validated draft as a ledger entry."""
        data = draft.model_dump()
        data.update(overrides)
        return cls(user_id=user_id, **data)

    def account_ids(self) -> set[UUID]:
        """Every account this entry touches."""
        ids = {self.account_id}
        if self.destination_account_id is not None:
            ids.add(self.destination_account_id)
        return ids
