"""
Account Models

Accounts are a tagged variant on `type`: BankAccount, CashAccount and
CreditAccount share the common fields, and only CreditAccount carries
limits, billing days and alert settings.

CRITICAL: Balance sign conventions differ by variant.
- BANK / CASH: balance is spendable money. Negative means overdraft.
- CREDIT: balance is inverted. Negative = amount owed, positive = credit
  (overpayment/refund), zero = settled.

Code that turns a stored credit balance into user-facing numbers goes
through `ledger.finance.credit`, never through its own sign logic.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from ledger.config import get_settings


class AccountType(str, Enum):
    """Supported account types."""
    BANK = "BANK"
    CASH = "CASH"
    CREDIT = "CREDIT"


def is_liability_account(account_type: AccountType) -> bool:
    """Credit cards are the liability account type."""
    return account_type == AccountType.CREDIT


def is_asset_account(account_type: AccountType) -> bool:
    """Bank and cash accounts hold assets."""
    return account_type in (AccountType.BANK, AccountType.CASH)


def _default_currency() -> str:
    return get_settings().ledger.default_currency


def _default_alert_percent() -> int:
    return get_settings().ledger.default_alert_threshold


class BaseAccount(BaseModel):
    """Fields every account variant has."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique account ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the account"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Display name"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Signed stored balance (see module docstring for sign rules)"
    )
    currency: str = Field(
        default_factory=_default_currency,
        min_length=3,
        max_length=3,
        description="ISO code; new accounts take LEDGER_DEFAULT_CURRENCY"
    )
    bank_name: Optional[str] = Field(default=None, max_length=50)
    last_four_digits: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}$",
        description="Last four digits of the card or account number"
    )
    description: Optional[str] = Field(default=None, max_length=100)
    is_archived: bool = False

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class BankAccount(BaseAccount):
    """Salary, savings or current account."""
    type: Literal["BANK"] = "BANK"


class CashAccount(BaseAccount):
    """Physical cash or a digital wallet."""
    type: Literal["CASH"] = "CASH"


class CreditAccount(BaseAccount):
    """
    A credit card.

    When `shared_credit_limit_id` is set the card draws on the pool's
    `total_limit` and its own `credit_limit` is ignored.
    """
    type: Literal["CREDIT"] = "CREDIT"

    credit_limit: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Card's own limit; unused while linked to a shared limit"
    )
    shared_credit_limit_id: Optional[UUID] = None

    billing_cycle_day: Optional[int] = Field(default=None, ge=1, le=31)
    payment_due_day: Optional[int] = Field(default=None, ge=1, le=31)

    utilization_alert_enabled: bool = True
    utilization_alert_percent: int = Field(
        default_factory=_default_alert_percent,
        ge=0,
        le=100,
        description="Warning threshold; new cards take LEDGER_DEFAULT_ALERT_THRESHOLD"
    )

    @property
    def is_pooled(self) -> bool:
        return self.shared_credit_limit_id is not None


Account = Annotated[
    Union[BankAccount, CashAccount, CreditAccount],
    Field(discriminator="type"),
]

account_adapter: TypeAdapter[Account] = TypeAdapter(Account)


def parse_account(data: dict) -> Account:
    """Build the right account variant from a dict carrying `type`."""
    return account_adapter.validate_python(data)


class SharedCreditLimit(BaseModel):
    """
    One credit limit shared by several cards (e.g. add-on cards from the
    same issuer). Member cards point back via `shared_credit_limit_id`.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=50)
    total_limit: Decimal = Field(..., ge=0)
    description: Optional[str] = Field(default=None, max_length=200)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Category(BaseModel):
    """
    Transaction category. Carries no financial meaning; the ledger only
    checks that a referenced category exists and is visible to the user.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: Optional[str] = Field(
        default=None,
        description="Owner; None for system categories visible to everyone"
    )
    name: str = Field(..., min_length=1, max_length=30)
    type: str = Field(..., pattern="^(INCOME|EXPENSE|TRANSFER)$")
    is_system: bool = False

    @model_validator(mode='after')
    def validate_owner(self) -> 'Category':
        """User categories need an owner; system ones must not have one."""
        if self.is_system and self.user_id is not None:
            raise ValueError("System categories cannot belong to a user")
        if not self.is_system and self.user_id is None:
            raise ValueError("User categories need a user_id")
        return self

    def is_visible_to(self, user_id: str) -> bool:
        return self.is_system or self.user_id == user_id
