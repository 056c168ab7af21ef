"""
Transaction Admissibility

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SHAPE:
- Transfer has a destination
- Transfer destination differs from the source
- Needs no account data

STAGE 2 - FUNDS:
- The source account can cover an EXPENSE or the outgoing TRANSFER leg
- Checked against a LedgerSnapshot read in the same unit of work as the
  write it guards

IMPORTANT: Validation never adjusts amounts or balances. A rejection is
deterministic and raised before anything is written.

Balance-increasing legs (INCOME, the receiving side of a TRANSFER) are
never limited: paying more into a card than is owed leaves it in credit.
"""

from uuid import UUID

from ledger.engine.snapshot import LedgerSnapshot
from ledger.finance.credit import get_available_credit
from ledger.finance.money import round_money, to_amount
from ledger.models.account import Account, AccountType
from ledger.models.transaction import TransactionDraft, TransactionType
from ledger.validation.errors import (
    InsufficientFundsError,
    RecordNotFoundError,
    TransactionValidationError,
)


class TransactionValidator:
    """
    Decides whether a draft may be committed against a snapshot.

    Stage 1 can run without a snapshot; stage 2 needs one that contains
    the draft's accounts and, for pooled cards, every pool member.
    """

    def validate_shape(self, draft: TransactionDraft) -> None:
        """Stage 1: transfer destination rules."""
        if draft.type != TransactionType.TRANSFER:
            return
        if draft.destination_account_id is None:
            raise TransactionValidationError(
                TransactionValidationError.DESTINATION_REQUIRED,
                "Destination account is required for transfers",
            )
        if draft.destination_account_id == draft.account_id:
            raise TransactionValidationError(
                TransactionValidationError.SELF_TRANSFER,
                "Cannot transfer to the same account",
            )

    def available_funds(self, account: Account, snapshot: LedgerSnapshot) -> float:
        """
        What the account can spend right now.

        CREDIT -> available credit (pool-aware); BANK / CASH -> balance.
        """
        if account.type == AccountType.CREDIT:
            pool = snapshot.get_shared_limit(account.shared_credit_limit_id)
            if pool is not None:
                return get_available_credit(account, pool, snapshot.pool_members(pool.id))
            return get_available_credit(account)
        return round_money(to_amount(account.balance))

    def require_account(self, snapshot: LedgerSnapshot, account_id: UUID, code: str) -> Account:
        account = snapshot.get_account(account_id)
        if account is None:
            message = (
                "Destination account not found"
                if code == RecordNotFoundError.DESTINATION_NOT_FOUND
                else "Account not found"
            )
            raise RecordNotFoundError(code, message)
        return account

    def validate(self, draft: TransactionDraft, snapshot: LedgerSnapshot) -> None:
        """
        Run both stages. Returns None when the draft is admissible.

        Raises:
            TransactionValidationError: bad transfer shape
            RecordNotFoundError: source or destination missing from snapshot
            InsufficientFundsError: source cannot cover the amount
        """
        self.validate_shape(draft)

        source = self.require_account(
            snapshot, draft.account_id, RecordNotFoundError.ACCOUNT_NOT_FOUND
        )
        if draft.type == TransactionType.TRANSFER:
            self.require_account(
                snapshot, draft.destination_account_id, RecordNotFoundError.DESTINATION_NOT_FOUND
            )

        if draft.type == TransactionType.INCOME:
            return

        required = round_money(abs(to_amount(draft.amount)))
        available = self.available_funds(source, snapshot)
        if required <= available:
            return

        if source.type == AccountType.CREDIT:
            raise InsufficientFundsError(
                InsufficientFundsError.INSUFFICIENT_CREDIT,
                available=available,
                required=required,
                is_shared_limit=snapshot.get_shared_limit(source.shared_credit_limit_id) is not None,
            )
        raise InsufficientFundsError(
            InsufficientFundsError.INSUFFICIENT_BALANCE,
            available=available,
            required=required,
        )
