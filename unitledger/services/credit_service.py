"""Credit account operations.

A credit account is a non-negative running balance plus an append-only
history. Every movement is tagged with the transaction that caused it, so a
transaction's net effect can be reversed by appending one compensating entry.
Entries are never edited or removed.
"""

import logging
from uuid import uuid4

from unitledger.errors import DoubleReversalError, InsufficientCreditError, InvalidAmountError
from unitledger.schemas.client_config import Track
from unitledger.schemas.ledger import CreditAccount, CreditMovement, CreditMovementReason
from unitledger.services.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class CreditService:
    """Credit balance movements for one client."""

    def __init__(self, clock: Clock | None = None):
        """Initialize with a clock used to timestamp movements."""
        self.clock = clock or SystemClock()

    def _append(
        self,
        account: CreditAccount,
        delta: int,
        transaction_id: str,
        reason: CreditMovementReason,
        track: Track | None,
        note: str | None,
    ) -> CreditMovement:
        new_balance = account.balance + delta
        if new_balance < 0:
            raise InsufficientCreditError(
                f"Credit balance of unit {account.unit_id} pool {account.pool_id} would become "
                f"{new_balance} (current {account.balance}, change {delta})"
            )
        movement = CreditMovement(
            id=f"credit_{uuid4().hex}",
            timestamp=self.clock.timestamp(),
            transaction_id=transaction_id,
            delta=delta,
            reason=reason,
            balance_after=new_balance,
            track=track,
            note=note,
        )
        account.history.append(movement)
        account.balance = new_balance
        logger.debug(
            "Credit %s/%s: %d -> %d (%s, txn=%s)",
            account.unit_id,
            account.pool_id,
            new_balance - delta,
            new_balance,
            reason.value,
            transaction_id,
        )
        return movement

    def add_credit(
        self,
        account: CreditAccount,
        amount: int,
        transaction_id: str,
        reason: CreditMovementReason = CreditMovementReason.PAYMENT_OVERFLOW,
        track: Track | None = None,
        note: str | None = None,
    ) -> CreditMovement:
        """Add credit to an account.

        Raises:
            InvalidAmountError: If amount is not positive
        """
        if amount <= 0:
            raise InvalidAmountError(f"Credit to add must be positive, got {amount}")
        return self._append(account, amount, transaction_id, reason, track, note)

    def use_credit(
        self,
        account: CreditAccount,
        amount: int,
        transaction_id: str,
        reason: CreditMovementReason = CreditMovementReason.APPLIED_TO_CHARGE,
        track: Track | None = None,
        note: str | None = None,
    ) -> int:
        """Consume up to ``amount`` of credit, clamped to the balance.

        Returns:
            Amount actually consumed (0 when the balance is empty; no movement is written then)
        """
        if amount < 0:
            raise InvalidAmountError(f"Credit to use cannot be negative, got {amount}")
        used = min(amount, account.balance)
        if used == 0:
            return 0
        self._append(account, -used, transaction_id, reason, track, note)
        return used

    def is_reversed(self, account: CreditAccount, transaction_id: str) -> bool:
        """Check whether a reversal entry exists for a transaction."""
        return any(
            m.reason == CreditMovementReason.REVERSAL for m in account.movements_for(transaction_id)
        )

    def reverse_movements_for(
        self,
        account: CreditAccount,
        transaction_id: str,
        track: Track | None = None,
    ) -> int:
        """Append one compensating entry cancelling a transaction's net credit effect.

        The entry is written even when the net effect is zero, so it also marks
        the transaction as reversed.

        Returns:
            Signed delta of the compensating entry

        Raises:
            DoubleReversalError: If the transaction was already reversed
            InsufficientCreditError: If credit the transaction created has since been spent
        """
        movements = account.movements_for(transaction_id)
        if any(m.reason == CreditMovementReason.REVERSAL for m in movements):
            raise DoubleReversalError(
                f"Transaction {transaction_id} already reversed on unit {account.unit_id}",
                transaction_id,
            )

        net = sum(m.delta for m in movements)
        self._append(
            account,
            -net,
            transaction_id,
            CreditMovementReason.REVERSAL,
            track,
            f"Reversal of {len(movements)} movement(s)",
        )
        return -net

    def adjust(
        self,
        account: CreditAccount,
        delta: int,
        transaction_id: str,
        note: str | None = None,
        track: Track | None = None,
    ) -> CreditMovement:
        """Apply an administrative credit adjustment.

        Raises:
            InvalidAmountError: If delta is zero
            InsufficientCreditError: If a negative delta exceeds the balance
        """
        if delta == 0:
            raise InvalidAmountError("Credit adjustment must be non-zero")
        return self._append(
            account, delta, transaction_id, CreditMovementReason.MANUAL_ADJUSTMENT, track, note
        )

    def history(self, account: CreditAccount, limit: int = DEFAULT_HISTORY_LIMIT) -> list[CreditMovement]:
        """Get credit history, most recent first."""
        return list(reversed(account.history))[:limit]


__all__ = ["DEFAULT_HISTORY_LIMIT", "CreditService"]
