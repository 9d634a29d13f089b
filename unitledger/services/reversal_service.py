"""Exact reversal of a recorded payment distribution.

A reversal replays the stored DistributionResult backwards. It never asks
what the payment "should" have been today: penalties move with time, so only
the amounts actually recorded can be taken back.

Every line and the credit effect are validated before anything is touched, so
a failing reversal leaves the ledger objects as they were.
"""

import logging
from datetime import date
from typing import Mapping

from unitledger.errors import DoubleReversalError, InsufficientCreditError, LedgerCorruptionError
from unitledger.schemas.client_config import Track
from unitledger.schemas.ledger import (
    BillingPeriod,
    CreditAccount,
    CreditMovementReason,
    DistributionLine,
    DistributionResult,
    ReversalResult,
    TrackLedger,
)
from unitledger.services.credit_service import CreditService
from unitledger.services.period_ledger import PeriodLedgerService

logger = logging.getLogger(__name__)


class ReversalEngine:
    """Applies the inverse of a stored DistributionResult."""

    def __init__(self, period_ledger: PeriodLedgerService, credit_service: CreditService):
        self.period_ledger = period_ledger
        self.credit_service = credit_service

    def _locate(
        self,
        ledgers: Mapping[Track, TrackLedger],
        line: DistributionLine,
        transaction_id: str,
    ) -> BillingPeriod:
        key = line.period_key
        ledger = ledgers.get(key.track)
        period = ledger.find(key.fiscal_year, key.fiscal_month) if ledger is not None else None
        if period is None:
            logger.critical("Ledger corruption: %s recorded a line on missing period %s", transaction_id, key)
            raise LedgerCorruptionError(f"Period {key} recorded by {transaction_id} does not exist")
        if period.base_paid < line.base_applied or period.penalty_paid < line.penalty_applied:
            logger.critical(
                "Ledger corruption: reversing %s on %s needs base %d/penalty %d, collected %d/%d",
                transaction_id,
                key,
                line.base_applied,
                line.penalty_applied,
                period.base_paid,
                period.penalty_paid,
            )
            raise LedgerCorruptionError(
                f"Reversing {transaction_id} would drive {key} negative "
                f"(base_paid={period.base_paid}, penalty_paid={period.penalty_paid})"
            )
        return period

    def reverse(
        self,
        ledgers: Mapping[Track, TrackLedger],
        account: CreditAccount,
        result: DistributionResult,
        as_of: date,
    ) -> ReversalResult:
        """Reverse a stored distribution on the unit's ledgers and credit account.

        Args:
            ledgers: The unit's track ledgers, keyed by track
            account: The credit account the distribution moved
            result: The DistributionResult stored with the deleted transaction
            as_of: Date used when a period's status has to be recomputed

        Returns:
            ReversalResult with the amounts taken back

        Raises:
            DoubleReversalError: If the transaction was already reversed
            LedgerCorruptionError: If recorded amounts no longer match the ledger
            InsufficientCreditError: If credit created by the payment has been spent since
        """
        transaction_id = result.transaction_id

        if self.credit_service.is_reversed(account, transaction_id):
            logger.warning("Transaction %s already reversed on unit %s", transaction_id, result.unit_id)
            raise DoubleReversalError(
                f"Transaction {transaction_id} already reversed on unit {result.unit_id}", transaction_id
            )

        periods = [(self._locate(ledgers, line, transaction_id), line) for line in result.lines]

        recorded_net = sum(m.delta for m in account.movements_for(transaction_id))
        if recorded_net != result.credit_delta:
            logger.critical(
                "Ledger corruption: %s recorded credit_delta %+d but history nets %+d",
                transaction_id,
                result.credit_delta,
                recorded_net,
            )
            raise LedgerCorruptionError(
                f"Credit history of {transaction_id} nets {recorded_net}, "
                f"distribution recorded {result.credit_delta}"
            )
        if account.balance - recorded_net < 0:
            raise InsufficientCreditError(
                f"Cannot reverse {transaction_id}: {recorded_net} of credit it created "
                f"exceeds the current balance {account.balance}"
            )

        reversed_refs = {
            m.transaction_id for m in account.history if m.reason == CreditMovementReason.REVERSAL
        }
        # Undo in reverse application order
        for period, line in reversed(periods):
            self.period_ledger.revert_payment(period, line, transaction_id, as_of, reversed_refs)
            logger.debug(
                "Reverted %s on %s: base=%d, penalty=%d, status=%s",
                transaction_id,
                period.key.label,
                line.base_applied,
                line.penalty_applied,
                period.status.value,
            )

        reversed_delta = self.credit_service.reverse_movements_for(
            account, transaction_id, track=result.tracks[0] if result.tracks else None
        )

        reversal = ReversalResult(
            transaction_id=transaction_id,
            unit_id=result.unit_id,
            lines_reversed=len(result.lines),
            base_reversed=result.total_base_applied,
            penalty_reversed=result.total_penalty_applied,
            credit_delta_reversed=reversed_delta,
        )
        logger.info(
            "Reversed %s for unit %s: lines=%d, base=%d, penalty=%d, credit=%+d",
            transaction_id,
            result.unit_id,
            reversal.lines_reversed,
            reversal.base_reversed,
            reversal.penalty_reversed,
            reversal.credit_delta_reversed,
        )
        return reversal


__all__ = ["ReversalEngine"]
