"""Payment distribution across billing periods and the credit pool.

Algorithm:
1. Resolve target periods: explicit keys in caller order, or every unpaid
   period oldest first
2. For each target (until funds are exhausted):
   a. Pay the penalty first
   b. Then the base charge
   c. Optionally cover what cash left unpaid from existing credit
3. Cash left after all targets are settled becomes credit (prepayment)
4. Return a DistributionResult recording every line and the net credit delta

Conservation: sum(base_applied + penalty_applied) + credit_delta == cash_amount.

The distributor mutates the ledger and credit objects it is given. The caller
owns the transaction that loads and persists them.
"""

import logging
from datetime import date
from typing import Sequence

from unitledger.errors import NegativeAmountError, PeriodNotFoundError
from unitledger.schemas.client_config import Track
from unitledger.schemas.ledger import (
    BillingPeriod,
    CreditAccount,
    CreditMovementReason,
    DistributionLine,
    DistributionResult,
    PaymentPolicy,
    PeriodKey,
    TrackLedger,
)
from unitledger.services.credit_service import CreditService
from unitledger.services.period_ledger import PeriodLedgerService

logger = logging.getLogger(__name__)


class PaymentDistributor:
    """Splits cash payments across penalties, base charges and credit."""

    def __init__(self, period_ledger: PeriodLedgerService, credit_service: CreditService):
        self.period_ledger = period_ledger
        self.credit_service = credit_service

    def resolve_targets(
        self,
        ledger: TrackLedger,
        targets: Sequence[PeriodKey],
    ) -> list[BillingPeriod]:
        """Look up explicit target periods in caller order.

        Raises:
            PeriodNotFoundError: If a key is not in the ledger, belongs to another
                track, or is unbilled on a track that does not allow prepayment
        """
        allow_prepayment = self.period_ledger.client_config.track(ledger.track).allow_prepayment
        resolved: list[BillingPeriod] = []
        for key in targets:
            if key.track != ledger.track:
                raise PeriodNotFoundError(f"Target {key} is not on track {ledger.track.value}")
            period = ledger.find(key.fiscal_year, key.fiscal_month)
            if period is None:
                raise PeriodNotFoundError(f"Period {key} not found for unit {ledger.unit_id}")
            if not period.is_billed and not allow_prepayment:
                raise PeriodNotFoundError(
                    f"Period {key} is not billed and {ledger.track.value} does not accept prepayment"
                )
            if period not in resolved:
                resolved.append(period)
        return resolved

    def prioritize(self, ledgers: Sequence[TrackLedger], as_of: date) -> list[BillingPeriod]:
        """Order unpaid periods of several tracks for a unified payment.

        Priority: past due (by track order), then currently due, then
        prepayable future periods. Oldest first inside each group.
        """
        past_due: list[BillingPeriod] = []
        current: list[BillingPeriod] = []
        future: list[BillingPeriod] = []
        for ledger in ledgers:
            for period in self.period_ledger.select_unpaid_periods_oldest_first(ledger, as_of):
                if not period.is_billed:
                    future.append(period)
                elif period.due_date < as_of:
                    past_due.append(period)
                else:
                    current.append(period)
        return past_due + current + future

    def apply(
        self,
        ledger: TrackLedger,
        account: CreditAccount,
        cash_amount: int,
        transaction_id: str,
        as_of: date,
        targets: Sequence[PeriodKey] | None = None,
        policy: PaymentPolicy | None = None,
    ) -> DistributionResult:
        """Distribute a payment over one track.

        Args:
            ledger: The unit's periods for the track
            account: The unit's credit account for the track's pool
            cash_amount: Cash received, in minor currency units
            transaction_id: Originating transaction
            as_of: Payment date
            targets: Explicit periods to pay, in order (default: oldest unpaid first)
            policy: Payment policy flags

        Returns:
            DistributionResult to persist with the transaction

        Raises:
            NegativeAmountError: If cash_amount < 0
            PeriodNotFoundError: If an explicit target cannot be paid
        """
        if cash_amount < 0:
            raise NegativeAmountError(f"Payment amount cannot be negative: {cash_amount}")

        if targets:
            periods = self.resolve_targets(ledger, targets)
        else:
            periods = self.period_ledger.select_unpaid_periods_oldest_first(ledger, as_of)

        return self._distribute(
            ledger.unit_id, periods, account, cash_amount, transaction_id, as_of, policy, ledger.track
        )

    def apply_unified(
        self,
        ledgers: Sequence[TrackLedger],
        account: CreditAccount,
        cash_amount: int,
        transaction_id: str,
        as_of: date,
        policy: PaymentPolicy | None = None,
    ) -> DistributionResult:
        """Distribute one payment across several tracks sharing a credit pool."""
        if cash_amount < 0:
            raise NegativeAmountError(f"Payment amount cannot be negative: {cash_amount}")
        if not ledgers:
            raise PeriodNotFoundError("Unified payment needs at least one track")

        periods = self.prioritize(ledgers, as_of)
        return self._distribute(
            ledgers[0].unit_id, periods, account, cash_amount, transaction_id, as_of, policy, None
        )

    def _distribute(
        self,
        unit_id: str,
        periods: Sequence[BillingPeriod],
        account: CreditAccount,
        cash_amount: int,
        transaction_id: str,
        as_of: date,
        policy: PaymentPolicy | None,
        overflow_track: Track | None,
    ) -> DistributionResult:
        policy = policy or PaymentPolicy()
        result = DistributionResult(
            transaction_id=transaction_id,
            unit_id=unit_id,
            pool_id=account.pool_id,
            cash_amount=cash_amount,
            as_of=as_of,
        )

        if cash_amount == 0 and not policy.use_credit_to_cover_shortfall:
            logger.info("Zero payment %s for unit %s: nothing to distribute", transaction_id, unit_id)
            return result

        remaining = cash_amount
        for period in periods:
            credit_available = policy.use_credit_to_cover_shortfall and account.balance > 0
            if remaining <= 0 and not credit_available:
                break

            owed = self.period_ledger.get_outstanding(period, as_of)
            if owed.total == 0:
                continue

            # Penalty clears before principal
            penalty_cash = min(remaining, owed.penalty_owed)
            remaining -= penalty_cash
            base_cash = min(remaining, owed.base_owed)
            remaining -= base_cash

            penalty_credit = 0
            base_credit = 0
            shortfall = owed.total - penalty_cash - base_cash
            if shortfall > 0 and credit_available:
                used = self.credit_service.use_credit(
                    account,
                    shortfall,
                    transaction_id,
                    CreditMovementReason.APPLIED_TO_CHARGE,
                    track=period.track,
                    note=f"Applied to {period.key.label}",
                )
                penalty_credit = min(used, owed.penalty_owed - penalty_cash)
                base_credit = used - penalty_credit

            penalty_applied = penalty_cash + penalty_credit
            base_applied = base_cash + base_credit
            if penalty_applied == 0 and base_applied == 0:
                continue

            line = DistributionLine(
                period_key=period.key,
                base_applied=base_applied,
                penalty_applied=penalty_applied,
                credit_applied=penalty_credit + base_credit,
                previous_status=period.status,
                previous_payment_ref=period.last_payment_ref,
                previous_settled_on=period.settled_on,
                previous_base_paid=period.base_paid,
                previous_penalty_paid=period.penalty_paid,
            )
            self.period_ledger.apply_payment(period, base_applied, penalty_applied, as_of, transaction_id)
            logger.debug(
                "%s -> %s: base=%d, penalty=%d, credit=%d, status=%s",
                transaction_id,
                period.key.label,
                base_applied,
                penalty_applied,
                line.credit_applied,
                period.status.value,
            )
            result.lines.append(line)

        if remaining > 0:
            self.credit_service.add_credit(
                account,
                remaining,
                transaction_id,
                CreditMovementReason.PAYMENT_OVERFLOW,
                track=overflow_track,
                note="Overpayment",
            )

        result.credit_delta = remaining - result.credit_used

        logger.info(
            "Distributed %s for unit %s: cash=%d, base=%d, penalty=%d, credit_delta=%+d, lines=%d",
            transaction_id,
            unit_id,
            cash_amount,
            result.total_base_applied,
            result.total_penalty_applied,
            result.credit_delta,
            len(result.lines),
        )
        return result


__all__ = ["PaymentDistributor"]
