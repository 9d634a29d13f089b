"""Billing period bookkeeping: outstanding amounts, payment increments, status.

Status rules:
- PAID: base fully paid and the penalty computed for the period fully covered
- PARTIALLY_PAID: some money applied, but not PAID
- UNPAID: billed, nothing applied
- UNBILLED: scheduled but not billed yet, nothing applied
"""

import logging
from datetime import date
from typing import Container, NamedTuple

from unitledger.errors import InvalidAmountError, LedgerCorruptionError, OverApplicationError
from unitledger.schemas.client_config import ClientConfig, Track
from unitledger.schemas.ledger import BillingPeriod, DistributionLine, PeriodStatus, TrackLedger
from unitledger.services.penalty_service import PenaltyCalculator

logger = logging.getLogger(__name__)


class Outstanding(NamedTuple):
    """What a period still owes as of a date."""

    base_owed: int
    penalty_owed: int

    @property
    def total(self) -> int:
        return self.base_owed + self.penalty_owed


class PeriodLedgerService:
    """Reads and mutates billing periods under a client's penalty rules.

    Used by the payment distributor and reversal engine; never talks to the
    store itself.
    """

    def __init__(self, client_config: ClientConfig):
        """Initialize with client configuration."""
        self.client_config = client_config
        self._calculators: dict[Track, PenaltyCalculator] = {}

    def calculator(self, track: Track) -> PenaltyCalculator:
        """Get the penalty calculator for a track."""
        track = Track(track)
        if track not in self._calculators:
            self._calculators[track] = PenaltyCalculator(self.client_config.track(track))
        return self._calculators[track]

    def penalty_for(self, period: BillingPeriod, as_of: date) -> int:
        """Total penalty a period carries as of a date (before payments)."""
        return self.calculator(period.track).penalty_for(period, as_of)

    def get_outstanding(self, period: BillingPeriod, as_of: date) -> Outstanding:
        """Get base and penalty still owed by a period.

        Args:
            period: Billing period
            as_of: Date the penalty is computed for

        Returns:
            Outstanding(base_owed, penalty_owed), both floored at zero
        """
        base_owed = max(0, period.base_charge - period.base_paid)
        penalty_owed = max(0, self.penalty_for(period, as_of) - period.penalty_paid)
        return Outstanding(base_owed=base_owed, penalty_owed=penalty_owed)

    def derive_status(self, period: BillingPeriod, as_of: date) -> PeriodStatus:
        """Compute the status a period should have as of a date."""
        base_settled = period.base_paid >= period.base_charge
        penalty_settled = period.penalty_paid >= self.penalty_for(period, as_of)
        has_payments = period.base_paid > 0 or period.penalty_paid > 0

        if base_settled and penalty_settled and (has_payments or period.is_billed):
            return PeriodStatus.PAID
        if has_payments:
            return PeriodStatus.PARTIALLY_PAID
        return PeriodStatus.UNPAID if period.is_billed else PeriodStatus.UNBILLED

    def refresh_status(self, period: BillingPeriod, as_of: date) -> PeriodStatus:
        """Recompute and store a period's status, stamping or clearing settled_on."""
        status = self.derive_status(period, as_of)
        if status == PeriodStatus.PAID:
            if period.settled_on is None:
                period.settled_on = as_of
        else:
            period.settled_on = None
        period.status = status
        return status

    def apply_payment(
        self,
        period: BillingPeriod,
        base_amount: int,
        penalty_amount: int,
        as_of: date,
        transaction_id: str,
    ) -> None:
        """Increment collected amounts on a period and recompute its status.

        Args:
            period: Billing period to credit
            base_amount: Amount applied to the base charge
            penalty_amount: Amount applied to the penalty
            as_of: Payment date (penalty is evaluated at this date)
            transaction_id: Transaction recorded as last_payment_ref

        Raises:
            InvalidAmountError: If an amount is negative
            OverApplicationError: If an amount exceeds what the period owes
        """
        if base_amount < 0 or penalty_amount < 0:
            raise InvalidAmountError(
                f"Applied amounts must be non-negative: base={base_amount}, penalty={penalty_amount}"
            )

        outstanding = self.get_outstanding(period, as_of)
        if base_amount > outstanding.base_owed or penalty_amount > outstanding.penalty_owed:
            logger.error(
                "Over-application on %s by %s: base %d > %d or penalty %d > %d",
                period.key,
                transaction_id,
                base_amount,
                outstanding.base_owed,
                penalty_amount,
                outstanding.penalty_owed,
            )
            raise OverApplicationError(
                f"Cannot apply base={base_amount}, penalty={penalty_amount} to {period.key}: "
                f"owes base={outstanding.base_owed}, penalty={outstanding.penalty_owed}"
            )

        if base_amount == 0 and penalty_amount == 0:
            return

        period.base_paid += base_amount
        period.penalty_paid += penalty_amount
        period.last_payment_ref = transaction_id
        self.refresh_status(period, as_of)

    def revert_payment(
        self,
        period: BillingPeriod,
        line: DistributionLine,
        transaction_id: str,
        as_of: date,
        reversed_refs: Container[str] = (),
    ) -> None:
        """Undo one recorded distribution line on a period.

        When the period is still the last touched by this transaction and its
        paid amounts are back where the line found them, status, settled_on and
        last_payment_ref are restored exactly from the line. Otherwise the status
        is recomputed from the amounts, a later reference is kept, and a
        reference to an already reversed transaction is dropped.

        Args:
            period: Billing period to debit
            line: Recorded distribution line
            transaction_id: Transaction being reversed
            as_of: Date the status is recomputed for
            reversed_refs: Transactions reversed earlier

        Raises:
            LedgerCorruptionError: If the recorded amounts exceed what was collected
        """
        new_base_paid = period.base_paid - line.base_applied
        new_penalty_paid = period.penalty_paid - line.penalty_applied
        if new_base_paid < 0 or new_penalty_paid < 0:
            logger.critical(
                "Ledger corruption reversing %s on %s: base_paid %d - %d, penalty_paid %d - %d",
                transaction_id,
                period.key,
                period.base_paid,
                line.base_applied,
                period.penalty_paid,
                line.penalty_applied,
            )
            raise LedgerCorruptionError(
                f"Reversing {transaction_id} would drive {period.key} negative "
                f"(base_paid={new_base_paid}, penalty_paid={new_penalty_paid})"
            )

        period.base_paid = new_base_paid
        period.penalty_paid = new_penalty_paid

        was_last = period.last_payment_ref == transaction_id
        amounts_restored = (
            line.previous_base_paid == new_base_paid and line.previous_penalty_paid == new_penalty_paid
        )
        previous_ref = line.previous_payment_ref
        if previous_ref in reversed_refs:
            previous_ref = None

        if was_last and amounts_restored:
            period.last_payment_ref = previous_ref
            period.status = line.previous_status
            period.settled_on = line.previous_settled_on
            return

        self.refresh_status(period, as_of)
        if was_last:
            has_payments = new_base_paid > 0 or new_penalty_paid > 0
            period.last_payment_ref = previous_ref if has_payments else None

    def select_unpaid_periods_oldest_first(self, ledger: TrackLedger, as_of: date) -> list[BillingPeriod]:
        """Get periods that still owe money, oldest (fiscal year, fiscal month) first.

        Unbilled periods are included only for tracks that allow prepayment.
        """
        allow_prepayment = self.client_config.track(ledger.track).allow_prepayment
        selected = []
        for period in ledger.periods:
            if period.status == PeriodStatus.PAID:
                continue
            if not period.is_billed and not allow_prepayment:
                continue
            if self.get_outstanding(period, as_of).total <= 0:
                continue
            selected.append(period)
        return sorted(selected, key=lambda p: (p.fiscal_year, p.fiscal_month))


__all__ = ["Outstanding", "PeriodLedgerService"]
