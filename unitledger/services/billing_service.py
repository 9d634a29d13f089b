"""Billing schedules and billing runs.

A fiscal year is scheduled as twelve UNBILLED periods. A billing run moves
one fiscal month to UNPAID for a set of units (creating the period when it
was never scheduled) and, when enabled, immediately covers it from the
unit's existing credit.

Water bills are metered: a unit is charged its consumption at the track's rate
per cubic meter, floored at the track's minimum charge. Units with no charge
are not billed.

Each unit is billed in its own store transaction. Re-running a billing run
with the same charges is a no-op, so a run interrupted half way can simply be
run again.
"""

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Mapping

from unitledger.errors import InvalidAmountError, NegativeAmountError, PeriodAlreadyBilledError
from unitledger.schemas.client_config import ClientConfig, Track
from unitledger.schemas.ledger import BillingPeriod, DistributionResult, PaymentPolicy, PeriodStatus
from unitledger.schemas.statements import BillingRunResult
from unitledger.services.audit_service import AuditFact, AuditService
from unitledger.services.clock import Clock, SystemClock
from unitledger.services.distribution_service import PaymentDistributor
from unitledger.services.document_store import (
    Documents,
    SqlDocumentStore,
    credit_key,
    dump_document,
    load_credit_account,
    load_track_ledger,
    track_key,
)
from unitledger.services.fiscal_calendar import period_due_date, validate_fiscal_month
from unitledger.services.period_ledger import PeriodLedgerService

logger = logging.getLogger(__name__)


def billing_transaction_id(track: Track, fiscal_year: int, fiscal_month: int, unit_id: str) -> str:
    """Transaction id of the credit distribution made by a billing run."""
    return f"billing:{Track(track).value}:{fiscal_year}-{fiscal_month:02d}:{unit_id}"


def water_charge(consumption: Decimal | int | str, rate_per_m3: int, minimum_charge: int = 0) -> int:
    """Charge for a metered consumption, in minor currency units.

    Args:
        consumption: Cubic meters consumed
        rate_per_m3: Charge per cubic meter
        minimum_charge: Floor applied to any billed consumption

    Returns:
        max(consumption * rate, minimum) rounded half up; 0 when nothing was
        consumed and there is no minimum charge

    Raises:
        InvalidAmountError: If consumption is not a non-negative number or a rate is negative
    """
    try:
        consumed = Decimal(str(consumption))
    except InvalidOperation as e:
        raise InvalidAmountError(f"Consumption must be a number: {consumption!r}") from e
    if not consumed.is_finite() or consumed < 0:
        raise InvalidAmountError(f"Consumption must be a non-negative number: {consumption}")
    if rate_per_m3 < 0 or minimum_charge < 0:
        raise InvalidAmountError(f"Rates cannot be negative: rate={rate_per_m3}, minimum={minimum_charge}")

    if consumed == 0 and minimum_charge == 0:
        return 0
    metered = int((consumed * rate_per_m3).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(metered, minimum_charge)


class BillingService:
    """Creates billing periods for units."""

    def __init__(
        self,
        store: SqlDocumentStore,
        client_config: ClientConfig,
        period_ledger: PeriodLedgerService,
        distributor: PaymentDistributor,
        clock: Clock | None = None,
        audit: AuditService | None = None,
        use_credit_for_billing_runs: bool = True,
    ):
        self.store = store
        self.client_config = client_config
        self.period_ledger = period_ledger
        self.distributor = distributor
        self.clock = clock or SystemClock()
        self.audit = audit
        self.use_credit_for_billing_runs = use_credit_for_billing_runs

    def _due_date(self, track: Track, fiscal_year: int, fiscal_month: int) -> date:
        return period_due_date(
            fiscal_year,
            fiscal_month,
            self.client_config.fiscal_year_start_month,
            self.client_config.track(track).due_day,
        )

    def schedule_fiscal_year(self, unit_id: str, track: Track, fiscal_year: int, monthly_charge: int) -> int:
        """Create the twelve UNBILLED periods of a fiscal year.

        Periods that already exist are left untouched.

        Returns:
            Number of periods created
        """
        track = Track(track)
        if monthly_charge < 0:
            raise NegativeAmountError(f"Monthly charge cannot be negative: {monthly_charge}")

        key = track_key(self.client_config.client_id, unit_id, track)

        def mutate(docs: Documents) -> int:
            ledger = load_track_ledger(docs[key], unit_id, track)
            created = 0
            for fiscal_month in range(12):
                if ledger.find(fiscal_year, fiscal_month) is not None:
                    continue
                ledger.add_period(
                    BillingPeriod(
                        fiscal_year=fiscal_year,
                        fiscal_month=fiscal_month,
                        track=track,
                        base_charge=monthly_charge,
                        due_date=self._due_date(track, fiscal_year, fiscal_month),
                        status=PeriodStatus.UNBILLED,
                    )
                )
                created += 1
            if created:
                docs[key] = dump_document(ledger)
            return created

        created = self.store.write_transaction([key], mutate)
        logger.info("Scheduled FY%d %s for unit %s: %d period(s) created", fiscal_year, track.value, unit_id, created)
        return created

    def _bill_unit(
        self,
        unit_id: str,
        track: Track,
        fiscal_year: int,
        fiscal_month: int,
        base_charge: int,
        today: date,
    ) -> tuple[bool, DistributionResult | None]:
        ledger_key = track_key(self.client_config.client_id, unit_id, track)
        pool_id = self.client_config.pool_for(track)
        account_key = credit_key(self.client_config.client_id, unit_id, pool_id)
        transaction_id = billing_transaction_id(track, fiscal_year, fiscal_month, unit_id)

        def mutate(docs: Documents) -> tuple[bool, DistributionResult | None]:
            ledger = load_track_ledger(docs[ledger_key], unit_id, track)
            period = ledger.find(fiscal_year, fiscal_month)

            if period is None:
                period = BillingPeriod(
                    fiscal_year=fiscal_year,
                    fiscal_month=fiscal_month,
                    track=track,
                    base_charge=base_charge,
                    due_date=self._due_date(track, fiscal_year, fiscal_month),
                    status=PeriodStatus.UNPAID,
                    billed_on=today,
                )
                ledger.add_period(period)
                self.period_ledger.refresh_status(period, today)
            elif period.is_billed:
                if period.base_charge != base_charge:
                    raise PeriodAlreadyBilledError(
                        f"{period.key} of unit {unit_id} already billed at {period.base_charge}, "
                        f"cannot re-bill at {base_charge}"
                    )
                return False, None
            else:
                if period.base_charge != base_charge and (period.base_paid or period.penalty_paid):
                    raise PeriodAlreadyBilledError(
                        f"{period.key} of unit {unit_id} was prepaid against {period.base_charge}, "
                        f"cannot bill at {base_charge}"
                    )
                period.base_charge = base_charge
                period.billed_on = today
                self.period_ledger.refresh_status(period, today)

            distribution = None
            account_doc = docs[account_key]
            if self.use_credit_for_billing_runs and account_doc is not None:
                account = load_credit_account(account_doc, unit_id, pool_id)
                if account.balance > 0 and self.period_ledger.get_outstanding(period, today).total > 0:
                    distribution = self.distributor.apply(
                        ledger,
                        account,
                        0,
                        transaction_id,
                        today,
                        targets=[period.key],
                        policy=PaymentPolicy(use_credit_to_cover_shortfall=True),
                    )
                    docs[account_key] = dump_document(account)

            docs[ledger_key] = dump_document(ledger)
            return True, distribution

        return self.store.write_transaction([ledger_key, account_key], mutate)

    def run_billing(
        self,
        track: Track,
        fiscal_year: int,
        fiscal_month: int,
        charges: Mapping[str, int],
        billed_on: date | None = None,
        actor_id: str | None = None,
    ) -> BillingRunResult:
        """Bill one fiscal month for a set of units.

        Args:
            track: Track being billed
            fiscal_year: Fiscal year of the period
            fiscal_month: Fiscal month index (0-11)
            charges: Base charge per unit id, in minor currency units
            billed_on: Billing date (default: today)
            actor_id: Who started the run, for the audit trail

        Returns:
            BillingRunResult with billed and skipped units and credit distributions

        Raises:
            InvalidMonthError: If fiscal_month is out of range
            NegativeAmountError: If any charge is negative (checked before billing anyone)
            PeriodAlreadyBilledError: If a unit was already billed at a different charge;
                units billed earlier in the run stay billed
        """
        track = Track(track)
        validate_fiscal_month(fiscal_month)
        for unit_id, charge in charges.items():
            if charge < 0:
                raise NegativeAmountError(f"Charge for unit {unit_id} cannot be negative: {charge}")

        today = billed_on or self.clock.now()
        run = BillingRunResult(track=track, fiscal_year=fiscal_year, fiscal_month=fiscal_month)

        for unit_id, charge in charges.items():
            billed, distribution = self._bill_unit(unit_id, track, fiscal_year, fiscal_month, charge, today)
            if not billed:
                run.skipped_units.append(unit_id)
                continue
            run.billed_units.append(unit_id)
            if distribution is not None and not distribution.is_empty:
                run.credit_distributions[unit_id] = distribution

            if self.audit is not None:
                self.audit.record(
                    AuditFact(
                        entity_type="billing",
                        entity_id=f"{track.value}:{fiscal_year}-{fiscal_month:02d}:{unit_id}",
                        action="bill",
                        actor_id=actor_id,
                        changes={
                            "unit_id": unit_id,
                            "base_charge": charge,
                            "credit_applied": distribution.credit_used if distribution else 0,
                        },
                    )
                )

        logger.info(
            "Billing run %s FY%d-%02d: %d billed, %d skipped, %d covered from credit",
            track.value,
            fiscal_year,
            fiscal_month,
            len(run.billed_units),
            len(run.skipped_units),
            len(run.credit_distributions),
        )
        return run

    def run_water_billing(
        self,
        fiscal_year: int,
        fiscal_month: int,
        consumption: Mapping[str, Decimal | int | str],
        billed_on: date | None = None,
        actor_id: str | None = None,
    ) -> BillingRunResult:
        """Bill one fiscal month of water from meter consumption.

        Args:
            fiscal_year: Fiscal year of the period
            fiscal_month: Fiscal month index (0-11)
            consumption: Cubic meters consumed per unit id
            billed_on: Billing date (default: today)
            actor_id: Who started the run, for the audit trail

        Returns:
            BillingRunResult; units whose charge comes to zero are listed in
            no_charge_units and get no period

        Raises:
            InvalidMonthError: If fiscal_month is out of range
            InvalidAmountError: If any consumption is negative (checked before billing anyone)
        """
        validate_fiscal_month(fiscal_month)
        config = self.client_config.track(Track.WATER_BILLS)

        charges: dict[str, int] = {}
        no_charge: list[str] = []
        for unit_id, consumed in consumption.items():
            charge = water_charge(consumed, config.rate_per_m3, config.minimum_charge)
            if charge == 0:
                no_charge.append(unit_id)
            else:
                charges[unit_id] = charge
        if no_charge:
            logger.debug("Water FY%d-%02d: no charge for %s", fiscal_year, fiscal_month, ", ".join(no_charge))

        run = self.run_billing(
            Track.WATER_BILLS, fiscal_year, fiscal_month, charges, billed_on=billed_on, actor_id=actor_id
        )
        run.no_charge_units = no_charge
        return run


__all__ = ["billing_transaction_id", "water_charge", "BillingService"]
