"""Ledger facade: store-backed operations exposed to the calling layer.

Every mutating operation loads the unit's documents, runs the pure ledger
components on them and writes them back in one store transaction, so a
failure anywhere leaves the stored ledger exactly as it was. Audit facts are
recorded only after the transaction has committed.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from unitledger.config import Settings
from unitledger.errors import CreditPoolMismatchError, LedgerValidationError, NegativeAmountError
from unitledger.schemas.client_config import ClientConfig, Track
from unitledger.schemas.ledger import (
    BillingPeriod,
    CreditAccount,
    CreditMovement,
    DistributionResult,
    PaymentPolicy,
    PeriodKey,
    PeriodStatus,
    ReversalResult,
    TrackLedger,
)
from unitledger.schemas.statements import BillingRunResult, OutstandingSummary, PeriodStatement, YearSummary
from unitledger.services.audit_service import AuditFact, AuditService
from unitledger.services.billing_service import BillingService
from unitledger.services.clock import Clock, SystemClock
from unitledger.services.credit_service import DEFAULT_HISTORY_LIMIT, CreditService
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
from unitledger.services.fiscal_calendar import days_overdue
from unitledger.services.period_ledger import PeriodLedgerService
from unitledger.services.reversal_service import ReversalEngine

logger = logging.getLogger(__name__)


class LedgerService:
    """Store-backed ledger operations for one client."""

    def __init__(
        self,
        store: SqlDocumentStore,
        client_config: ClientConfig,
        clock: Clock | None = None,
        audit: AuditService | None = None,
        use_credit_for_billing_runs: bool = True,
    ):
        """Initialize the facade and wire the ledger components.

        Args:
            store: Transactional document store
            client_config: Client whose documents are addressed
            clock: Source of "today" (default: system clock, UTC)
            audit: Optional audit sink
            use_credit_for_billing_runs: Cover newly billed periods from credit
        """
        self.store = store
        self.client_config = client_config
        self.clock = clock or SystemClock()
        self.audit = audit
        self.period_ledger = PeriodLedgerService(client_config)
        self.credit_service = CreditService(self.clock)
        self.distributor = PaymentDistributor(self.period_ledger, self.credit_service)
        self.reversal_engine = ReversalEngine(self.period_ledger, self.credit_service)
        self.billing = BillingService(
            store,
            client_config,
            self.period_ledger,
            self.distributor,
            clock=self.clock,
            audit=audit,
            use_credit_for_billing_runs=use_credit_for_billing_runs,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ) -> "LedgerService":
        """Build a facade from settings and a session factory."""
        return cls(
            SqlDocumentStore(session_factory),
            settings.client_config(),
            clock=clock,
            audit=AuditService(session_factory),
            use_credit_for_billing_runs=settings.use_credit_for_billing_runs,
        )

    # ------------------------------------------------------------------
    # Keys and loading
    # ------------------------------------------------------------------

    def _track_key(self, unit_id: str, track: Track) -> str:
        return track_key(self.client_config.client_id, unit_id, track)

    def _credit_key(self, unit_id: str, pool_id: str) -> str:
        return credit_key(self.client_config.client_id, unit_id, pool_id)

    def _today(self, as_of: date | None) -> date:
        return as_of or self.clock.now()

    def _record(self, fact: AuditFact) -> None:
        if self.audit is not None:
            self.audit.record(fact)

    @staticmethod
    def _save_ledger(docs: Documents, key: str, ledger: TrackLedger) -> None:
        if docs[key] is not None or ledger.periods:
            docs[key] = dump_document(ledger)

    @staticmethod
    def _save_account(docs: Documents, key: str, account: CreditAccount) -> None:
        # Accounts are created lazily on their first movement
        if docs[key] is not None or account.history:
            docs[key] = dump_document(account)

    def get_track_ledger(self, unit_id: str, track: Track) -> TrackLedger:
        """Read a unit's billing periods for one track."""
        track = Track(track)
        return load_track_ledger(self.store.read_document(self._track_key(unit_id, track)), unit_id, track)

    def get_credit_account(self, unit_id: str, pool_id: str) -> CreditAccount:
        """Read a unit's credit account (empty if it has never moved)."""
        return load_credit_account(self.store.read_document(self._credit_key(unit_id, pool_id)), unit_id, pool_id)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def compute_outstanding(self, unit_id: str, track: Track, as_of: date | None = None) -> OutstandingSummary:
        """Get every billed period that still owes money, with the pool's credit balance."""
        track = Track(track)
        as_of = self._today(as_of)
        ledger = self.get_track_ledger(unit_id, track)
        account = self.get_credit_account(unit_id, self.client_config.pool_for(track))

        statements = []
        for period in ledger.periods:
            if not period.is_billed:
                continue
            owed = self.period_ledger.get_outstanding(period, as_of)
            if owed.total == 0:
                continue
            statements.append(
                PeriodStatement(
                    period=period,
                    days_overdue=max(0, days_overdue(as_of, period.due_date)),
                    base_owed=owed.base_owed,
                    penalty_owed=owed.penalty_owed,
                )
            )
        return OutstandingSummary(
            unit_id=unit_id,
            track=track,
            as_of=as_of,
            periods=statements,
            credit_balance=account.balance,
        )

    def select_unpaid_periods_oldest_first(
        self, unit_id: str, track: Track, as_of: date | None = None
    ) -> list[BillingPeriod]:
        """Get the periods an untargeted payment would settle, in settlement order."""
        ledger = self.get_track_ledger(unit_id, track)
        return self.period_ledger.select_unpaid_periods_oldest_first(ledger, self._today(as_of))

    def get_credit_balance(self, unit_id: str, pool_id: str) -> int:
        """Get a unit's credit balance in a pool."""
        return self.get_credit_account(unit_id, pool_id).balance

    def get_credit_history(
        self, unit_id: str, pool_id: str, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[CreditMovement]:
        """Get credit movements, most recent first."""
        return self.credit_service.history(self.get_credit_account(unit_id, pool_id), limit)

    def summarize_year(
        self, unit_id: str, track: Track, fiscal_year: int, as_of: date | None = None
    ) -> YearSummary:
        """Summarize one fiscal year of a track for a unit."""
        track = Track(track)
        as_of = self._today(as_of)
        ledger = self.get_track_ledger(unit_id, track)
        summary = YearSummary(
            unit_id=unit_id,
            track=track,
            fiscal_year=fiscal_year,
            as_of=as_of,
            credit_balance=self.get_credit_balance(unit_id, self.client_config.pool_for(track)),
        )

        for period in ledger.periods:
            if period.fiscal_year != fiscal_year:
                continue
            summary.base_paid += period.base_paid
            summary.penalty_paid += period.penalty_paid
            if period.status == PeriodStatus.PAID:
                summary.paid_months.append(period.fiscal_month)
            elif summary.next_period_due is None:
                summary.next_period_due = period.key
            if not period.is_billed:
                continue
            summary.total_charged += period.base_charge
            owed = self.period_ledger.get_outstanding(period, as_of)
            summary.base_owed += owed.base_owed
            summary.penalty_owed += owed.penalty_owed
            if period.status != PeriodStatus.PAID:
                summary.unpaid_months.append(period.fiscal_month)

        return summary

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def _payment_keys(self, unit_id: str, tracks: Sequence[Track]) -> tuple[list[str], str]:
        pools = {self.client_config.pool_for(track) for track in tracks}
        if len(pools) != 1:
            raise CreditPoolMismatchError(
                f"Tracks {[t.value for t in tracks]} use different credit pools: {sorted(pools)}"
            )
        account_key = self._credit_key(unit_id, pools.pop())
        return [self._track_key(unit_id, track) for track in tracks], account_key

    def _distribute_in(
        self,
        docs: Documents,
        unit_id: str,
        tracks: Sequence[Track],
        account_key: str,
        cash_amount: int,
        transaction_id: str,
        as_of: date,
        targets: Sequence[PeriodKey] | None,
        policy: PaymentPolicy | None,
    ) -> DistributionResult:
        ledgers = {track: load_track_ledger(docs[self._track_key(unit_id, track)], unit_id, track) for track in tracks}
        pool_id = self.client_config.pool_for(tracks[0])
        account = load_credit_account(docs[account_key], unit_id, pool_id)

        if len(tracks) == 1:
            result = self.distributor.apply(
                ledgers[tracks[0]], account, cash_amount, transaction_id, as_of, targets=targets, policy=policy
            )
        else:
            result = self.distributor.apply_unified(
                [ledgers[track] for track in tracks], account, cash_amount, transaction_id, as_of, policy=policy
            )

        for track, ledger in ledgers.items():
            self._save_ledger(docs, self._track_key(unit_id, track), ledger)
        self._save_account(docs, account_key, account)
        return result

    def _payment_fact(self, result: DistributionResult, actor_id: str | None) -> AuditFact:
        return AuditFact(
            entity_type="payment",
            entity_id=result.transaction_id,
            action="apply",
            actor_id=actor_id,
            changes={
                "unit_id": result.unit_id,
                "cash_amount": result.cash_amount,
                "base_applied": result.total_base_applied,
                "penalty_applied": result.total_penalty_applied,
                "credit_delta": result.credit_delta,
                "periods": [str(line.period_key) for line in result.lines],
            },
        )

    def apply_payment(
        self,
        unit_id: str,
        track: Track,
        cash_amount: int,
        transaction_id: str,
        as_of: date | None = None,
        targets: Sequence[PeriodKey] | None = None,
        policy: PaymentPolicy | None = None,
        actor_id: str | None = None,
    ) -> DistributionResult:
        """Apply a cash payment to one track of a unit.

        The returned DistributionResult must be stored with the transaction
        record it belongs to; it is the only input a later reversal needs.

        Raises:
            NegativeAmountError: If cash_amount < 0
            PeriodNotFoundError: If an explicit target cannot be paid
            StoreConflictError: If the unit's documents changed concurrently
        """
        track = Track(track)
        if cash_amount < 0:
            raise NegativeAmountError(f"Payment amount cannot be negative: {cash_amount}")
        as_of = self._today(as_of)
        track_keys, account_key = self._payment_keys(unit_id, [track])

        result = self.store.write_transaction(
            [*track_keys, account_key],
            lambda docs: self._distribute_in(
                docs, unit_id, [track], account_key, cash_amount, transaction_id, as_of, targets, policy
            ),
        )

        logger.info(
            "Payment %s applied for unit %s on %s: cash=%d, credit_delta=%+d",
            transaction_id,
            unit_id,
            track.value,
            cash_amount,
            result.credit_delta,
        )
        self._record(self._payment_fact(result, actor_id))
        return result

    def preview_payment(
        self,
        unit_id: str,
        track: Track,
        cash_amount: int,
        transaction_id: str = "preview",
        as_of: date | None = None,
        targets: Sequence[PeriodKey] | None = None,
        policy: PaymentPolicy | None = None,
    ) -> DistributionResult:
        """Compute what apply_payment would do, without writing anything."""
        track = Track(track)
        if cash_amount < 0:
            raise NegativeAmountError(f"Payment amount cannot be negative: {cash_amount}")
        track_keys, account_key = self._payment_keys(unit_id, [track])
        docs: Documents = {key: self.store.read_document(key) for key in [*track_keys, account_key]}
        return self._distribute_in(
            docs, unit_id, [track], account_key, cash_amount, transaction_id, self._today(as_of), targets, policy
        )

    def apply_unified_payment(
        self,
        unit_id: str,
        tracks: Sequence[Track],
        cash_amount: int,
        transaction_id: str,
        as_of: date | None = None,
        policy: PaymentPolicy | None = None,
        actor_id: str | None = None,
    ) -> DistributionResult:
        """Apply one cash payment across several tracks sharing a credit pool.

        Past-due periods are settled first (in track order), then currently
        due ones, then future periods of tracks that accept prepayment.

        Raises:
            CreditPoolMismatchError: If the tracks do not share one credit pool
        """
        tracks = [Track(track) for track in dict.fromkeys(tracks)]
        if not tracks:
            raise LedgerValidationError("Unified payment needs at least one track")
        if cash_amount < 0:
            raise NegativeAmountError(f"Payment amount cannot be negative: {cash_amount}")
        as_of = self._today(as_of)
        track_keys, account_key = self._payment_keys(unit_id, tracks)

        result = self.store.write_transaction(
            [*track_keys, account_key],
            lambda docs: self._distribute_in(
                docs, unit_id, tracks, account_key, cash_amount, transaction_id, as_of, None, policy
            ),
        )

        logger.info(
            "Unified payment %s applied for unit %s across %s: cash=%d, credit_delta=%+d",
            transaction_id,
            unit_id,
            ",".join(t.value for t in tracks),
            cash_amount,
            result.credit_delta,
        )
        self._record(self._payment_fact(result, actor_id))
        return result

    def reverse_payment(
        self,
        unit_id: str,
        track: Track,
        stored_result: DistributionResult,
        as_of: date | None = None,
        allow_already_reversed: bool = False,
        actor_id: str | None = None,
    ) -> ReversalResult:
        """Reverse a stored distribution when its transaction is deleted.

        Args:
            unit_id: Unit the payment belonged to
            track: Track the payment was applied to (lines may add more tracks)
            stored_result: DistributionResult stored with the transaction
            as_of: Date for status recomputation (default: today)
            allow_already_reversed: Return a no-op result instead of raising on repeats
            actor_id: Who deleted the transaction

        Raises:
            DoubleReversalError: If already reversed and allow_already_reversed is False
            LedgerCorruptionError: If the recorded amounts no longer match the ledger
            InsufficientCreditError: If credit the payment created has been spent since
        """
        if stored_result.unit_id != unit_id:
            raise LedgerValidationError(
                f"Distribution {stored_result.transaction_id} belongs to unit {stored_result.unit_id}, not {unit_id}"
            )
        tracks = [Track(t) for t in dict.fromkeys([Track(track), *stored_result.tracks])]
        track_keys = [self._track_key(unit_id, t) for t in tracks]
        account_key = self._credit_key(unit_id, stored_result.pool_id)
        as_of = self._today(as_of)
        transaction_id = stored_result.transaction_id

        def mutate(docs: Documents) -> ReversalResult:
            ledgers = {t: load_track_ledger(docs[key], unit_id, t) for key, t in zip(track_keys, tracks)}
            account = load_credit_account(docs[account_key], unit_id, stored_result.pool_id)

            if allow_already_reversed and self.credit_service.is_reversed(account, transaction_id):
                return ReversalResult(transaction_id=transaction_id, unit_id=unit_id, already_reversed=True)

            reversal = self.reversal_engine.reverse(ledgers, account, stored_result, as_of)
            for key, t in zip(track_keys, tracks):
                self._save_ledger(docs, key, ledgers[t])
            self._save_account(docs, account_key, account)
            return reversal

        reversal = self.store.write_transaction([*track_keys, account_key], mutate)

        if reversal.already_reversed:
            logger.warning("Transaction %s of unit %s was already reversed; nothing to do", transaction_id, unit_id)
            return reversal

        logger.info("Payment %s reversed for unit %s", transaction_id, unit_id)
        self._record(
            AuditFact(
                entity_type="reversal",
                entity_id=transaction_id,
                action="reverse",
                actor_id=actor_id,
                changes=reversal.model_dump(mode="json"),
            )
        )
        return reversal

    # ------------------------------------------------------------------
    # Credit administration
    # ------------------------------------------------------------------

    def adjust_credit_manually(
        self,
        unit_id: str,
        track: Track,
        delta: int,
        note: str,
        actor_id: str | None = None,
        transaction_id: str | None = None,
    ) -> CreditMovement:
        """Apply an administrative credit adjustment to the track's pool.

        Raises:
            InvalidAmountError: If delta is zero
            InsufficientCreditError: If a negative delta exceeds the balance
        """
        track = Track(track)
        pool_id = self.client_config.pool_for(track)
        account_key = self._credit_key(unit_id, pool_id)
        transaction_id = transaction_id or f"adjustment:{uuid4().hex}"

        def mutate(docs: Documents) -> CreditMovement:
            account = load_credit_account(docs[account_key], unit_id, pool_id)
            movement = self.credit_service.adjust(account, delta, transaction_id, note=note, track=track)
            self._save_account(docs, account_key, account)
            return movement

        movement = self.store.write_transaction([account_key], mutate)

        logger.info(
            "Manual credit adjustment %s for unit %s pool %s: %+d -> %d (%s, by %s)",
            transaction_id,
            unit_id,
            pool_id,
            delta,
            movement.balance_after,
            note,
            actor_id or "system",
        )
        self._record(
            AuditFact(
                entity_type="credit",
                entity_id=transaction_id,
                action="adjust",
                actor_id=actor_id,
                changes={"unit_id": unit_id, "pool_id": pool_id, "delta": delta, "note": note},
            )
        )
        return movement

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    def schedule_fiscal_year(self, unit_id: str, track: Track, fiscal_year: int, monthly_charge: int) -> int:
        """Create the twelve UNBILLED periods of a fiscal year for a unit."""
        return self.billing.schedule_fiscal_year(unit_id, track, fiscal_year, monthly_charge)

    def run_billing(
        self,
        track: Track,
        fiscal_year: int,
        fiscal_month: int,
        charges: dict[str, int],
        billed_on: date | None = None,
        actor_id: str | None = None,
    ) -> BillingRunResult:
        """Bill one fiscal month for a set of units."""
        return self.billing.run_billing(track, fiscal_year, fiscal_month, charges, billed_on, actor_id)

    def run_water_billing(
        self,
        fiscal_year: int,
        fiscal_month: int,
        consumption: dict[str, Decimal | int | str],
        billed_on: date | None = None,
        actor_id: str | None = None,
    ) -> BillingRunResult:
        """Bill one fiscal month of water from cubic meters consumed per unit."""
        return self.billing.run_water_billing(fiscal_year, fiscal_month, consumption, billed_on, actor_id)


__all__ = ["LedgerService"]
