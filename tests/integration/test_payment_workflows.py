"""Integration tests for payments and reversals through the ledger facade."""

from datetime import date

import pytest
from sqlalchemy import select

from unitledger.errors import (
    DoubleReversalError,
    InsufficientCreditError,
    InvalidAmountError,
    LedgerValidationError,
    NegativeAmountError,
    PeriodNotFoundError,
)
from unitledger.models import AuditLog
from unitledger.schemas.client_config import Track
from unitledger.schemas.ledger import CreditMovementReason, DistributionResult, PeriodKey, PeriodStatus

HOA = Track.HOA_DUES


@pytest.fixture
def billed_unit(ledger):
    """Unit U1 billed 1202.31 for January 2025 (due 2025-01-01)."""
    ledger.run_billing(HOA, 2025, 0, {"U1": 120231})
    return "U1"


class TestApplyAndReverse:
    """Test applying and reversing payments end to end."""

    def test_round_trip_is_bit_for_bit(self, ledger, billed_unit):
        """Test the stored ledger after reversal equals the one before payment."""
        before_periods = ledger.get_track_ledger(billed_unit, HOA)
        before_balance = ledger.get_credit_balance(billed_unit, "shared")

        result = ledger.apply_payment(billed_unit, HOA, 150000, "TX-1")
        assert result.total_base_applied == 120231
        assert result.credit_delta == 29769
        assert ledger.get_credit_balance(billed_unit, "shared") == 29769

        stored = DistributionResult.model_validate_json(result.model_dump_json())
        ledger.reverse_payment(billed_unit, HOA, stored)

        assert ledger.get_track_ledger(billed_unit, HOA) == before_periods
        assert ledger.get_credit_balance(billed_unit, "shared") == before_balance

    def test_double_reversal_scenario(self, ledger, billed_unit):
        """Test U1 pays 1202.31, reversal succeeds once and fails the second time."""
        result = ledger.apply_payment(billed_unit, HOA, 120231, "TX-U1")
        period = ledger.get_track_ledger(billed_unit, HOA).periods[0]
        assert period.status == PeriodStatus.PAID
        assert result.credit_delta == 0

        reversal = ledger.reverse_payment(billed_unit, HOA, result)
        assert reversal.base_reversed == 120231
        after_first = ledger.get_track_ledger(billed_unit, HOA)
        assert after_first.periods[0].status == PeriodStatus.UNPAID

        with pytest.raises(DoubleReversalError):
            ledger.reverse_payment(billed_unit, HOA, result)

        assert ledger.get_track_ledger(billed_unit, HOA) == after_first

    def test_repeated_reversal_allowed_as_noop(self, ledger, billed_unit):
        result = ledger.apply_payment(billed_unit, HOA, 120231, "TX-U1")
        ledger.reverse_payment(billed_unit, HOA, result)
        history_len = len(ledger.get_credit_history(billed_unit, "shared"))

        repeat = ledger.reverse_payment(billed_unit, HOA, result, allow_already_reversed=True)

        assert repeat.already_reversed is True
        assert len(ledger.get_credit_history(billed_unit, "shared")) == history_len

    def test_reversals_in_payment_order(self, ledger):
        """Test two payments on one period reversed in the order they were made."""
        ledger.run_billing(HOA, 2025, 0, {"U1": 10000})
        before = ledger.get_track_ledger("U1", HOA)
        first = ledger.apply_payment("U1", HOA, 5000, "T1")
        second = ledger.apply_payment("U1", HOA, 5000, "T2")

        ledger.reverse_payment("U1", HOA, first)
        period = ledger.get_track_ledger("U1", HOA).periods[0]
        assert (period.base_paid, period.status, period.last_payment_ref) == (5000, PeriodStatus.PARTIALLY_PAID, "T2")

        ledger.reverse_payment("U1", HOA, second)
        period = ledger.get_track_ledger("U1", HOA).periods[0]
        assert period.base_paid == 0
        assert period.status == PeriodStatus.UNPAID
        assert period.last_payment_ref is None
        assert period.settled_on is None
        assert ledger.get_track_ledger("U1", HOA) == before

    def test_reversals_in_reverse_payment_order(self, ledger):
        ledger.run_billing(HOA, 2025, 0, {"U1": 10000})
        first = ledger.apply_payment("U1", HOA, 5000, "T1")
        after_first = ledger.get_track_ledger("U1", HOA)
        second = ledger.apply_payment("U1", HOA, 5000, "T2")

        ledger.reverse_payment("U1", HOA, second)
        assert ledger.get_track_ledger("U1", HOA) == after_first

        ledger.reverse_payment("U1", HOA, first)
        assert ledger.get_track_ledger("U1", HOA).periods[0].status == PeriodStatus.UNPAID

    def test_reversal_for_wrong_unit_rejected(self, ledger, billed_unit):
        result = ledger.apply_payment(billed_unit, HOA, 1000, "TX-1")
        with pytest.raises(LedgerValidationError, match="belongs to unit U1"):
            ledger.reverse_payment("U2", HOA, result)

    def test_failed_payment_leaves_ledger_untouched(self, ledger, billed_unit):
        before = ledger.get_track_ledger(billed_unit, HOA)
        missing = PeriodKey(fiscal_year=2024, fiscal_month=3, track=HOA)

        with pytest.raises(PeriodNotFoundError):
            ledger.apply_payment(billed_unit, HOA, 50000, "TX-1", targets=[missing])

        assert ledger.get_track_ledger(billed_unit, HOA) == before
        assert ledger.get_credit_history(billed_unit, "shared") == []

    def test_negative_payment_rejected(self, ledger, billed_unit):
        with pytest.raises(NegativeAmountError):
            ledger.apply_payment(billed_unit, HOA, -100, "TX-1")

    def test_zero_payment_writes_nothing(self, ledger, billed_unit, store):
        result = ledger.apply_payment(billed_unit, HOA, 0, "TX-0")
        assert result.is_empty
        assert store.read_document("clients/acme/units/U1/credit/shared") is None

    def test_payments_are_audited(self, ledger, billed_unit, db_session):
        ledger.apply_payment(billed_unit, HOA, 1000, "TX-1", actor_id="admin")

        audit = db_session.execute(select(AuditLog).where(AuditLog.entity_id == "TX-1")).scalar_one()
        assert audit.entity_type == "payment"
        assert audit.action == "apply"
        assert audit.actor_id == "admin"
        assert audit.changes["cash_amount"] == 1000


class TestPreview:
    """Test previewing payments."""

    def test_preview_does_not_write(self, ledger, billed_unit):
        before = ledger.get_track_ledger(billed_unit, HOA)

        preview = ledger.preview_payment(billed_unit, HOA, 150000, "TX-1")

        assert preview.credit_delta == 29769
        assert ledger.get_track_ledger(billed_unit, HOA) == before
        assert ledger.get_credit_balance(billed_unit, "shared") == 0

    def test_preview_matches_apply(self, ledger, billed_unit):
        preview = ledger.preview_payment(billed_unit, HOA, 50000, "TX-1")
        applied = ledger.apply_payment(billed_unit, HOA, 50000, "TX-1")
        assert preview.lines == applied.lines
        assert preview.credit_delta == applied.credit_delta


class TestOutstandingAndSummary:
    """Test read-side statements."""

    def test_outstanding_with_penalty(self, ledger, billed_unit):
        summary = ledger.compute_outstanding(billed_unit, HOA, as_of=date(2025, 1, 12))

        (statement,) = summary.periods
        assert statement.days_overdue == 11
        assert statement.base_owed == 120231
        assert statement.penalty_owed == 12023
        assert summary.total_owed == 132254
        assert summary.credit_balance == 0

    def test_net_owed_subtracts_credit(self, ledger, billed_unit):
        ledger.adjust_credit_manually(billed_unit, HOA, 20000, "Goodwill")
        summary = ledger.compute_outstanding(billed_unit, HOA)
        assert summary.net_owed == 100231

    def test_paid_periods_not_listed(self, ledger, billed_unit):
        ledger.apply_payment(billed_unit, HOA, 120231, "TX-1")
        assert ledger.compute_outstanding(billed_unit, HOA).periods == []

    def test_summarize_year(self, ledger, billed_unit):
        ledger.run_billing(HOA, 2025, 1, {"U1": 120231})
        ledger.apply_payment(billed_unit, HOA, 130000, "TX-1")

        summary = ledger.summarize_year(billed_unit, HOA, 2025)

        assert summary.total_charged == 240462
        assert summary.base_paid == 130000
        assert summary.paid_months == [0]
        assert summary.unpaid_months == [1]
        assert summary.base_owed == 110462
        assert summary.next_period_due == PeriodKey(fiscal_year=2025, fiscal_month=1, track=HOA)

    def test_select_unpaid_periods(self, ledger, billed_unit):
        ledger.run_billing(HOA, 2025, 1, {"U1": 5000})
        periods = ledger.select_unpaid_periods_oldest_first(billed_unit, HOA)
        assert [p.fiscal_month for p in periods] == [0, 1]


class TestManualCredit:
    """Test administrative credit adjustments."""

    def test_adjust_and_history(self, ledger, db_session):
        movement = ledger.adjust_credit_manually("U1", HOA, 5000, "Refund", actor_id="admin")

        assert movement.reason == CreditMovementReason.MANUAL_ADJUSTMENT
        assert movement.transaction_id.startswith("adjustment:")
        assert ledger.get_credit_balance("U1", "shared") == 5000
        assert db_session.execute(select(AuditLog).where(AuditLog.entity_type == "credit")).scalar_one()

    def test_negative_adjustment_beyond_balance(self, ledger):
        ledger.adjust_credit_manually("U1", HOA, 5000, "Refund")
        with pytest.raises(InsufficientCreditError):
            ledger.adjust_credit_manually("U1", HOA, -6000, "Chargeback")
        assert ledger.get_credit_balance("U1", "shared") == 5000

    def test_zero_adjustment_rejected(self, ledger):
        with pytest.raises(InvalidAmountError):
            ledger.adjust_credit_manually("U1", HOA, 0, "Nothing")

    def test_history_limit(self, ledger):
        for i in range(4):
            ledger.adjust_credit_manually("U1", HOA, 100 * (i + 1), f"Adjustment {i}")

        history = ledger.get_credit_history("U1", "shared", limit=2)

        assert [m.delta for m in history] == [400, 300]
