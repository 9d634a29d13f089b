"""Unit tests for billing period bookkeeping."""

from datetime import date

import pytest

from unitledger.errors import InvalidAmountError, LedgerCorruptionError, OverApplicationError
from unitledger.schemas.client_config import Track
from unitledger.schemas.ledger import DistributionLine, PeriodStatus, TrackLedger


class TestOutstanding:
    """Test what a period owes as of a date."""

    def test_before_grace_ends(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        owed = period_ledger.get_outstanding(period, date(2025, 1, 5))
        assert owed.base_owed == 10000
        assert owed.penalty_owed == 0
        assert owed.total == 10000

    def test_penalty_after_grace(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        owed = period_ledger.get_outstanding(period, date(2025, 1, 12))
        assert owed == (10000, 1000)

    def test_collected_amounts_reduce_outstanding(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        period.base_paid = 4000
        period.penalty_paid = 600
        owed = period_ledger.get_outstanding(period, date(2025, 1, 12))
        assert owed == (6000, 400)

    def test_overpaid_penalty_floors_at_zero(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        period.penalty_paid = 5000
        assert period_ledger.get_outstanding(period, date(2025, 1, 12)).penalty_owed == 0


class TestApplyPayment:
    """Test incrementing collected amounts."""

    def test_partial_payment(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        period_ledger.apply_payment(period, 4000, 0, date(2025, 1, 5), "TX-1")

        assert period.base_paid == 4000
        assert period.status == PeriodStatus.PARTIALLY_PAID
        assert period.last_payment_ref == "TX-1"
        assert period.settled_on is None

    def test_full_payment_settles(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        period_ledger.apply_payment(period, 10000, 0, date(2025, 1, 5), "TX-1")

        assert period.status == PeriodStatus.PAID
        assert period.settled_on == date(2025, 1, 5)

    def test_base_paid_but_penalty_owed_is_not_paid(self, period_ledger, make_period):
        """Test a period is only paid once its penalty is covered too."""
        period = make_period(base_charge=10000)
        period_ledger.apply_payment(period, 10000, 0, date(2025, 1, 12), "TX-1")
        assert period.status == PeriodStatus.PARTIALLY_PAID

        period_ledger.apply_payment(period, 0, 1000, date(2025, 1, 12), "TX-2")
        assert period.status == PeriodStatus.PAID
        assert period.last_payment_ref == "TX-2"

    def test_over_application_rejected(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        with pytest.raises(OverApplicationError):
            period_ledger.apply_payment(period, 10001, 0, date(2025, 1, 5), "TX-1")
        with pytest.raises(OverApplicationError):
            period_ledger.apply_payment(period, 0, 1, date(2025, 1, 5), "TX-1")
        assert period.base_paid == 0
        assert period.status == PeriodStatus.UNPAID

    def test_negative_amounts_rejected(self, period_ledger, make_period):
        period = make_period()
        with pytest.raises(InvalidAmountError):
            period_ledger.apply_payment(period, -1, 0, date(2025, 1, 5), "TX-1")

    def test_zero_application_is_noop(self, period_ledger, make_period):
        period = make_period()
        period_ledger.apply_payment(period, 0, 0, date(2025, 1, 5), "TX-1")
        assert period.last_payment_ref is None
        assert period.status == PeriodStatus.UNPAID


class TestRevertPayment:
    """Test undoing recorded distribution lines."""

    def _line(self, period, base, penalty):
        return DistributionLine(
            period_key=period.key,
            base_applied=base,
            penalty_applied=penalty,
            previous_status=period.status,
            previous_payment_ref=period.last_payment_ref,
            previous_settled_on=period.settled_on,
            previous_base_paid=period.base_paid,
            previous_penalty_paid=period.penalty_paid,
        )

    def test_restores_previous_fields(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        before = period.model_copy(deep=True)
        line = self._line(period, 10000, 1000)
        period_ledger.apply_payment(period, 10000, 1000, date(2025, 1, 12), "TX-1")

        period_ledger.revert_payment(period, line, "TX-1", date(2025, 6, 1))

        assert period == before

    def test_later_payment_keeps_its_reference(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        first = self._line(period, 5000, 0)
        period_ledger.apply_payment(period, 5000, 0, date(2025, 1, 5), "TX-1")
        period_ledger.apply_payment(period, 5000, 0, date(2025, 1, 6), "TX-2")
        assert period.status == PeriodStatus.PAID

        period_ledger.revert_payment(period, first, "TX-1", date(2025, 1, 7))

        assert period.base_paid == 5000
        assert period.status == PeriodStatus.PARTIALLY_PAID
        assert period.last_payment_ref == "TX-2"
        assert period.settled_on is None

    def test_reverting_in_creation_order(self, period_ledger, make_period):
        """Test reverting the earlier then the later payment ends UNPAID."""
        period = make_period(base_charge=10000)
        first = self._line(period, 5000, 0)
        period_ledger.apply_payment(period, 5000, 0, date(2025, 1, 5), "TX-1")
        second = self._line(period, 5000, 0)
        period_ledger.apply_payment(period, 5000, 0, date(2025, 1, 6), "TX-2")

        period_ledger.revert_payment(period, first, "TX-1", date(2025, 1, 7))
        period_ledger.revert_payment(period, second, "TX-2", date(2025, 1, 7), reversed_refs={"TX-1"})

        assert (period.base_paid, period.penalty_paid) == (0, 0)
        assert period.status == PeriodStatus.UNPAID
        assert period.last_payment_ref is None
        assert period.settled_on is None

    def test_reversed_reference_not_reinstated(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        period_ledger.apply_payment(period, 2000, 0, date(2025, 1, 5), "TX-1")
        second = self._line(period, 3000, 0)
        period_ledger.apply_payment(period, 3000, 0, date(2025, 1, 5), "TX-2")
        third = self._line(period, 1000, 0)
        period_ledger.apply_payment(period, 1000, 0, date(2025, 1, 5), "TX-3")

        period_ledger.revert_payment(period, second, "TX-2", date(2025, 1, 6))
        assert period.last_payment_ref == "TX-3"
        period_ledger.revert_payment(period, third, "TX-3", date(2025, 1, 6), reversed_refs={"TX-2"})

        assert period.base_paid == 2000
        assert period.status == PeriodStatus.PARTIALLY_PAID
        assert period.last_payment_ref is None

    def test_negative_result_is_corruption(self, period_ledger, make_period):
        period = make_period(base_charge=10000)
        line = self._line(period, 3000, 0)
        with pytest.raises(LedgerCorruptionError):
            period_ledger.revert_payment(period, line, "TX-1", date(2025, 1, 5))
        assert period.base_paid == 0


class TestSelectUnpaid:
    """Test the oldest-first selection rule."""

    def test_oldest_first(self, period_ledger, make_period):
        ledger = TrackLedger(
            unit_id="U1",
            track=Track.HOA_DUES,
            periods=[make_period(2), make_period(0, fiscal_year=2026), make_period(0)],
        )
        selected = period_ledger.select_unpaid_periods_oldest_first(ledger, date(2025, 1, 5))
        assert [(p.fiscal_year, p.fiscal_month) for p in selected] == [(2025, 0), (2025, 2), (2026, 0)]

    def test_skips_paid_periods(self, period_ledger, make_period):
        paid = make_period(0)
        period_ledger.apply_payment(paid, 10000, 0, date(2025, 1, 5), "TX-1")
        ledger = TrackLedger(unit_id="U1", track=Track.HOA_DUES, periods=[paid, make_period(1)])

        selected = period_ledger.select_unpaid_periods_oldest_first(ledger, date(2025, 1, 5))
        assert [p.fiscal_month for p in selected] == [1]

    def test_unbilled_only_where_prepayment_allowed(self, period_ledger, make_period):
        hoa = TrackLedger(unit_id="U1", track=Track.HOA_DUES, periods=[make_period(5, billed=False)])
        water = TrackLedger(
            unit_id="U1",
            track=Track.WATER_BILLS,
            periods=[make_period(5, track=Track.WATER_BILLS, billed=False)],
        )
        assert len(period_ledger.select_unpaid_periods_oldest_first(hoa, date(2025, 1, 5))) == 1
        assert period_ledger.select_unpaid_periods_oldest_first(water, date(2025, 1, 5)) == []
