"""Unit tests for late penalty calculation."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from unitledger.errors import InvalidAmountError
from unitledger.schemas.client_config import TrackConfig
from unitledger.services.penalty_service import PenaltyCalculator, compute_penalty, months_overdue


class TestComputePenalty:
    """Test penalty arithmetic."""

    def test_no_penalty_within_grace(self):
        """Test the last grace day carries no penalty."""
        assert compute_penalty(100000, Decimal("0.10"), 10) == 0
        assert compute_penalty(100000, Decimal("0.10"), 0) == 0
        assert compute_penalty(100000, Decimal("0.10"), -5) == 0

    def test_first_day_after_grace_is_one_month(self):
        """Test penalties start with a full month on day 11."""
        assert compute_penalty(100000, Decimal("0.10"), 11) == 10000

    def test_thirty_day_blocks(self):
        """Test each started 30-day block after grace adds a month."""
        assert compute_penalty(100000, Decimal("0.10"), 40) == 10000
        assert compute_penalty(100000, Decimal("0.10"), 41) == 21000
        assert compute_penalty(100000, Decimal("0.10"), 71) == 33100

    def test_simple_interest(self):
        """Test non-compounding mode multiplies by months."""
        assert compute_penalty(100000, Decimal("0.10"), 71, compound=False) == 30000

    def test_round_half_up(self):
        """Test half a minor unit rounds up."""
        assert compute_penalty(5, Decimal("0.10"), 11) == 1
        assert compute_penalty(25, Decimal("0.10"), 11) == 3
        assert compute_penalty(50, Decimal("0.10"), 41) == 11

    def test_accepts_string_and_float_rates(self):
        assert compute_penalty(100000, "0.10", 11) == 10000
        assert compute_penalty(100000, 0.1, 11) == 10000

    def test_custom_grace_period(self):
        assert compute_penalty(100000, Decimal("0.10"), 5, grace_period_days=0) == 10000
        assert compute_penalty(100000, Decimal("0.10"), 20, grace_period_days=30) == 0

    def test_monotonic_in_days(self):
        """Test the penalty never decreases as days pass."""
        previous = 0
        for days in range(0, 400):
            penalty = compute_penalty(120231, Decimal("0.10"), days)
            assert penalty >= previous
            previous = penalty

    def test_zero_base_or_rate(self):
        assert compute_penalty(0, Decimal("0.10"), 100) == 0
        assert compute_penalty(100000, Decimal("0"), 100) == 0

    def test_negative_inputs_rejected(self):
        with pytest.raises(InvalidAmountError):
            compute_penalty(-1, Decimal("0.10"), 20)
        with pytest.raises(InvalidAmountError):
            compute_penalty(100, Decimal("-0.10"), 20)

    def test_months_overdue(self):
        assert months_overdue(10, 10) == 0
        assert months_overdue(11, 10) == 1
        assert months_overdue(40, 10) == 1
        assert months_overdue(41, 10) == 2


class TestPenaltyCalculator:
    """Test penalties computed for billing periods."""

    @pytest.fixture
    def calculator(self):
        return PenaltyCalculator(TrackConfig())

    def test_recomputed_as_time_passes(self, calculator, make_period):
        """Test the same period carries more penalty later."""
        period = make_period(base_charge=100000)
        assert calculator.penalty_for(period, date(2025, 1, 11)) == 0
        assert calculator.penalty_for(period, date(2025, 1, 12)) == 10000
        assert calculator.penalty_for(period, date(2025, 2, 11)) == 21000

    def test_unbilled_period_never_accrues(self, calculator, make_period):
        period = make_period(base_charge=100000, billed=False)
        assert calculator.penalty_for(period, date(2025, 6, 1)) == 0

    def test_settled_period_is_frozen(self, calculator, make_period):
        """Test a paid period stops accruing on the day it was settled."""
        period = make_period(base_charge=100000)
        period.settled_on = period.due_date + timedelta(days=15)
        assert calculator.penalty_for(period, date(2025, 12, 31)) == 10000

    def test_simple_track(self, make_period):
        calculator = PenaltyCalculator(TrackConfig(compound=False, penalty_rate=Decimal("0.05")))
        period = make_period(base_charge=100000)
        assert calculator.penalty_for(period, date(2025, 3, 15)) == 15000
