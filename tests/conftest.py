"""Pytest configuration: in-memory ledger database, fixed clock, default client."""

from datetime import date
from decimal import Decimal

import pytest

from unitledger.schemas.client_config import ClientConfig, Track, TrackConfig
from unitledger.schemas.ledger import BillingPeriod, PeriodStatus
from unitledger.services.audit_service import AuditService
from unitledger.services.clock import FixedClock
from unitledger.services.credit_service import CreditService
from unitledger.services.db import build_engine, create_session_factory, create_tables
from unitledger.services.distribution_service import PaymentDistributor
from unitledger.services.document_store import SqlDocumentStore
from unitledger.services.fiscal_calendar import period_due_date
from unitledger.services.ledger_service import LedgerService
from unitledger.services.period_ledger import PeriodLedgerService
from unitledger.services.reversal_service import ReversalEngine

TODAY = date(2025, 1, 5)


@pytest.fixture
def engine():
    """Create in-memory SQLite engine with all ledger tables."""
    engine = build_engine("sqlite:///:memory:")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Create session factory bound to the test engine."""
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    """Create test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    """Clock pinned to 2025-01-05."""
    return FixedClock(TODAY)


@pytest.fixture
def client_config():
    """Default client: January fiscal year, 10% compound penalty, 10 grace days."""
    return ClientConfig(client_id="acme")


@pytest.fixture
def no_penalty_config():
    """Client whose tracks never accrue penalties."""
    return ClientConfig(
        client_id="acme",
        tracks={
            Track.HOA_DUES: TrackConfig(penalty_rate=Decimal("0"), allow_prepayment=True),
            Track.WATER_BILLS: TrackConfig(penalty_rate=Decimal("0")),
        },
    )


@pytest.fixture
def period_ledger(client_config):
    return PeriodLedgerService(client_config)


@pytest.fixture
def credit_service(clock):
    return CreditService(clock)


@pytest.fixture
def distributor(period_ledger, credit_service):
    return PaymentDistributor(period_ledger, credit_service)


@pytest.fixture
def reversal_engine(period_ledger, credit_service):
    return ReversalEngine(period_ledger, credit_service)


@pytest.fixture
def store(session_factory):
    return SqlDocumentStore(session_factory)


@pytest.fixture
def audit(session_factory):
    return AuditService(session_factory)


@pytest.fixture
def ledger(store, client_config, clock, audit):
    """Store-backed ledger facade for client "acme"."""
    return LedgerService(store, client_config, clock=clock, audit=audit)


@pytest.fixture
def make_period():
    """Factory for billing periods of a January-start fiscal year, due on the 1st."""

    def _make(
        fiscal_month: int = 0,
        base_charge: int = 10000,
        fiscal_year: int = 2025,
        track: Track = Track.HOA_DUES,
        billed: bool = True,
    ) -> BillingPeriod:
        due = period_due_date(fiscal_year, fiscal_month, 1)
        return BillingPeriod(
            fiscal_year=fiscal_year,
            fiscal_month=fiscal_month,
            track=track,
            base_charge=base_charge,
            due_date=due,
            status=PeriodStatus.UNPAID if billed else PeriodStatus.UNBILLED,
            billed_on=due if billed else None,
        )

    return _make
