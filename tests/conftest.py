"""
Shared fixtures: an in-memory database per test, a seeded catalog,
a fake Paynow gateway and a recording event bus.
"""
import os
import tempfile
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "cemetery-test-logs"))
os.environ.setdefault("PAYNOW_INTEGRATION_ID", "1234")
os.environ.setdefault("PAYNOW_INTEGRATION_KEY", "test-integration-key")
os.environ.setdefault("PAYNOW_RETURN_URL", "https://cemetery.test/return")
os.environ.setdefault("PAYNOW_RESULT_URL", "https://cemetery.test/api/payments/paynow/webhook")

from datetime import date, datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cemetery.database import get_db, get_session_factory, init_db
from cemetery.events import SettlementEvents, get_event_bus
from cemetery.exceptions import GatewayError
from cemetery.models import (
    AgeBracket, Member, Payment, PaymentMethod, PaymentStatus, PlanPrice, Product,
    ProductCategory, Purchase, PurchaseKind, PurchaseStatus, YearPlan,
)
from cemetery.services.fulfillment_service import FulfillmentService
from cemetery.services.paynow_client import (
    PollResult, PushInitiation, RedirectInitiation, get_paynow_client,
)
from cemetery.utils.rate_limiter import reset_rate_limits

VALID_HASH = "VALID-HASH"


class FakeGateway:
    """Stands in for PaynowClient; every call is recorded."""

    def __init__(self):
        self.initiations = []
        self.polls = []
        self.poll_status = "Sent"
        self.poll_error = None
        self.initiation_error = None

    def initiate_redirect(self, reference, amount):
        if self.initiation_error:
            raise self.initiation_error
        self.initiations.append(("redirect", reference, amount, None))
        return RedirectInitiation(
            redirect_url=f"https://paynow.test/pay/{reference}",
            poll_url=f"https://paynow.test/poll/{reference}",
        )

    def initiate_push(self, reference, amount, phone):
        if self.initiation_error:
            raise self.initiation_error
        self.initiations.append(("push", reference, amount, phone))
        return PushInitiation(poll_url=f"https://paynow.test/poll/{reference}")

    def poll(self, poll_url):
        self.polls.append(poll_url)
        if self.poll_error:
            raise self.poll_error
        mapped = {"paid": "PAID", "cancelled": "FAILED", "failed": "FAILED", "expired": "FAILED"}
        return PollResult(status=mapped.get(self.poll_status.lower(), "PENDING"), gateway_status=self.poll_status)

    def verify_webhook_signature(self, payload):
        return payload.get("hash") == VALID_HASH


class RecordingEvents(SettlementEvents):
    """Event bus that records what was published and still runs fulfillment."""

    def __init__(self):
        super().__init__()
        self.dashboard_reasons = []
        self.redemptions = []
        self.subscribe_dashboard(self.dashboard_reasons.append)
        self.subscribe_redemption(lambda db, outcome: self.redemptions.append(outcome))
        self.subscribe_redemption(FulfillmentService.handle_redemption)


# ─── Database ────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ─── Collaborators ───────────────────────────────────────────────────

@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def unreachable_gateway(gateway):
    gateway.poll_error = GatewayError("Paynow request failed: timed out")
    return gateway


@pytest.fixture
def events():
    return RecordingEvents()


# ─── Seed data ───────────────────────────────────────────────────────

@pytest.fixture
def member(db):
    m = Member(first_name="Tendai", last_name="Moyo", date_of_birth=date(1970, 5, 20), phone="0771234567")
    db.add(m)
    db.commit()
    return m


@pytest.fixture
def other_member(db):
    m = Member(first_name="Rudo", last_name="Ncube", date_of_birth=date(1985, 1, 2))
    db.add(m)
    db.commit()
    return m


@pytest.fixture
def senior_member(db):
    m = Member(first_name="Farai", last_name="Dube", date_of_birth=date(1950, 3, 15))
    db.add(m)
    db.commit()
    return m


@pytest.fixture
def plot(db):
    p = Product(title="Standard Grave", category=ProductCategory.BURIAL_PLOT,
                amount=Decimal("100.00"), pricing_section="STANDARD")
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def family_plot(db):
    p = Product(title="Family Grave", category=ProductCategory.BURIAL_PLOT,
                amount=Decimal("300.00"), pricing_section="FAMILY")
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def hearse(db):
    p = Product(title="Hearse Hire", category=ProductCategory.SERVICE, amount=Decimal("50.00"))
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def plan(db):
    yp = YearPlan(name="12 Month Plan", months=12)
    yp.prices = [
        PlanPrice(pricing_section="STANDARD", age_bracket=AgeBracket.UNDER_60, monthly_price=Decimal("25.00")),
        PlanPrice(pricing_section="STANDARD", age_bracket=AgeBracket.SIXTY_PLUS, monthly_price=Decimal("30.00")),
    ]
    db.add(yp)
    db.commit()
    return yp


@pytest.fixture
def make_purchase(db):
    """Insert a purchase directly, bypassing initiation."""

    def _make(member, product, total, kind=PurchaseKind.IMMEDIATE, created_at=None, **fields):
        total = Decimal(total)
        purchase = Purchase(
            member_id=member.id,
            product_id=product.id,
            kind=kind,
            total_amount=total,
            paid_amount=fields.pop("paid_amount", Decimal("0")),
            balance=fields.pop("balance", total),
            status=fields.pop("status", PurchaseStatus.PENDING_PAYMENT),
            created_at=created_at or datetime.utcnow(),
            **fields,
        )
        db.add(purchase)
        db.commit()
        return purchase

    return _make


@pytest.fixture
def make_payment(db):
    """Insert a gateway payment directly in the given status."""

    def _make(purchase, amount, status=PaymentStatus.INITIATED, reference=None, created_at=None,
              method=PaymentMethod.PAYNOW):
        payment = Payment(
            purchase_id=purchase.id,
            member_id=purchase.member_id,
            reference=reference or f"GW-TEST-{uuid.uuid4().hex.upper()}",
            amount=Decimal(amount),
            method=method,
            status=status,
            poll_url="https://paynow.test/poll/x",
            created_at=created_at or datetime.utcnow(),
        )
        db.add(payment)
        db.commit()
        return payment

    return _make


# ─── HTTP ────────────────────────────────────────────────────────────

@pytest.fixture
def client(session_factory, gateway, events):
    from cemetery.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_paynow_client] = lambda: gateway
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_event_bus] = lambda: events
    reset_rate_limits()

    yield TestClient(app)

    app.dependency_overrides.clear()
