import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from checkout_service import db, models
from checkout_service.delivery import get_delivery_client
from checkout_service.deps import get_db
from checkout_service.main import app
from checkout_service.payments import PaymentIntent, StripePayments, get_payments
from checkout_service.pricing import to_minor_units


class FakeStripe(StripePayments):
    """StripePayments with the network calls replaced by an in-memory ledger."""

    def __init__(self):
        super().__init__(api_key="sk_test_fake")
        self.intents = {}

    def create_intent(self, amount, metadata=None):
        intent_id = f"pi_{len(self.intents) + 1}"
        intent = PaymentIntent(intent_id, f"{intent_id}_secret", to_minor_units(amount), "requires_payment_method")
        self.intents[intent_id] = intent
        return intent

    def retrieve_intent(self, payment_intent_id):
        return self.intents[payment_intent_id]

    def capture(self, payment_intent_id):
        self.intents[payment_intent_id].status = "succeeded"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db.init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db_session(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def stripe_fake():
    return FakeStripe()


@pytest.fixture
def client(session_factory, stripe_fake):
    def override_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_payments] = lambda: stripe_fake
    app.dependency_overrides[get_delivery_client] = lambda: None
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


CUSTOMER = {"X-User-Id": "user-1", "X-User-Email": "ada@example.com"}
OTHER_CUSTOMER = {"X-User-Id": "user-2"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


def seed_catalog(db_session):
    """Two open restaurants, a small menu and a set of coupons."""
    now = models.utcnow()
    pizza = models.Restaurant(name="Sunset Pizzeria", address="123 Main St", phone="+14155550100")
    curry = models.Restaurant(name="Spice Garden", address="55 Curry Ave")
    db_session.add_all([pizza, curry])
    db_session.flush()

    margherita = models.MenuItem(restaurant_id=pizza.restaurant_id, name="Margherita", price=Decimal("10.00"))
    garlic = models.MenuItem(restaurant_id=pizza.restaurant_id, name="Garlic Bread", price=Decimal("5.00"))
    soldout = models.MenuItem(restaurant_id=pizza.restaurant_id, name="Calzone", price=Decimal("12.00"),
                              is_available=False)
    paneer = models.MenuItem(restaurant_id=curry.restaurant_id, name="Paneer Tikka", price=Decimal("11.00"))
    db_session.add_all([margherita, garlic, soldout, paneer])

    window = dict(start_date=now - timedelta(days=1), end_date=now + timedelta(days=30))
    db_session.add_all([
        models.Coupon(code="SAVE10", title="10% off", discount_type="percentage",
                      discount_value=Decimal("10"), **window),
        models.Coupon(code="FIVEOFF", title="$5 off", discount_type="fixed",
                      discount_value=Decimal("5"), minimum_order=Decimal("20.00"), **window),
        models.Coupon(code="FREEDEL", title="Free delivery", discount_type="free_delivery",
                      discount_value=Decimal("0"), **window),
        models.Coupon(code="LASTONE", title="Last one", discount_type="percentage",
                      discount_value=Decimal("50"), max_usage=1, **window),
        models.Coupon(code="ONCEEACH", title="Once per customer", discount_type="fixed",
                      discount_value=Decimal("3"), user_limit=1, **window),
        models.Coupon(code="PIZZAONLY", title="Pizza night", discount_type="percentage",
                      discount_value=Decimal("20"), restaurant_id=pizza.restaurant_id, **window),
    ])
    db_session.commit()
    return {
        "pizza": pizza.restaurant_id,
        "curry": curry.restaurant_id,
        "margherita": margherita.item_id,
        "garlic": garlic.item_id,
        "soldout": soldout.item_id,
        "paneer": paneer.item_id,
    }


@pytest.fixture
def seeded(db_session):
    return seed_catalog(db_session)
