"""Pytest fixtures for testing"""

import asyncio
import pytest
from decimal import Decimal
from typing import Dict, Generator, List, Optional
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from pyrus_checkout.api.main import create_app
from pyrus_checkout.api.dependencies import (
    get_coupon_lookup,
    get_onboarding_client,
    get_payment_processor,
)
from pyrus_checkout.domain.coupons import CouponEngine, StaticCouponTable
from pyrus_checkout.domain.exceptions import PaymentSetupFailed
from pyrus_checkout.domain.models import (
    CaptureResult,
    CaptureStatus,
    CartItem,
    ClientProfile,
    PaymentIntentHandle,
    SettlementRecord,
)
from pyrus_checkout.infrastructure.database.models import Base, ClientRecord
from pyrus_checkout.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_COUPONS = {"HARVEST5X": 5, "SAVE10": 10, "CULTIVATE10": 10, "TEST2": 100}
TEST_MIN_SPEND = {"HARVEST5X": 1000, "CULTIVATE10": 2000}


class FakeProcessor:
    """In-memory payment processor recording every call; replays requests by idempotency key"""

    def __init__(self):
        self.created: List[PaymentIntentHandle] = []
        self.cancelled: List[str] = []
        self.charges: List[tuple] = []
        self.customers: List[str] = []
        self.confirm_calls = 0
        self.next_status = CaptureStatus.SUCCEEDED
        self.next_message: Optional[str] = None
        self.fail_create = False
        self.drop_charge_response = False
        self.gate: Optional[asyncio.Event] = None
        self.auth_keys: List[Optional[str]] = []
        self.charge_keys: List[Optional[str]] = []
        self._charges_by_key: Dict[str, CaptureResult] = {}

    async def ensure_customer(self, client):
        customer_id = client.stripe_customer_id or f"cus_{client.id}"
        self.customers.append(customer_id)
        return customer_id

    async def create_authorization(self, amount_cents, metadata, customer_id=None, idempotency_key=None):
        self.auth_keys.append(idempotency_key)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_create:
            raise PaymentSetupFailed("Failed to set up payment. Please try again.")
        n = len(self.created) + 1
        handle = PaymentIntentHandle(
            intent_id=f"pi_{n}",
            client_secret=f"pi_{n}_secret",
            amount_cents=amount_cents,
        )
        self.created.append(handle)
        return handle

    async def cancel_authorization(self, handle):
        self.cancelled.append(handle.intent_id)

    async def confirm(self, handle):
        self.confirm_calls += 1
        return CaptureResult(status=self.next_status, message=self.next_message, reference=handle.intent_id)

    async def charge_saved_method(self, amount_cents, payment_method_id, metadata, customer_id=None, idempotency_key=None):
        self.charge_keys.append(idempotency_key)
        if self.gate is not None:
            await self.gate.wait()
        if idempotency_key not in self._charges_by_key:
            self.charges.append((amount_cents, payment_method_id))
            reference = f"pi_saved_{len(self.charges)}"
            self._charges_by_key[idempotency_key] = CaptureResult(
                status=self.next_status,
                message=self.next_message,
                reference=reference,
                client_secret=f"{reference}_secret",
            )
        if self.drop_charge_response:
            # Charge went through but the answer never arrived
            self.drop_charge_response = False
            raise PaymentSetupFailed("Payment service timeout")
        return self._charges_by_key[idempotency_key]

    @property
    def live(self) -> List[PaymentIntentHandle]:
        return [h for h in self.created if h.intent_id not in self.cancelled]

    @property
    def total_calls(self) -> int:
        return (
            len(self.created)
            + len(self.cancelled)
            + len(self.charges)
            + len(self.customers)
            + self.confirm_calls
        )


class FakeCartStore:
    def __init__(self, items: List[CartItem]):
        self.items = items

    def load_cart(self, client_id: str, tier: str) -> List[CartItem]:
        return list(self.items)


class FakeClientRecords:
    def __init__(self, client: Optional[ClientProfile] = None):
        self.client = client or ClientProfile(id="client_1", name="Acme Roofing", growth_stage="prospect")
        self.stage_updates: List[tuple] = []
        self.settlements: List[SettlementRecord] = []
        self.customer_ids: List[tuple] = []

    def get_client(self, client_id: str) -> Optional[ClientProfile]:
        return self.client if self.client and self.client.id == client_id else None

    def update_growth_stage(self, client_id: str, stage: str) -> None:
        self.stage_updates.append((client_id, stage))

    def record_settlement(self, record: SettlementRecord) -> None:
        self.settlements.append(record)

    def set_stripe_customer_id(self, client_id: str, customer_id: str) -> None:
        self.customer_ids.append((client_id, customer_id))


class FakeOnboarding:
    def __init__(self):
        self.handoffs: List[SettlementRecord] = []

    async def hand_off(self, record: SettlementRecord) -> None:
        self.handoffs.append(record)


def monthly_item(item_id: str, price, quantity: int = 1, **kwargs) -> CartItem:
    return CartItem(
        id=item_id,
        name=kwargs.pop("name", item_id),
        quantity=quantity,
        monthly_price=Decimal(str(price)),
        onetime_price=Decimal(str(kwargs.pop("onetime_price", 0))),
        pricing_type="monthly",
        **kwargs,
    )


def onetime_item(item_id: str, price, quantity: int = 1, **kwargs) -> CartItem:
    return CartItem(
        id=item_id,
        name=kwargs.pop("name", item_id),
        quantity=quantity,
        monthly_price=Decimal(str(kwargs.pop("monthly_price", 0))),
        onetime_price=Decimal(str(price)),
        pricing_type="onetime",
        **kwargs,
    )


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def coupon_table() -> StaticCouponTable:
    return StaticCouponTable(TEST_COUPONS, TEST_MIN_SPEND)


@pytest.fixture
def coupon_engine(coupon_table: StaticCouponTable) -> CouponEngine:
    return CouponEngine(coupon_table)


@pytest.fixture
def client_records() -> FakeClientRecords:
    return FakeClientRecords()


@pytest.fixture
def onboarding() -> FakeOnboarding:
    return FakeOnboarding()


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seeded_client(db: Session) -> ClientRecord:
    """Client record checkout can load"""
    record = ClientRecord(id="client_1", name="Acme Roofing", contact_email="owner@acme.test", growth_stage="prospect")
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def client(
    db: Session,
    processor: FakeProcessor,
    coupon_table: StaticCouponTable,
    onboarding: FakeOnboarding,
) -> TestClient:
    """Create FastAPI test client with test database and fake collaborators"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_processor] = lambda: processor
    app.dependency_overrides[get_coupon_lookup] = lambda: coupon_table
    app.dependency_overrides[get_onboarding_client] = lambda: onboarding
    return TestClient(app)
