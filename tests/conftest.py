"""Pytest configuration and fixtures"""
import json
import os
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

# Set test environment variables before the application reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("WALLET_RETRY_BASE_DELAY", "0")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from skillmint import models  # noqa: F401
from skillmint.config import settings
from skillmint.core.exceptions import GatewayUnavailable
from skillmint.core.security import create_access_token
from skillmint.database import Base, build_engine, get_db
from skillmint.models.course import Course
from skillmint.models.user import User, UserRole
from skillmint.services.commission_service import CommissionRates
from skillmint.services.payment_service import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    PaymentGateway,
    sign,
)
from skillmint.services.wallet_service import WalletLedger


class StubGateway(PaymentGateway):
    """In-memory processor. Signatures use the real HMAC checks."""

    def __init__(self):
        super().__init__(
            settings.RAZORPAY_KEY_ID,
            settings.RAZORPAY_KEY_SECRET,
            settings.RAZORPAY_WEBHOOK_SECRET,
        )
        self.orders: Dict[str, GatewayOrder] = {}
        self.payments: Dict[str, List[GatewayPayment]] = {}
        self.refunds: List[GatewayRefund] = []
        self.fail_create = False
        self.fail_refund = False

    async def create_order(self, amount, currency, receipt, notes=None) -> GatewayOrder:
        if self.fail_create:
            raise GatewayUnavailable("Payment gateway order.create failed")
        gateway_order = GatewayOrder(
            gateway_order_id=f"order_{len(self.orders) + 1:06d}",
            amount=amount,
            currency=currency,
            receipt=receipt,
        )
        self.orders[gateway_order.gateway_order_id] = gateway_order
        return gateway_order

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        for payments in self.payments.values():
            for payment in payments:
                if payment.id == payment_id:
                    return payment
        raise GatewayUnavailable("Payment gateway payment.fetch failed")

    async def get_order_payments(self, gateway_order_id: str) -> List[GatewayPayment]:
        return self.payments.get(gateway_order_id, [])

    async def refund_payment(self, payment_id, amount=None, notes=None) -> GatewayRefund:
        if self.fail_refund:
            raise GatewayUnavailable("Payment gateway payment.refund failed")
        refund = GatewayRefund(
            refund_id=f"rfnd_{len(self.refunds) + 1:06d}",
            payment_id=payment_id,
            amount=amount or Decimal("0"),
            status="processed",
        )
        self.refunds.append(refund)
        return refund

    # Helpers for tests

    def capture(self, gateway_order_id: str, payment_id: str) -> None:
        order = self.orders[gateway_order_id]
        self.payments.setdefault(gateway_order_id, []).append(GatewayPayment(
            id=payment_id,
            status="captured",
            amount=order.amount,
            currency=order.currency,
            captured=True,
            order_id=gateway_order_id,
        ))

    def checkout_signature(self, gateway_order_id: str, payment_id: str) -> str:
        return sign(self.key_secret, f"{gateway_order_id}|{payment_id}".encode())

    def webhook(self, event: str, entity: Dict[str, Any], entity_name: str = "payment"):
        body = json.dumps({
            "event": event,
            "payload": {entity_name: {"entity": entity}},
        }).encode()
        return body, sign(self.webhook_secret, body)


@pytest_asyncio.fixture
async def engine():
    test_engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def rates():
    return CommissionRates({1: 10, 2: 5, 3: 2})


@pytest.fixture
def platform_account(monkeypatch):
    """Route platform revenue to a fixed account id."""
    account_id = uuid.uuid4()
    monkeypatch.setattr(settings, "PLATFORM_ACCOUNT_ID", str(account_id))
    return account_id


async def create_user(
    session: AsyncSession,
    name: str,
    role: str = UserRole.STUDENT.value,
    referred_by: Optional[User] = None,
    referral_code: Optional[str] = None,
    is_active: bool = True,
) -> User:
    user = User(
        name=name,
        email=f"{name.lower().replace(' ', '.')}.{uuid.uuid4().hex[:6]}@example.com",
        role=role,
        referral_code=referral_code,
        referred_by_id=referred_by.id if referred_by else None,
        is_active=is_active,
    )
    session.add(user)
    await session.commit()
    return user


async def create_course(
    session: AsyncSession,
    instructor: User,
    price: str = "1000.00",
    instructor_share_pct: str = "70",
    affiliate_commission_pct: str = "10",
) -> Course:
    course = Course(
        title="Practical Data Engineering",
        instructor_id=instructor.id,
        price=Decimal(price),
        instructor_share_pct=Decimal(instructor_share_pct),
        affiliate_commission_pct=Decimal(affiliate_commission_pct),
        is_published=True,
    )
    session.add(course)
    await session.commit()
    return course


@pytest.fixture
def make_user():
    return create_user


@pytest.fixture
def make_course():
    return create_course


@pytest_asyncio.fixture
async def marketplace(db, platform_account):
    """
    Buyer, instructor and a three-level affiliate chain C <- B <- A.
    The buyer is not referred by anyone; tests attach the chain as needed.
    """
    admin = await create_user(db, "Ada Admin", UserRole.ADMIN.value)
    platform = User(id=platform_account, name="Platform", email="platform@skillmint.test", role=UserRole.ADMIN.value)
    db.add(platform)
    await db.commit()

    instructor = await create_user(db, "Ian Instructor", UserRole.INSTRUCTOR.value)
    affiliate_c = await create_user(db, "Cara", UserRole.AFFILIATE.value, referral_code="CARC0DEXYZ")
    affiliate_b = await create_user(db, "Bob", UserRole.AFFILIATE.value, referred_by=affiliate_c, referral_code="BOBB0B0XYZ")
    affiliate_a = await create_user(db, "Ann", UserRole.AFFILIATE.value, referred_by=affiliate_b, referral_code="ANNA1B2XYZ")
    buyer = await create_user(db, "Sam Student")
    course = await create_course(db, instructor)

    return {
        "admin": admin,
        "platform": platform,
        "instructor": instructor,
        "affiliate_a": affiliate_a,
        "affiliate_b": affiliate_b,
        "affiliate_c": affiliate_c,
        "buyer": buyer,
        "course": course,
    }


async def fund_wallet(session: AsyncSession, user_id: uuid.UUID, amount: str) -> None:
    await WalletLedger(session).credit(user_id, Decimal(amount), "Test funding", reference_type="bonus")
    await session.commit()


@pytest.fixture
def fund():
    return fund_wallet


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def headers():
    return auth_headers


@pytest_asyncio.fixture
async def client(session_factory, gateway, rates):
    """HTTP client against the app with the test database and stub gateway."""
    from skillmint.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.gateway = gateway
    app.state.commission_rates = rates

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()
    app.state.gateway = None
    app.state.commission_rates = None
