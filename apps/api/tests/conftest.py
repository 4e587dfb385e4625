from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Generator, Optional
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.auth.schemas import AuthContext
from app.auth.utils import create_access_token
from app.common.models import Base, Payment, PaymentServiceLink, Service

# In-memory SQLite shared by every connection of the test engine
TEST_DB_URL = "sqlite:///:memory:"
engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PARTNER_ID = "6a1f2b3c-4d5e-4f60-8a7b-9c0d1e2f3a4b"
OTHER_PARTNER_ID = "0b9a8c7d-6e5f-4a3b-9c2d-1e0f9a8b7c6d"


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test; tables are dropped afterwards."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def tenant_id() -> str:
    """Return a valid UUID string for testing."""
    return "12345678-1234-5678-1234-567812345678"


@pytest.fixture
def tenant_uuid(tenant_id: str) -> UUID:
    return UUID(tenant_id)


@pytest.fixture(autouse=True)
def _tenant_settings(tenant_id: str, monkeypatch) -> None:
    from app.core.config import settings

    monkeypatch.setattr(settings, "tenant_id", tenant_id)


@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with dependency overrides."""

    def get_test_db():
        yield db

    from app.common.db import get_db

    app.dependency_overrides[get_db] = get_test_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def partner_id() -> str:
    return PARTNER_ID


@pytest.fixture
def other_partner_id() -> str:
    return OTHER_PARTNER_ID


# Caller contexts for service-layer tests
@pytest.fixture
def admin_ctx() -> AuthContext:
    return AuthContext(identity="admin-1", role="admin")


@pytest.fixture
def finance_ctx() -> AuthContext:
    return AuthContext(identity="finance-1", role="finance")


@pytest.fixture
def partner_ctx() -> AuthContext:
    return AuthContext(identity=PARTNER_ID, role="partner")


@pytest.fixture
def other_partner_ctx() -> AuthContext:
    return AuthContext(identity=OTHER_PARTNER_ID, role="partner")


# Tokens for route tests
def _token(identity: str, role: str) -> str:
    return create_access_token({"sub": identity, "role": role})


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {_token('admin-1', 'admin')}"}


@pytest.fixture
def finance_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {_token('finance-1', 'finance')}"}


@pytest.fixture
def partner_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {_token(PARTNER_ID, 'partner')}"}


@pytest.fixture
def other_partner_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {_token(OTHER_PARTNER_ID, 'partner')}"}


# Row factories (write straight to the store, bypassing business rules)
@pytest.fixture
def make_service(db: Session, tenant_uuid: UUID) -> Callable[..., Service]:
    def factory(
        partner_id: str = PARTNER_ID,
        final_value: str | Decimal = "100.00",
        service_date: date = date(2025, 3, 10),
        service_type_id: str = "TOUR",
        **overrides,
    ) -> Service:
        service = Service(
            id=uuid4(),
            tenant_id=tenant_uuid,
            partner_id=partner_id,
            partner_name=overrides.pop("partner_name", "Orlando Guides"),
            service_date=service_date,
            first_name=overrides.pop("first_name", "Ana"),
            last_name=overrides.pop("last_name", "Silva"),
            service_type_id=service_type_id,
            final_value=Decimal(str(final_value)),
            **overrides,
        )
        db.add(service)
        db.commit()
        db.refresh(service)
        return service

    return factory


@pytest.fixture
def make_payment(db: Session, tenant_uuid: UUID) -> Callable[..., Payment]:
    def factory(
        partner_id: str = PARTNER_ID,
        service_refs: Optional[list[str]] = None,
        status: str = "PENDING",
        updated_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ) -> Payment:
        payment = Payment(
            id=uuid4(),
            tenant_id=tenant_uuid,
            partner_id=partner_id,
            partner_name="Orlando Guides",
            status=status,
            total=Decimal("0"),
            notes_log=[],
        )
        if updated_at is not None:
            payment.updated_at = updated_at
        if created_at is not None:
            payment.created_at = created_at
        payment.links = [PaymentServiceLink(service_ref=ref) for ref in service_refs or []]
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment

    return factory


def ts(day: int, hour: int = 12) -> datetime:
    """Timestamp helper for ordering-sensitive tests."""
    return datetime(2025, 4, day, hour, 0, tzinfo=timezone.utc)
