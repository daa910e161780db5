"""Shared test fixtures and configuration."""

import os
import json
import pytest
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

import httpx

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PREFERENCE_RATE_LIMIT", "1000/minute")

MP_TEST_BASE_URL = "https://mp.test"


def payment_json(
    payment_id: int,
    status: str = "approved",
    external_reference: Optional[str] = None,
    amount: float = 150.0,
    date_approved: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Return a payment object shaped like the Mercado Pago payments API."""
    data = {
        "id": payment_id,
        "status": status,
        "status_detail": "accredited" if status == "approved" else status,
        "external_reference": external_reference,
        "transaction_amount": amount,
        "currency_id": "BRL",
        "payment_method_id": "pix",
        "payment_type_id": "bank_transfer",
        "date_approved": date_approved,
        "order": {"id": 9000 + payment_id},
        "payer": {"email": "payer@example.com"},
    }
    data.update(extra)
    return data


class FakeMercadoPago:
    """In-memory stand-in for the Mercado Pago API, served through httpx.MockTransport."""

    def __init__(self):
        self.payments: Dict[str, Dict[str, Any]] = {}
        self.failing_references = set()
        self.fail_lookups = False
        self.requests: List[httpx.Request] = []
        self.preferences: List[Dict[str, Any]] = []
        self.tokens: List[str] = []

    def add_payment(self, payment_id: int, **kwargs: Any) -> Dict[str, Any]:
        data = payment_json(payment_id, **kwargs)
        self.payments[str(payment_id)] = data
        return data

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/v1/payments/search":
            reference = request.url.params.get("external_reference")
            if reference in self.failing_references:
                return httpx.Response(500, json={"message": "internal_error"})
            results = sorted(
                (p for p in self.payments.values() if p.get("external_reference") == reference),
                key=lambda p: int(p["id"]),
                reverse=True,
            )
            return httpx.Response(200, json={"results": results, "paging": {"total": len(results)}})

        if path.startswith("/v1/payments/"):
            if self.fail_lookups:
                return httpx.Response(500, json={"message": "internal_error"})
            payment = self.payments.get(path.rsplit("/", 1)[-1])
            if payment is None:
                return httpx.Response(404, json={"message": "Payment not found"})
            return httpx.Response(200, json=payment)

        if path == "/checkout/preferences" and request.method == "POST":
            self.preferences.append(json.loads(request.content))
            return httpx.Response(
                201,
                json={"id": "pref_123", "init_point": f"{MP_TEST_BASE_URL}/checkout?pref_id=pref_123"},
            )

        return httpx.Response(404, json={"message": "not_found"})

    @property
    def lookups(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith("/v1/payments")]

    def client_factory(self, access_token: str):
        from enrollment_payments.provider import MercadoPagoClient

        self.tokens.append(access_token)
        return MercadoPagoClient(
            access_token,
            base_url=MP_TEST_BASE_URL,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture(autouse=True)
def clean_payment_env(monkeypatch):
    """Keep host credentials and secrets out of the tests."""
    for name in ("MP_ACCESS_TOKEN", "PAYMENTS_RECONCILE_TOKEN", "APP_URL", "NEXT_PUBLIC_APP_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_access_token(monkeypatch):
    """Configure the process-wide fallback credential."""
    monkeypatch.setenv("MP_ACCESS_TOKEN", "TEST-env-token-000000")
    return "TEST-env-token-000000"


@pytest.fixture
def mercadopago():
    """Return a fresh fake Mercado Pago API."""
    return FakeMercadoPago()


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    from enrollment_payments.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    from enrollment_payments.database import get_async_session_factory

    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


async def make_submission(
    session,
    age_minutes: int = 30,
    tenant_id: Optional[str] = "tenant_a",
    **kwargs: Any,
):
    """Create and commit a submission created ``age_minutes`` ago."""
    from enrollment_payments.database import SubmissionRepository

    submission = await SubmissionRepository(session).create(
        tenant_id=tenant_id,
        created_at=datetime.utcnow() - timedelta(minutes=age_minutes),
        **kwargs,
    )
    await session.commit()
    return submission


@pytest.fixture
async def api_client(db_session, mercadopago):
    """ASGI client bound to the test session and the fake provider."""
    from enrollment_payments.api import app
    from enrollment_payments.database import get_db
    from enrollment_payments.webhooks import get_client_factory

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_client_factory] = lambda: mercadopago.client_factory

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Return headers carrying the admin API key."""
    return {"Authorization": "Bearer test_api_key_12345"}


@pytest.fixture
def create_submission(db_session):
    """Return a coroutine function creating committed submissions."""
    async def _create(**kwargs: Any):
        return await make_submission(db_session, **kwargs)
    return _create
