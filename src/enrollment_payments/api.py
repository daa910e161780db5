import os
import json
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, Request, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import limiter, PREFERENCE_RATE_LIMIT
from .credentials import CredentialResolver
from .database import get_db, init_db, close_db
from .errors import InvalidNotificationError, UpstreamError
from .metrics import webhook_notifications_total, webhook_swallowed_errors_total
from .provider import PreferenceRequest
from .reconciliation.api import router as reconciliation_router
from .settings_api import router as settings_router
from .webhooks import ClientFactory, WebhookIngestionService, get_client_factory, parse_notification

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/payments/mercadopago/webhook"
LEGACY_WEBHOOK_PATH = "/api/webhooks/mercadopago"


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="Enrollment Payments API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(reconciliation_router)
app.include_router(settings_router)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "invalid_request", "detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "unexpected_error"})


async def _ingest(request: Request, body, db: AsyncSession, client_factory: ClientFactory):
    try:
        notification = parse_notification(request.query_params, body)
    except InvalidNotificationError as e:
        webhook_notifications_total.labels(outcome="invalid").inc()
        logger.warning(f"Rejected malformed {request.method} notification: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    service = WebhookIngestionService(db, client_factory=client_factory)
    try:
        return await service.ingest(notification)
    except Exception:
        # Parsed notifications are always acknowledged; failures show in logs and metrics
        webhook_swallowed_errors_total.labels(stage="unexpected").inc()
        webhook_notifications_total.labels(outcome="failed").inc()
        logger.exception(f"Error processing notification {notification.resource_id}")
        await db.rollback()
        return {"ok": True}


@app.get(WEBHOOK_PATH)
@app.get(LEGACY_WEBHOOK_PATH)
async def payment_webhook_get(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Legacy IPN callback: ``?topic=payment&id=...``."""
    return await _ingest(request, None, db, client_factory)


@app.post(WEBHOOK_PATH)
@app.post(LEGACY_WEBHOOK_PATH)
async def payment_webhook_post(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Webhook callback with a JSON body; query parameters are used as fallback."""
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        body = {}
    return await _ingest(request, body, db, client_factory)


class CreatePreferenceBody(BaseModel):
    title: str = ""
    quantity: int = 1
    unit_price: Decimal = Decimal("0")
    email: str = ""
    external_reference: Optional[str] = None


def get_app_url() -> str:
    app_url = os.getenv("APP_URL") or os.getenv("NEXT_PUBLIC_APP_URL")
    if not app_url:
        raise RuntimeError("APP_URL is not configured")
    return app_url.rstrip("/")


@app.post("/api/payments/mercadopago/create-preference")
@limiter.limit(PREFERENCE_RATE_LIMIT)
async def create_preference(
    request: Request,
    body: CreatePreferenceBody,
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Create a checkout preference for a submission and return its redirect URL."""
    title = body.title.strip()
    email = body.email.strip()
    if not title:
        raise HTTPException(status_code=400, detail="title is required")
    if "@" not in email:
        raise HTTPException(status_code=400, detail="invalid email")
    if body.quantity <= 0:
        raise HTTPException(status_code=400, detail="quantity must be > 0")
    if body.unit_price <= 0:
        raise HTTPException(status_code=400, detail="unit_price must be > 0")

    token = await CredentialResolver(db).resolve()
    if not token:
        return JSONResponse(status_code=500, content={"error": "mp_credentials_missing"})

    try:
        app_url = get_app_url()
        preference = await client_factory(token).create_preference(
            PreferenceRequest(
                title=title,
                quantity=body.quantity,
                unit_price=body.unit_price,
                email=email,
                external_reference=body.external_reference,
            ),
            back_urls={
                "success": f"{app_url}/form/pagamento/sucesso",
                "failure": f"{app_url}/form/pagamento/falha",
                "pending": f"{app_url}/form/pagamento/pendente",
            },
            notification_url=f"{app_url}{WEBHOOK_PATH}",
            auto_return=app_url.startswith("https://"),
        )
    except (RuntimeError, UpstreamError) as e:
        logger.error(f"Failed to create checkout preference: {e}")
        return JSONResponse(status_code=500, content={"error": "preference_creation_failed"})

    return preference


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "enrollment-payments"}


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
