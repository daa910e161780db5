"""Ingestion of Mercado Pago payment notifications.

Mercado Pago notifies either with a GET/POST query string (legacy IPN:
``?topic=payment&id=123``) or with a JSON body
(``{"type": "payment", "data": {"id": "123"}}``). Both are narrowed into a
``PaymentNotification`` before anything else happens.
"""

import logging
from typing import Optional, Dict, Any, Mapping, Callable

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .credentials import CredentialResolver
from .database import PaymentEventRepository
from .errors import InvalidNotificationError, UpstreamError, PersistenceError
from .metrics import webhook_notifications_total, webhook_swallowed_errors_total
from .provider import ProviderClientBase, ProviderPayment, MercadoPagoClient
from .services import SubmissionPaymentService

logger = logging.getLogger(__name__)

PAYMENT_TOPIC = "payment"

ClientFactory = Callable[[str], ProviderClientBase]


class PaymentNotification(BaseModel):
    topic: str
    resource_id: str

    @property
    def is_payment(self) -> bool:
        return self.topic == PAYMENT_TOPIC


def _clean(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def _resource_id(resource: Optional[str]) -> Optional[str]:
    # Legacy IPN may send the full resource URL instead of the bare id
    if resource and "/" in resource:
        return _clean(resource.rstrip("/").rsplit("/", 1)[-1])
    return resource


def parse_notification(
    query: Mapping[str, Any],
    body: Optional[Mapping[str, Any]] = None,
) -> PaymentNotification:
    """Narrow query parameters and/or a JSON body into a notification.

    Body fields win over query parameters when both are present.

    Raises:
        InvalidNotificationError: If the topic or the resource id is missing,
            or a payment notification carries a non-numeric id.
    """
    topic = None
    resource_id = None

    if isinstance(body, Mapping):
        topic = _clean(body.get("topic")) or _clean(body.get("type"))
        data = body.get("data")
        if isinstance(data, Mapping):
            resource_id = _clean(data.get("id"))
        resource_id = resource_id or _clean(body.get("id"))

    topic = topic or _clean(query.get("topic")) or _clean(query.get("type"))
    resource_id = (
        resource_id
        or _clean(query.get("id"))
        or _clean(query.get("data.id"))
        or _resource_id(_clean(query.get("resource")))
    )

    if not topic or not resource_id:
        raise InvalidNotificationError("Notification topic and id are required")
    if topic == PAYMENT_TOPIC and not (resource_id.isascii() and resource_id.isdigit()):
        raise InvalidNotificationError(f"Payment id must be numeric, got {resource_id!r}")

    return PaymentNotification(topic=topic, resource_id=resource_id)


def default_client_factory(access_token: str) -> ProviderClientBase:
    return MercadoPagoClient(access_token)


def get_client_factory() -> ClientFactory:
    """FastAPI dependency returning the provider client factory."""
    return default_client_factory


class WebhookIngestionService:
    """Fetches the payment behind a notification and records it.

    Every failure after the notification was decoded is logged and counted,
    never raised: the provider keeps redelivering notifications that do not
    get a success response.
    """

    def __init__(
        self,
        session: AsyncSession,
        client_factory: Optional[ClientFactory] = None,
        resolver: Optional[CredentialResolver] = None,
    ):
        self.session = session
        self.client_factory = client_factory or default_client_factory
        self.resolver = resolver or CredentialResolver(session)
        self.event_repo = PaymentEventRepository(session)
        self.payment_service = SubmissionPaymentService(session)

    async def ingest(self, notification: PaymentNotification) -> Dict[str, Any]:
        if not notification.is_payment:
            webhook_notifications_total.labels(outcome="ignored").inc()
            logger.info(f"Ignoring {notification.topic} notification {notification.resource_id}")
            return {"ignored": True, "topic": notification.topic}

        # Notifications carry no tenant, so only global and env credentials apply
        token = await self.resolver.resolve()
        if not token:
            webhook_swallowed_errors_total.labels(stage="credentials").inc()
            webhook_notifications_total.labels(outcome="failed").inc()
            logger.error(
                f"Cannot fetch payment {notification.resource_id}: no Mercado Pago credentials"
            )
            return {"ok": True}

        try:
            payment = await self.client_factory(token).get_payment(notification.resource_id)
        except UpstreamError as e:
            webhook_swallowed_errors_total.labels(stage="lookup").inc()
            webhook_notifications_total.labels(outcome="failed").inc()
            logger.error(f"Payment lookup failed for notification {notification.resource_id}: {e}")
            return {"ok": True}

        await self._record_event(notification, payment)
        await self._sync_submission(payment)

        webhook_notifications_total.labels(outcome="processed").inc()
        logger.info(f"Payment {notification.resource_id} notified with status {payment.status}")
        return {"status": payment.status, "id": notification.resource_id}

    async def _record_event(self, notification: PaymentNotification, payment: ProviderPayment) -> None:
        try:
            await self.event_repo.create(
                event_type=notification.topic,
                mp_payment_id=str(payment.id if payment.id is not None else notification.resource_id),
                mp_preference_id=payment.order_id,
                external_reference=payment.external_reference,
                status=payment.status,
                amount=payment.transaction_amount,
                currency=payment.currency_id or "BRL",
                payer_email=payment.payer_email,
                payload=payment.raw,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            webhook_swallowed_errors_total.labels(stage="event_log").inc()
            logger.error(f"Failed to record payment event {notification.resource_id}: {e}")

    async def _sync_submission(self, payment: ProviderPayment) -> None:
        if not payment.external_reference:
            return
        try:
            snapshot = await self.payment_service.get_snapshot(payment.external_reference)
            if snapshot is None:
                logger.info(f"No submission for external reference {payment.external_reference}")
                return
            await self.payment_service.apply(snapshot, payment)
        except (SQLAlchemyError, PersistenceError) as e:
            await self.session.rollback()
            webhook_swallowed_errors_total.labels(stage="submission_update").inc()
            logger.error(
                f"Failed to update submission {payment.external_reference} from payment {payment.id}: {e}"
            )
