"""
Mercado Pago REST client.

Auth: Bearer access token (global, tenant or env credential).
Docs: https://www.mercadopago.com.br/developers/en/reference
No retries: failures surface as UpstreamError and are retried by the next
sweep or by the provider's own webhook redelivery.
"""
import os
import logging
from typing import Optional, Dict, Any, List
from urllib.parse import quote

import httpx

from ..errors import UpstreamError
from ..metrics import provider_requests_total
from .base import ProviderClientBase, ProviderPayment, PreferenceRequest

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.mercadopago.com"
DEFAULT_TIMEOUT = 10.0


class MercadoPagoClient(ProviderClientBase):
    """Mercado Pago payments API integration."""

    def __init__(
        self,
        access_token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not access_token:
            raise ValueError("access_token is required")
        self.base_url = (base_url or os.getenv("MP_API_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout or float(os.getenv("MP_HTTP_TIMEOUT", DEFAULT_TIMEOUT))
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Execute one API call and return its decoded JSON body."""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, path, headers=self._headers, params=params, json=json
                )
        except httpx.HTTPError as e:
            provider_requests_total.labels(operation=operation, status="error").inc()
            logger.error(f"Mercado Pago {operation} request failed: {type(e).__name__}")
            raise UpstreamError(f"Mercado Pago {operation} request failed: {e}") from e

        if response.is_error:
            provider_requests_total.labels(operation=operation, status="error").inc()
            raise UpstreamError(
                f"Mercado Pago {operation} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        provider_requests_total.labels(operation=operation, status="ok").inc()
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Mercado Pago {operation} returned invalid JSON") from e

    async def get_payment(self, payment_id: str) -> ProviderPayment:
        data = await self._request("get_payment", "GET", f"/v1/payments/{quote(str(payment_id), safe='')}")
        return ProviderPayment.from_api(data)

    async def search_payments(self, external_reference: str) -> List[ProviderPayment]:
        data = await self._request(
            "search_payments",
            "GET",
            "/v1/payments/search",
            params={
                "external_reference": str(external_reference),
                "sort": "id",
                "criteria": "desc",
            },
        )
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            return []
        return [ProviderPayment.from_api(item) for item in results if isinstance(item, dict)]

    async def create_preference(
        self,
        request: PreferenceRequest,
        back_urls: Dict[str, str],
        notification_url: str,
        auto_return: bool = False,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "items": [
                {
                    "title": request.title,
                    "quantity": request.quantity,
                    "unit_price": float(request.unit_price),
                    "currency_id": "BRL",
                }
            ],
            "payer": {"email": request.email},
            "back_urls": back_urls,
            "binary_mode": True,
            "notification_url": notification_url,
        }
        if request.external_reference:
            body["external_reference"] = request.external_reference
        # Mercado Pago rejects auto_return unless back_urls.success is public https
        if auto_return:
            body["auto_return"] = "approved"

        data = await self._request("create_preference", "POST", "/checkout/preferences", json=body)
        return {
            "id": data.get("id"),
            "init_point": data.get("init_point") or data.get("sandbox_init_point"),
        }
