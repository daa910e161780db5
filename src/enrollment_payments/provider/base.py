from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List, Union

from pydantic import BaseModel

from ..status import select_latest


# Canonical models
class ProviderPayment(BaseModel):
    """A payment as reported by the provider's payments API."""
    id: Union[int, str]
    status: Optional[str] = None  # approved|rejected|cancelled|pending|in_process|...
    status_detail: Optional[str] = None
    external_reference: Optional[str] = None
    transaction_amount: Optional[Decimal] = None
    currency_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    payment_type_id: Optional[str] = None
    date_approved: Optional[datetime] = None
    order: Optional[Dict[str, Any]] = None
    payer: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = {}

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ProviderPayment":
        """Build from a provider JSON object, keeping the full object in ``raw``."""
        return cls(**{**data, "raw": data})

    @property
    def order_id(self) -> Optional[str]:
        if self.order and self.order.get("id") is not None:
            return str(self.order["id"])
        return None

    @property
    def payer_email(self) -> Optional[str]:
        if self.payer:
            return self.payer.get("email")
        return None

    def approved_at(self) -> Optional[datetime]:
        """Approval time as naive UTC, matching the DateTime columns."""
        if self.date_approved is None:
            return None
        if self.date_approved.tzinfo is not None:
            return self.date_approved.astimezone(timezone.utc).replace(tzinfo=None)
        return self.date_approved


class PreferenceRequest(BaseModel):
    title: str
    quantity: int = 1
    unit_price: Decimal
    email: str
    external_reference: Optional[str] = None


class ProviderClientBase(ABC):
    """
    Minimal payment provider interface. Implementations hold one access token
    and make one network call per method.
    """

    @abstractmethod
    async def get_payment(self, payment_id: str) -> ProviderPayment:
        """
        Fetch the authoritative payment record. Raises UpstreamError on any
        non-success response.
        """
        raise NotImplementedError

    @abstractmethod
    async def search_payments(self, external_reference: str) -> List[ProviderPayment]:
        """
        Search payments by external reference, most recent (highest id) first.
        """
        raise NotImplementedError

    @abstractmethod
    async def create_preference(
        self,
        request: PreferenceRequest,
        back_urls: Dict[str, str],
        notification_url: str,
        auto_return: bool = False,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def latest_payment(self, external_reference: str) -> Optional[ProviderPayment]:
        """Most recent payment for a reference, or None when the provider has none."""
        payments = await self.search_payments(external_reference)
        return select_latest(payments)
