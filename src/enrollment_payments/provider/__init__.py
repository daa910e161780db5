"""Payment provider clients."""

from .base import (
    ProviderClientBase,
    ProviderPayment,
    PreferenceRequest,
)
from .mercadopago import MercadoPagoClient

__all__ = [
    "ProviderClientBase",
    "ProviderPayment",
    "PreferenceRequest",
    "MercadoPagoClient",
]
