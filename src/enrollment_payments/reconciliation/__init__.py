"""Reconciliation of submission payment status against Mercado Pago.

A sweep is the pull-based safety net for notifications that never arrived:
it polls the provider for pending submissions older than a threshold and
applies the latest provider payment to each one.
"""

from .models import (
    SweepRequest,
    SweepResult,
    SweepItemResult,
    StatusCheckResult,
    clamp_batch_size,
    clamp_age_minutes,
)
from .service import ReconciliationService

__all__ = [
    # Models
    "SweepRequest",
    "SweepResult",
    "SweepItemResult",
    "StatusCheckResult",
    "clamp_batch_size",
    "clamp_age_minutes",
    # Service
    "ReconciliationService",
]
