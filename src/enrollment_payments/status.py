"""Mapping of provider payment records to the submission payment status."""

from typing import Any, Optional, Sequence

from .database.models import PaymentStatus

PAID_STATUSES = frozenset(["approved"])
CANCELED_STATUSES = frozenset(["rejected", "cancelled"])


def _provider_status(record: Any) -> Optional[str]:
    if record is None:
        return None
    if isinstance(record, dict):
        return record.get("status")
    return getattr(record, "status", None)


def derive_payment_status(record: Any) -> PaymentStatus:
    """Derive the normalized status from the latest provider payment record.

    ``approved`` maps to PAID, ``rejected`` and ``cancelled`` to CANCELED.
    Every other provider status, and the absence of a record, is PENDING.
    """
    status = _provider_status(record)
    if status in PAID_STATUSES:
        return PaymentStatus.PAID
    if status in CANCELED_STATUSES:
        return PaymentStatus.CANCELED
    return PaymentStatus.PENDING


def _id_sort_key(record: Any):
    value = record.get("id") if isinstance(record, dict) else getattr(record, "id", None)
    try:
        return (1, int(value))
    except (TypeError, ValueError):
        return (0, str(value))


def select_latest(records: Sequence[Any]) -> Optional[Any]:
    """Pick the record with the highest provider id, or None for an empty sequence."""
    if not records:
        return None
    return max(records, key=_id_sort_key)
