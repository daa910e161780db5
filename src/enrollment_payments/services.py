"""Submission payment updates shared by webhook ingestion, status checks and the sweep."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .database import Submission, SubmissionRepository, PaymentStatus
from .errors import PersistenceError
from .provider.base import ProviderPayment
from .status import derive_payment_status

logger = logging.getLogger(__name__)


@dataclass
class SubmissionSnapshot:
    """Plain copy of the payment fields of a submission.

    The sweep commits or rolls back after every item, so it works from
    snapshots rather than ORM instances that a rollback would expire.
    """
    id: str
    tenant_id: Optional[str]
    payment_status: str
    payment_date: Optional[datetime] = None
    payment_amount: Optional[Decimal] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, submission: Submission) -> "SubmissionSnapshot":
        return cls(
            id=submission.id,
            tenant_id=submission.tenant_id,
            payment_status=submission.payment_status,
            payment_date=submission.payment_date,
            payment_amount=submission.payment_amount,
            metadata=dict(submission.metadata_ or {}),
        )


@dataclass
class PaymentUpdate:
    payment_status: PaymentStatus
    payment_date: Optional[datetime]
    payment_amount: Optional[Decimal]
    metadata: Dict[str, Any]

    def matches(self, snapshot: SubmissionSnapshot) -> bool:
        """True when writing this update would not change the stored submission."""
        return (
            snapshot.payment_status == self.payment_status.value
            and snapshot.payment_date == self.payment_date
            and snapshot.payment_amount == self.payment_amount
            and snapshot.metadata == self.metadata
        )


def build_payment_update(snapshot: SubmissionSnapshot, payment: ProviderPayment) -> PaymentUpdate:
    """Derive the new payment fields of a submission from its latest provider payment.

    Status, date and amount are overwritten; metadata is shallow-merged.
    """
    status = derive_payment_status(payment)

    payment_date = None
    if status is PaymentStatus.PAID:
        payment_date = payment.approved_at()
        if payment_date is None:
            if snapshot.payment_status == PaymentStatus.PAID.value and snapshot.payment_date:
                payment_date = snapshot.payment_date
            else:
                payment_date = datetime.utcnow()

    metadata = {
        **(snapshot.metadata or {}),
        "mp_payment_id": payment.id,
        "mp_status": payment.status,
        "mp_status_detail": payment.status_detail,
        "mp_payment_method": payment.payment_method_id,
        "mp_payment_type": payment.payment_type_id,
    }

    return PaymentUpdate(
        payment_status=status,
        payment_date=payment_date,
        payment_amount=payment.transaction_amount,
        metadata=metadata,
    )


class SubmissionPaymentService:
    """Applies provider payment state to submissions."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.submission_repo = SubmissionRepository(session)

    async def get_snapshot(self, submission_id: str) -> Optional[SubmissionSnapshot]:
        submission = await self.submission_repo.get_by_id(submission_id)
        if submission is None:
            return None
        return SubmissionSnapshot.from_model(submission)

    async def apply(
        self,
        snapshot: SubmissionSnapshot,
        payment: ProviderPayment,
    ) -> Tuple[PaymentUpdate, bool]:
        """Write the update derived from ``payment`` and commit it.

        Returns:
            Tuple of (update, written). ``written`` is False when the stored
            submission already matched.

        Raises:
            PersistenceError: If the write or commit fails; the session is
                rolled back first.
        """
        update = build_payment_update(snapshot, payment)
        if update.matches(snapshot):
            return update, False

        try:
            await self.submission_repo.apply_payment_update(
                submission_id=snapshot.id,
                payment_status=update.payment_status.value,
                payment_date=update.payment_date,
                payment_amount=update.payment_amount,
                metadata=update.metadata,
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to update submission {snapshot.id}: {e}")
            raise PersistenceError(f"Failed to update submission {snapshot.id}: {e}") from e

        return update, True
