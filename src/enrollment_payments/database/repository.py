"""Repository layer for submissions, payment events and credentials."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Submission,
    PaymentEvent,
    ProviderCredential,
    PaymentStatus,
    CredentialScope,
)

logger = logging.getLogger(__name__)


class SubmissionRepository:
    """Repository for Submission reads and payment updates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        tenant_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        payment_status: str = PaymentStatus.PENDING.value,
        created_at: Optional[datetime] = None,
        submission_id: Optional[str] = None,
    ) -> Submission:
        """Create a submission record.

        Submissions are created by the public form flow; this is used by
        tooling and tests.
        """
        submission = Submission(
            tenant_id=tenant_id,
            payment_status=payment_status,
            metadata_=metadata or {},
        )
        if submission_id:
            submission.id = submission_id
        if created_at:
            submission.created_at = created_at
        self.session.add(submission)
        await self.session.flush()
        return submission

    async def get_by_id(self, submission_id: str) -> Optional[Submission]:
        """Get a submission by its ID.

        Args:
            submission_id: Submission ID.

        Returns:
            Submission instance if found, None otherwise.
        """
        # Payment updates are bulk UPDATEs; refresh any instance already in the session
        result = await self.session.execute(
            select(Submission).where(Submission.id == submission_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_stale_pending(
        self,
        cutoff: datetime,
        limit: int,
    ) -> List[Submission]:
        """List pending submissions created before ``cutoff``, oldest first.

        Args:
            cutoff: Only submissions created strictly before this instant.
            limit: Maximum number of results.

        Returns:
            List of Submission instances.
        """
        result = await self.session.execute(
            select(Submission)
            .where(
                and_(
                    Submission.payment_status == PaymentStatus.PENDING.value,
                    Submission.created_at < cutoff,
                )
            )
            .order_by(Submission.created_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def apply_payment_update(
        self,
        submission_id: str,
        payment_status: str,
        payment_date: Optional[datetime],
        payment_amount: Optional[Decimal],
        metadata: Dict[str, Any],
    ) -> int:
        """Overwrite the payment fields of a submission.

        ``metadata`` must already be merged with the stored mapping.

        Returns:
            Number of rows updated.
        """
        result = await self.session.execute(
            update(Submission)
            .where(Submission.id == submission_id)
            .values({
                Submission.payment_status: payment_status,
                Submission.payment_date: payment_date,
                Submission.payment_amount: payment_amount,
                Submission.metadata_: metadata,
                Submission.updated_at: datetime.utcnow(),
            })
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        logger.info(f"Updated submission {submission_id} payment status to {payment_status}")
        return result.rowcount


class PaymentEventRepository:
    """Append-only access to the payment_events log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        mp_payment_id: str,
        event_type: str = "payment",
        mp_preference_id: Optional[str] = None,
        external_reference: Optional[str] = None,
        status: Optional[str] = None,
        amount: Optional[Decimal] = None,
        currency: str = "BRL",
        payer_email: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> PaymentEvent:
        """Append a payment event."""
        event = PaymentEvent(
            event_type=event_type,
            mp_payment_id=mp_payment_id,
            mp_preference_id=mp_preference_id,
            external_reference=external_reference,
            status=status,
            amount=amount,
            currency=currency,
            payer_email=payer_email,
            payload=payload or {},
        )
        self.session.add(event)
        await self.session.flush()

        logger.debug(f"Recorded payment event for payment {mp_payment_id}: {status}")
        return event

    async def list_by_external_reference(self, external_reference: str) -> List[PaymentEvent]:
        result = await self.session.execute(
            select(PaymentEvent)
            .where(PaymentEvent.external_reference == external_reference)
            .order_by(PaymentEvent.created_at.desc())
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(PaymentEvent.id)))
        return result.scalar_one()


class CredentialRepository:
    """Repository for global and per-tenant provider credentials."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_global(self) -> Optional[ProviderCredential]:
        """Get the global credential regardless of its active flag."""
        result = await self.session.execute(
            select(ProviderCredential)
            .where(ProviderCredential.scope == CredentialScope.GLOBAL.value)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_for_tenant(self, tenant_id: str) -> Optional[ProviderCredential]:
        """Get a tenant's credential regardless of its active flag."""
        result = await self.session.execute(
            select(ProviderCredential).where(
                and_(
                    ProviderCredential.scope == CredentialScope.TENANT.value,
                    ProviderCredential.tenant_id == tenant_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def upsert_global(self, **fields: Any) -> ProviderCredential:
        """Create or replace the global credential singleton."""
        credential = await self.get_global()
        if credential is None:
            credential = ProviderCredential(scope=CredentialScope.GLOBAL.value, tenant_id=None)
            self.session.add(credential)
        self._assign(credential, fields)
        await self.session.flush()
        logger.info("Saved global Mercado Pago credential")
        return credential

    async def upsert_tenant(self, tenant_id: str, **fields: Any) -> ProviderCredential:
        """Create or replace the credential owned by ``tenant_id``."""
        credential = await self.get_for_tenant(tenant_id)
        if credential is None:
            credential = ProviderCredential(scope=CredentialScope.TENANT.value, tenant_id=tenant_id)
            self.session.add(credential)
        self._assign(credential, fields)
        await self.session.flush()
        logger.info(f"Saved Mercado Pago credential for tenant {tenant_id}")
        return credential

    @staticmethod
    def _assign(credential: ProviderCredential, fields: Dict[str, Any]) -> None:
        for name in ("access_token", "public_key", "webhook_secret", "is_production", "is_active"):
            if name in fields:
                setattr(credential, name, fields[name])
        credential.updated_at = datetime.utcnow()
