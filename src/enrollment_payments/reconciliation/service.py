"""Service layer for the reconciliation sweep and single-submission status checks."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..credentials import CredentialResolver
from ..database import SubmissionRepository, PaymentStatus
from ..errors import CredentialsMissingError, PaymentsError
from ..metrics import reconciliation_items_total
from ..provider import ProviderPayment
from ..services import SubmissionPaymentService, SubmissionSnapshot
from ..status import derive_payment_status
from ..webhooks import ClientFactory, default_client_factory
from .models import SweepRequest, SweepResult, SweepItemResult, StatusCheckResult

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Polls the provider for submissions whose payment notification never arrived."""

    def __init__(
        self,
        session: AsyncSession,
        client_factory: Optional[ClientFactory] = None,
        resolver: Optional[CredentialResolver] = None,
    ):
        """Initialize the reconciliation service.

        Args:
            session: Async database session.
            client_factory: Builds a provider client for an access token.
                Defaults to the Mercado Pago client.
            resolver: Credential resolver; one is created per service so the
                global credential is looked up once per sweep.
        """
        self.session = session
        self.submission_repo = SubmissionRepository(session)
        self.payment_service = SubmissionPaymentService(session)
        self.client_factory = client_factory or default_client_factory
        self.resolver = resolver or CredentialResolver(session)

    async def list_candidates(self, request: SweepRequest) -> List[SubmissionSnapshot]:
        """Pending submissions older than the requested age, oldest first."""
        cutoff = datetime.utcnow() - timedelta(minutes=request.age_minutes)
        submissions = await self.submission_repo.list_stale_pending(
            cutoff=cutoff,
            limit=request.max_items,
        )
        return [SubmissionSnapshot.from_model(s) for s in submissions]

    async def sync_submission(
        self,
        snapshot: SubmissionSnapshot,
    ) -> Tuple[PaymentStatus, Optional[ProviderPayment], bool]:
        """Look up the latest provider payment for a submission and apply it.

        Returns:
            Tuple of (derived status, latest payment or None, written).

        Raises:
            CredentialsMissingError: If no access token resolves.
            UpstreamError: If the provider search fails.
            PersistenceError: If the submission update fails.
        """
        token = await self.resolver.resolve(snapshot.tenant_id)
        if not token:
            raise CredentialsMissingError(snapshot.tenant_id)

        client = self.client_factory(token)
        payment = await client.latest_payment(snapshot.id)
        if payment is None:
            return derive_payment_status(None), None, False

        update, written = await self.payment_service.apply(snapshot, payment)
        return update.payment_status, payment, written

    async def run_sweep(self, request: SweepRequest) -> SweepResult:
        """Execute one sweep.

        Items are processed sequentially; a failure on one submission is
        recorded in its result and the loop moves on.

        Raises:
            SQLAlchemyError: If the candidate listing fails.
        """
        candidates = await self.list_candidates(request)
        result = SweepResult(processed=len(candidates))

        logger.info(
            f"Starting reconciliation sweep over {len(candidates)} submissions "
            f"(max={request.max_items}, age_minutes={request.age_minutes})"
        )

        for snapshot in candidates:
            try:
                status, payment, written = await self.sync_submission(snapshot)
            except CredentialsMissingError as e:
                result.failed += 1
                result.results.append(SweepItemResult(submission_id=snapshot.id, error=e.code))
                reconciliation_items_total.labels(outcome="failed").inc()
                continue
            except PaymentsError as e:
                logger.error(f"Reconciliation of submission {snapshot.id} failed: {e}")
                result.failed += 1
                result.results.append(SweepItemResult(submission_id=snapshot.id, error=str(e)))
                reconciliation_items_total.labels(outcome="failed").inc()
                continue
            except Exception as e:
                logger.exception(f"Unexpected error reconciling submission {snapshot.id}")
                await self.session.rollback()
                result.failed += 1
                result.results.append(
                    SweepItemResult(submission_id=snapshot.id, error=str(e) or "unexpected_error")
                )
                reconciliation_items_total.labels(outcome="failed").inc()
                continue

            if written:
                result.updated += 1
                reconciliation_items_total.labels(outcome="updated").inc()
            else:
                result.unchanged += 1
                reconciliation_items_total.labels(outcome="unchanged").inc()
            result.results.append(SweepItemResult(submission_id=snapshot.id, status=status.value))

        logger.info(
            f"Reconciliation sweep finished: {result.processed} processed, "
            f"{result.updated} updated, {result.unchanged} unchanged, {result.failed} failed"
        )
        return result

    async def check_status(self, submission_id: str) -> Optional[StatusCheckResult]:
        """Reconcile one submission on demand.

        Returns:
            StatusCheckResult, or None if the submission does not exist.

        Raises:
            CredentialsMissingError, UpstreamError, PersistenceError: as in
                sync_submission.
        """
        snapshot = await self.payment_service.get_snapshot(submission_id)
        if snapshot is None:
            return None

        status, payment, _ = await self.sync_submission(snapshot)
        if payment is None:
            return StatusCheckResult(submission_id=submission_id, status=snapshot.payment_status)

        mp = {
            "id": payment.id,
            "status": payment.status,
            "status_detail": payment.status_detail,
            "payment_method_id": payment.payment_method_id,
            "payment_type_id": payment.payment_type_id,
        }
        return StatusCheckResult(submission_id=submission_id, status=status.value, mp=mp)
