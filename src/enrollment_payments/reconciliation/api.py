"""API endpoints for reconciliation operations."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import verify_reconcile_token
from ..database import get_db
from ..errors import CredentialsMissingError, UpstreamError, PersistenceError
from ..webhooks import ClientFactory, get_client_factory
from .models import SweepRequest
from .service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["reconciliation"])


@router.get("/reconcile")
async def reconcile_payments(
    max: Optional[str] = Query(default=None, description="Batch size, clamped to [1, 50]"),
    age_minutes: Optional[str] = Query(default=None, description="Minimum age of pending submissions"),
    _: None = Depends(verify_reconcile_token),
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """
    Run one reconciliation sweep.

    Polls the provider for pending submissions older than ``age_minutes`` and
    reports per-submission outcomes. Item failures are reported in the body;
    the response is 200 unless the request itself is rejected.
    """
    request = SweepRequest.from_params(max_items=max, age_minutes=age_minutes)
    service = ReconciliationService(db, client_factory=client_factory)

    try:
        result = await service.run_sweep(request)
    except SQLAlchemyError as e:
        logger.error(f"Failed to list pending submissions: {e}")
        return JSONResponse(status_code=500, content={"error": "list_error", "detail": str(e)})

    return result.to_dict()


@router.get("/status/{submission_id}")
async def payment_status(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """
    Reconcile a single submission against the provider and return its status.
    """
    service = ReconciliationService(db, client_factory=client_factory)
    try:
        result = await service.check_status(submission_id)
    except CredentialsMissingError as e:
        return JSONResponse(status_code=500, content={"error": e.code})
    except UpstreamError as e:
        logger.error(f"Status check for submission {submission_id} failed: {e}")
        return JSONResponse(status_code=502, content={"error": e.code, "detail": str(e)})
    except PersistenceError as e:
        logger.error(f"Status check for submission {submission_id} could not be saved: {e}")
        return JSONResponse(status_code=500, content={"error": e.code, "detail": str(e)})

    if result is None:
        raise HTTPException(status_code=404, detail="submission_not_found")
    return result.to_dict()
