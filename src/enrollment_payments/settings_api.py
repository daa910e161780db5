"""Admin endpoints for global and per-tenant Mercado Pago credentials."""

import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import verify_api_key
from .credentials import mask_token
from .database import get_db, CredentialRepository, ProviderCredential

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


class CredentialBody(BaseModel):
    access_token: str = Field(..., min_length=1)
    public_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    is_production: bool = False
    is_active: bool = True


class TenantCredentialBody(CredentialBody):
    tenant_id: str = Field(..., min_length=1)


def _masked(credential: ProviderCredential) -> Dict[str, Any]:
    return {
        "id": credential.id,
        "scope": credential.scope,
        "tenant_id": credential.tenant_id,
        "is_production": bool(credential.is_production),
        "is_active": credential.is_active is not False,
        "masked_access_token": mask_token(credential.access_token),
        "masked_public_key": mask_token(credential.public_key or ""),
        "masked_webhook_secret": mask_token(credential.webhook_secret or ""),
        "updated_at": credential.updated_at.isoformat() if credential.updated_at else None,
    }


def _fields(body: CredentialBody) -> Dict[str, Any]:
    return {
        "access_token": body.access_token,
        "public_key": body.public_key or None,
        "webhook_secret": body.webhook_secret or None,
        "is_production": body.is_production,
        "is_active": body.is_active,
    }


@router.get("/mercadopago-global")
async def get_global_credential(
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Return the global credential with secrets masked."""
    credential = await CredentialRepository(db).get_global()
    if credential is None:
        return {"config": None}
    return {"config": _masked(credential)}


@router.post("/mercadopago-global")
async def save_global_credential(
    body: CredentialBody,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Create or replace the global credential."""
    credential = await CredentialRepository(db).upsert_global(**_fields(body))
    return {"success": True, "id": credential.id}


@router.get("/mercadopago")
async def get_tenant_credential(
    tenant_id: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Return one tenant's credential with secrets masked."""
    if not tenant_id:
        raise HTTPException(status_code=400, detail="tenant_id is required")
    credential = await CredentialRepository(db).get_for_tenant(tenant_id)
    if credential is None:
        return {"config": None}
    return {"config": _masked(credential)}


@router.post("/mercadopago")
async def save_tenant_credential(
    body: TenantCredentialBody,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Create or replace one tenant's credential."""
    credential = await CredentialRepository(db).upsert_tenant(body.tenant_id, **_fields(body))
    return {"config": _masked(credential)}
