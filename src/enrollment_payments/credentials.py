"""Resolution of the Mercado Pago access token for an operation."""

import os
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .database import CredentialRepository

logger = logging.getLogger(__name__)

_UNSET = object()


def get_fallback_access_token() -> Optional[str]:
    """Process-wide credential kept for deployments without stored credentials."""
    token = os.getenv("MP_ACCESS_TOKEN", "").strip()
    return token or None


def mask_token(token: Optional[str]) -> str:
    """Show the first six characters of a secret, or a fixed mask for short ones."""
    if not token:
        return "**********"
    visible = 6
    if len(token) > visible:
        return f"{token[:visible]}***"
    return "**********"


class CredentialResolver:
    """Resolves access tokens: active global, then active tenant, then environment.

    One resolver is meant to live for a single request or sweep; the global
    lookup is done once and reused for every submission it resolves.
    """

    def __init__(self, session: AsyncSession, fallback_token: Optional[str] = None):
        self.repo = CredentialRepository(session)
        self._fallback_token = fallback_token
        self._global_token = _UNSET

    async def global_token(self) -> Optional[str]:
        if self._global_token is _UNSET:
            credential = await self.repo.get_global()
            if credential is not None and credential.is_active and credential.access_token:
                self._global_token = credential.access_token
            else:
                self._global_token = None
        return self._global_token

    async def tenant_token(self, tenant_id: str) -> Optional[str]:
        credential = await self.repo.get_for_tenant(tenant_id)
        if credential is not None and credential.is_active and credential.access_token:
            return credential.access_token
        return None

    def fallback_token(self) -> Optional[str]:
        if self._fallback_token is not None:
            return self._fallback_token or None
        return get_fallback_access_token()

    async def resolve(self, tenant_id: Optional[str] = None) -> Optional[str]:
        """Return the access token to use, or None when nothing is configured."""
        token = await self.global_token()
        if token:
            return token
        if tenant_id:
            token = await self.tenant_token(tenant_id)
            if token:
                return token
        token = self.fallback_token()
        if not token:
            logger.warning(
                f"No Mercado Pago credential resolved (tenant={tenant_id or 'none'})"
            )
        return token
