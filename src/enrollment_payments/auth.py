"""Bearer-token guards and rate limiting for the public checkout route."""

import os
import secrets
import logging
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

admin_bearer = HTTPBearer()
cron_bearer = HTTPBearer(auto_error=False)

# Keyed by client address; in-memory storage, so limits are per process
limiter = Limiter(key_func=get_remote_address)

# Not applied to the provider webhook routes
PREFERENCE_RATE_LIMIT = os.getenv("PREFERENCE_RATE_LIMIT", "30/minute")


def _token_matches(provided: Optional[str], expected: str) -> bool:
    return secrets.compare_digest((provided or "").encode(), expected.encode())


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(admin_bearer)) -> str:
    """Guard for the credential settings routes.

    Raises:
        HTTPException: 500 if API_KEY is not configured, 401 if the bearer
            token does not match it.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not _token_matches(credentials.credentials, expected_key):
        logger.warning("Rejected settings request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials


async def verify_reconcile_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(cron_bearer),
) -> None:
    """Guard for the reconciliation trigger.

    Open when PAYMENTS_RECONCILE_TOKEN is unset, so anyone who can reach the
    route can start a sweep.

    Raises:
        HTTPException: 401 if a secret is configured and the bearer token does not match.
    """
    expected = os.getenv("PAYMENTS_RECONCILE_TOKEN", "")
    if not expected:
        return
    if not _token_matches(credentials.credentials if credentials else None, expected):
        logger.warning("Rejected reconciliation trigger with invalid token")
        raise HTTPException(status_code=401, detail="unauthorized")
