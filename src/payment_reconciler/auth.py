"""API key check and per-caller rate limits."""

import os
import hashlib
import secrets
import logging

from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

bearer = HTTPBearer()

# Cancels move money, so they get a tighter budget than syncs
CANCEL_RATE_LIMIT = os.getenv("CANCEL_RATE_LIMIT", "30/minute")
SYNC_RATE_LIMIT = os.getenv("SYNC_RATE_LIMIT", "10/minute")


def rate_limit_key(request: Request) -> str:
    """Bucket requests per API key, or per client address without one."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        return "key:" + hashlib.sha256(token.encode()).hexdigest()[:16]
    return get_remote_address(request)


limiter = Limiter(key_func=rate_limit_key)


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(bearer)) -> str:
    """Check the bearer token against the API_KEY environment variable.

    Raises:
        HTTPException: 401 for a wrong key, 500 when API_KEY is not set.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(credentials.credentials.encode(), expected_key.encode()):
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials
