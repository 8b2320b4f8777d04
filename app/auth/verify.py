"""
verify.py
---------
Purpose:
    Admin API key check for operator endpoints.

Notes:
    - Key is read from the `X-Admin-API-Key` header.
    - Compared in constant time against settings.ADMIN_API_KEY.
    - With no key configured, admin routes are closed (503) rather than open.
"""

import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ADMIN_KEY_HEADER = "X-Admin-API-Key"

_api_key_header = APIKeyHeader(name=ADMIN_KEY_HEADER, auto_error=False)


def verify_admin_key(provided: str | None, expected: str | None) -> None:
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API key not configured",
        )
    if not provided or not secrets.compare_digest(provided, expected):
        logger.warning("Rejected admin request", has_key=bool(provided))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )


def admin_dependency(api_key: str | None = Depends(_api_key_header)) -> str:
    verify_admin_key(api_key, settings.ADMIN_API_KEY)
    return api_key
