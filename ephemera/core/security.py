"""
Request identity helpers.

Authentication happens upstream: the gateway validates the caller and
forwards the owner id in ``X-Owner-Id``. The only secret checked here is the
operator token guarding the cleanup endpoints.
"""
import secrets
from typing import Optional
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ephemera.core.config import settings

owner_header = APIKeyHeader(name="X-Owner-Id", auto_error=False)
admin_token_header = APIKeyHeader(name="X-Admin-Token", auto_error=False)


def get_owner_id(owner_id: Optional[str] = Security(owner_header)) -> str:
    """
    FastAPI dependency returning the pre-validated owner id.

    Raises:
        HTTPException: 401 if the gateway did not forward an owner id
    """
    if not owner_id or not owner_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing owner identity",
        )
    return owner_id.strip()


def require_admin_token(token: Optional[str] = Security(admin_token_header)) -> None:
    """
    FastAPI dependency guarding operator endpoints.

    Raises:
        HTTPException: 403 if no admin token is configured or it does not match
    """
    expected = settings.CLEANUP_ADMIN_TOKEN
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cleanup endpoints are disabled",
        )
    if not token or not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin token",
        )
