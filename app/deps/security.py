"""Security dependencies for FastAPI routes.

Admin token authentication with constant-time comparison. Every job and
distribution route is an operator action and sits behind this gate.
"""

import hmac
import os
from typing import Optional

import structlog
from fastapi import HTTPException, Request, status

logger = structlog.get_logger(__name__)

ADMIN_TOKEN_HEADER = "X-Admin-Token"


def _configured_token() -> Optional[str]:
    return os.environ.get("ADMIN_TOKEN") or None


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _localhost_bypass(request: Request) -> bool:
    """Tokenless access for local development, opt-in and localhost only."""
    if os.environ.get("ALLOW_LOCALHOST_ADMIN", "false").lower() != "true":
        return False
    host = request.headers.get("host", "")
    return "localhost" in host or "127.0.0.1" in host


def require_admin_token(request: Request) -> bool:
    """
    Require valid admin token for protected routes.

    - 401 when the X-Admin-Token header is missing
    - 403 when it does not match ADMIN_TOKEN, or ADMIN_TOKEN is unset
    - LOG_LEVEL has no effect; there is no debug bypass

    Usage:
        @router.post("/jobs")
        async def enqueue(..., _: bool = Depends(require_admin_token)):
            ...
    """
    if _configured_token() is None:
        if _localhost_bypass(request):
            logger.warning(
                "admin_access_localhost", path=request.url.path, client=_client(request)
            )
            return True
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_TOKEN not configured. Contact system administrator.",
        )

    provided = request.headers.get(ADMIN_TOKEN_HEADER)
    if not provided:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Admin token required. Provide {ADMIN_TOKEN_HEADER} header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not verify_admin_token(provided):
        logger.warning(
            "admin_token_invalid", path=request.url.path, client=_client(request)
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin token",
        )

    return True


def verify_admin_token(token: str) -> bool:
    """Constant-time check of ``token`` against ADMIN_TOKEN."""
    expected = _configured_token()
    if expected is None:
        return False
    return hmac.compare_digest(token.encode(), expected.encode())
