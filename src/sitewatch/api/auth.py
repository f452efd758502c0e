"""API token and cron token authentication."""

import hmac
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..utils.logging import get_structured_logger
from .dependencies import get_settings
from .types import APIError

logger = get_structured_logger(__name__)

DEFAULT_OWNER_ID = "api-user"

security = HTTPBearer(auto_error=False)


class AuthError(APIError):
    """Authentication related errors."""

    pass


def _tokens_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def verify_api_token(token: Optional[str], valid_tokens: list[str]) -> bool:
    """Verify an API token against the configured list."""
    if not token:
        return False
    return any(_tokens_match(token, valid) for valid in valid_tokens)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_owner_id: Optional[str] = Header(default=None),
    settings=Depends(get_settings),
) -> dict[str, Any]:
    """Resolve the caller from an API token.

    API tokens are service credentials; the acting owner is taken from the
    ``X-Owner-Id`` header and defaults to a single shared owner.
    """
    token = credentials.credentials if credentials else None
    if not verify_api_token(token, settings.api_tokens):
        logger.warning("Rejected API token", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {"id": x_owner_id or DEFAULT_OWNER_ID, "role": "api"}


async def verify_cron_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_cron_token: Optional[str] = Header(default=None),
    token: Optional[str] = Query(default=None),
    settings=Depends(get_settings),
) -> None:
    """Guard the trigger endpoints when a cron token is configured.

    The token may be sent as a bearer token, an ``X-Cron-Token`` header or
    a ``token`` query parameter, checked in that order.
    """
    if settings.cron_token is None:
        return

    expected = settings.cron_token.get_secret_value()
    if not expected:
        return

    provided = (credentials.credentials if credentials else None) or x_cron_token or token or ""
    if not _tokens_match(provided, expected):
        logger.warning("Rejected cron token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
