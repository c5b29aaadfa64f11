from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from tokengate.api.middleware import get_runtime, require_principal
from tokengate.api.schemas import (
    LoginRequest,
    MessageResponse,
    PrincipalResponse,
    ProtectedResponse,
    TokenResponse,
)
from tokengate.config import Settings
from tokengate.logging import get_logger
from tokengate.service.auth import AuthContext
from tokengate.service.errors import RefreshTokenMissingError

logger = get_logger(__name__)

router = APIRouter()


def _cookie_attributes(settings: Settings) -> dict:
    # Shared by set and delete: a delete with different attributes leaves the cookie alive
    return {
        "path": settings.refresh_cookie_path,
        "secure": settings.cookie_secure,
        "httponly": True,
        "samesite": "strict",
    }


def _apply_refresh_cookie(response: Response, settings: Settings, refresh_token: str) -> None:
    response.set_cookie(
        settings.refresh_cookie_name,
        refresh_token,
        max_age=settings.refresh_cookie_max_age,
        **_cookie_attributes(settings),
    )


def _clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(settings.refresh_cookie_name, **_cookie_attributes(settings))


@router.post("/auth/login", response_model=TokenResponse, tags=["auth"])
async def login(body: LoginRequest, request: Request, response: Response):
    """Exchange username and password for an access token.

    The renewal token never appears in the body; it is set as an HTTP-only
    cookie scoped to the auth endpoints.

    Raises:
        401: If credentials are invalid
    """
    runtime = get_runtime(request)
    issued = runtime.auth.login(body.username, body.password)
    _apply_refresh_cookie(response, runtime.settings, issued.refresh_token)
    return TokenResponse(access_token=issued.access_token)


@router.post("/auth/refresh", response_model=TokenResponse, tags=["auth"])
async def refresh(request: Request, response: Response):
    """Mint a new access token from the renewal cookie.

    Raises:
        401: If no renewal cookie was sent
        403: If the renewal token is invalid, expired, or its session revoked
    """
    runtime = get_runtime(request)
    settings = runtime.settings
    refresh_token: Optional[str] = request.cookies.get(settings.refresh_cookie_name)
    if not refresh_token:
        raise RefreshTokenMissingError("Refresh token not found")
    result = runtime.auth.refresh(refresh_token)
    if result.refresh_token:
        _apply_refresh_cookie(response, settings, result.refresh_token)
    return TokenResponse(access_token=result.access_token)


@router.post("/auth/logout", response_model=MessageResponse, tags=["auth"])
async def logout(request: Request, response: Response):
    """Revoke the session behind the renewal cookie and clear the cookie.

    Always succeeds, with or without a cookie.
    """
    runtime = get_runtime(request)
    settings = runtime.settings
    session_id = runtime.auth.logout_with_refresh_token(
        request.cookies.get(settings.refresh_cookie_name)
    )
    _clear_refresh_cookie(response, settings)
    logger.info("logout_completed", session_id=session_id)
    return MessageResponse(message="Logged out")


@router.get("/api/protected", response_model=ProtectedResponse, tags=["api"])
async def protected(principal: AuthContext = Depends(require_principal)):
    return ProtectedResponse(
        message="This is protected data!",
        user=PrincipalResponse.from_principal(principal.principal),
    )
