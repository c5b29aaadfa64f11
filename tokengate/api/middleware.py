"""Bearer token verification for protected routes.

Handlers receive the resolved :class:`AuthContext` as an explicit argument
through ``Depends(require_principal)``; nothing is stashed on the request.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from tokengate.service.auth import AuthContext
from tokengate.service.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def require_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> AuthContext:
    """Resolve the bearer access token or raise ``AccessTokenError`` (401).

    The error code tells clients whether the failure is worth a refresh:
    ``token_expired`` is, ``token_missing``/``token_malformed``/``token_invalid``
    are not.
    """
    runtime = get_runtime(request)
    return runtime.auth.authenticate(authorization)
