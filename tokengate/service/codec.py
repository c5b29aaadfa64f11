"""Compact HS256 token codec.

Tokens are ``header.claims.signature`` with each segment base64url encoded
without padding. The codec is stateless: callers pass the secret and,
optionally, the instant to evaluate against. Access and renewal tokens are
signed with different secrets, so one kind never verifies as the other.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from tokengate.service.errors import (
    EncodingError,
    ExpiredTokenError,
    InvalidSignatureError,
    MalformedTokenError,
)

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass(frozen=True)
class TokenClaims:
    principal_id: str
    issued_at: datetime
    expires_at: datetime
    token_id: str
    token_type: Optional[str] = None
    session_id: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _sign(secret: str, signing_input: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    return _encode_segment(digest)


def _check_secret(secret: Any) -> None:
    if not isinstance(secret, str) or not secret:
        raise EncodingError("signing secret must be a non-empty string")


def encode(
    principal_id: str,
    ttl: timedelta,
    secret: str,
    *,
    claims: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> str:
    """Sign a token for ``principal_id`` valid for ``ttl`` from ``now``.

    ``claims`` adds extra registered claims such as ``sid`` or ``token_type``;
    it cannot override ``sub``, ``iat`` or ``exp``.
    """
    _check_secret(secret)
    if ttl <= timedelta(0):
        raise EncodingError("token ttl must be positive")
    issued = now or _utcnow()
    iat = int(issued.timestamp())
    # Rounded up so the token never expires before issued + ttl
    exp = math.ceil(issued.timestamp() + ttl.total_seconds())
    payload: dict[str, Any] = {"jti": str(uuid.uuid4())}
    payload.update(claims or {})
    payload.update(
        {
            "sub": str(principal_id),
            "iat": iat,
            "exp": exp,
        }
    )
    header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
    payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
    signing_input = f"{header_enc}.{payload_enc}"
    return f"{signing_input}.{_sign(secret, signing_input)}"


def _parse(token: str) -> tuple[str, str, str, dict[str, Any]]:
    if not isinstance(token, str):
        raise MalformedTokenError("token must be a string")
    parts = token.split(".")
    if len(parts) != 3 or not all(parts):
        raise MalformedTokenError("token must have three segments")
    header_b64, payload_b64, sig_b64 = parts
    try:
        header = json.loads(_decode_segment(header_b64))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise MalformedTokenError("token header is not valid JSON") from exc
    # Reject anything but HS256 to rule out algorithm confusion
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        raise MalformedTokenError("unsupported token algorithm")
    return header_b64, payload_b64, sig_b64, header


def _load_claims(payload_b64: str) -> dict[str, Any]:
    try:
        payload = json.loads(_decode_segment(payload_b64))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise MalformedTokenError("token claims are not valid JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedTokenError("token claims must be an object")
    return payload


def decode(token: str, secret: str, *, now: Optional[datetime] = None) -> TokenClaims:
    """Verify ``token`` against ``secret`` and return its claims.

    Raises:
        MalformedTokenError: the token cannot be parsed
        InvalidSignatureError: the signature does not match ``secret``
        ExpiredTokenError: ``now`` is at or past the token's expiry
    """
    _check_secret(secret)
    header_b64, payload_b64, sig_b64, _ = _parse(token)
    expected = _sign(secret, f"{header_b64}.{payload_b64}")
    if not hmac.compare_digest(expected.encode(), sig_b64.encode()):
        raise InvalidSignatureError("token signature mismatch")
    payload = _load_claims(payload_b64)
    sub = payload.get("sub")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub:
        raise MalformedTokenError("token is missing its subject")
    if isinstance(iat, bool) or isinstance(exp, bool):
        raise MalformedTokenError("token timestamps must be numeric")
    if not isinstance(iat, (int, float)) or not isinstance(exp, (int, float)):
        raise MalformedTokenError("token timestamps must be numeric")
    current = (now or _utcnow()).timestamp()
    if current >= exp:
        raise ExpiredTokenError("token expired")
    return TokenClaims(
        principal_id=sub,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        token_id=str(payload.get("jti") or ""),
        token_type=payload.get("token_type"),
        session_id=payload.get("sid"),
    )


def decode_ignoring_expiry(token: str, secret: str) -> dict[str, Any]:
    """Verify the signature of ``token`` and return its raw claims.

    Used where an expired token still identifies something worth cleaning
    up, such as the session named by a stale renewal cookie at logout.
    """
    _check_secret(secret)
    header_b64, payload_b64, sig_b64, _ = _parse(token)
    if not hmac.compare_digest(
        _sign(secret, f"{header_b64}.{payload_b64}").encode(), sig_b64.encode()
    ):
        raise InvalidSignatureError("token signature mismatch")
    return _load_claims(payload_b64)
