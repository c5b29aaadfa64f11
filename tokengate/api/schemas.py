from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tokengate.storage.models import Principal

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "invalid_credentials",
    "refresh_token_missing",
    "invalid_refresh_token",
    "session_revoked",
    "token_missing",
    "token_malformed",
    "token_expired",
    "token_invalid",
    "forbidden",
    "not_found",
    "validation_error",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error response body with a stable, machine-readable code."""

    message: str
    code: str = Field(..., description="Stable error code")
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., max_length=1024)


class TokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")


class MessageResponse(BaseModel):
    message: str


class PrincipalResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    username: str
    display_name: str = Field(..., alias="displayName")

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        return cls(
            id=principal.id,
            username=principal.username,
            display_name=principal.display_name,
        )


class ProtectedResponse(BaseModel):
    message: str
    user: PrincipalResponse


class HealthResponse(BaseModel):
    status: str
    version: str
