from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_VALID_ERROR_CODES = {
    "validation_error",
    "conflict",
    "unauthorized",
    "invalid_state",
    "missing_code",
    "server_error",
}


class ErrorBody(BaseModel):
    """Error body with a stable machine-readable code."""

    code: str
    message: str

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class CredentialsRequest(BaseModel):
    # Both optional so an empty or missing field reaches the service as a 400
    username: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=1024)

    model_config = ConfigDict(extra="ignore")


class UserSummary(BaseModel):
    id: int
    username: str


class AuthResponse(BaseModel):
    user: UserSummary
    token: str


class AuthUrlResponse(BaseModel):
    url: str


class HealthResponse(BaseModel):
    status: str = "ok"
