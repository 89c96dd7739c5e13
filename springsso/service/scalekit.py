from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from springsso.config import Settings
from springsso.logging import get_logger
from springsso.service.errors import ProviderNotConfiguredError, UpstreamProviderError

logger = get_logger(__name__)

SCOPES = "openid profile email"


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str
    id_token: str
    expires_in: int
    token_type: str = "Bearer"

    def expires_at(self, now: Optional[float] = None) -> int:
        return int(now if now is not None else time.time()) + self.expires_in


@dataclass
class ScalekitProfile:
    id: str
    email: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    def preferred_username(self) -> str:
        return self.username or self.email or f"user_{self.id}"


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class ScalekitClient:
    """Authorization-code client for the Scalekit identity provider.

    ``transport`` lets tests substitute an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._transport = transport
        if not settings.scalekit_configured:
            logger.warning(
                "scalekit_not_configured",
                message="Scalekit environment variables not set; SSO login will not work",
            )

    def _require_config(self) -> tuple[str, str, str]:
        base = self.settings.scalekit_environment_url
        client_id = self.settings.scalekit_client_id
        client_secret = self.settings.scalekit_client_secret
        if not base or not client_id or not client_secret:
            raise ProviderNotConfiguredError("SSO provider is not configured")
        return base, client_id, client_secret

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.provider_timeout_seconds,
            follow_redirects=False,
            transport=self._transport,
        )

    def authorization_url(self, state: str) -> str:
        base, client_id, _ = self._require_config()
        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": self.settings.redirect_uri,
            "scope": SCOPES,
            "state": state,
        }
        return f"{base}/oauth2/authorize?{urlencode(params)}"

    async def _post_token(self, form: dict[str, str], *, operation: str) -> TokenResponse:
        base, _, _ = self._require_config()
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{base}/oauth2/token",
                    data=form,
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "scalekit_token_http_error",
                operation=operation,
                status_code=exc.response.status_code,
                body=exc.response.text[:500],
            )
            raise UpstreamProviderError("token request rejected by provider") from exc
        except httpx.HTTPError as exc:
            logger.error("scalekit_token_request_failed", operation=operation, error=str(exc))
            raise UpstreamProviderError("token request failed") from exc
        except ValueError as exc:
            logger.error("scalekit_token_parse_error", operation=operation, error=str(exc))
            raise UpstreamProviderError("token response is not JSON") from exc
        return self._parse_token_response(payload, operation=operation)

    def _parse_token_response(self, payload: Any, *, operation: str) -> TokenResponse:
        if not isinstance(payload, dict):
            logger.error("scalekit_token_invalid_format", operation=operation)
            raise UpstreamProviderError("token response is not an object")
        missing = [
            key
            for key in ("access_token", "refresh_token", "id_token")
            if not payload.get(key)
        ]
        if missing:
            # Cached provider tokens are only ever written as a complete set
            logger.error("scalekit_token_incomplete", operation=operation, missing=missing)
            raise UpstreamProviderError("token response is incomplete")
        try:
            expires_in = int(payload["expires_in"])
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("scalekit_token_invalid_expiry", operation=operation)
            raise UpstreamProviderError("token response has invalid expires_in") from exc
        return TokenResponse(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            id_token=payload["id_token"],
            expires_in=expires_in,
            token_type=payload.get("token_type") or "Bearer",
        )

    async def exchange_code(self, code: str) -> TokenResponse:
        _, client_id, client_secret = self._require_config()
        return await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.redirect_uri,
                "client_id": client_id,
                "client_secret": client_secret,
            },
            operation="exchange_code",
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        _, client_id, client_secret = self._require_config()
        return await self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
            },
            operation="refresh",
        )

    async def get_user_info(self, access_token: str) -> ScalekitProfile:
        base, _, _ = self._require_config()
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{base}/userinfo",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                response.raise_for_status()
                userinfo = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "scalekit_userinfo_http_error",
                status_code=exc.response.status_code,
                body=exc.response.text[:500],
            )
            raise UpstreamProviderError("userinfo request rejected by provider") from exc
        except httpx.HTTPError as exc:
            logger.error("scalekit_userinfo_request_failed", error=str(exc))
            raise UpstreamProviderError("userinfo request failed") from exc
        except ValueError as exc:
            logger.error("scalekit_userinfo_parse_error", error=str(exc))
            raise UpstreamProviderError("userinfo response is not JSON") from exc
        return self.parse_profile(userinfo)

    def parse_profile(self, userinfo: Any) -> ScalekitProfile:
        """Accept both Scalekit's profile shape and standard OIDC claims."""
        if not isinstance(userinfo, dict):
            logger.error("scalekit_userinfo_invalid_format", type=type(userinfo).__name__)
            raise UpstreamProviderError("userinfo response is not an object")
        subject = _str_or_none(userinfo.get("id") or userinfo.get("sub"))
        if not subject:
            logger.error("scalekit_identity_missing_subject")
            raise UpstreamProviderError("userinfo response has no subject id")
        return ScalekitProfile(
            id=subject,
            email=_str_or_none(userinfo.get("email")),
            username=_str_or_none(
                userinfo.get("username") or userinfo.get("preferred_username")
            ),
            first_name=_str_or_none(userinfo.get("firstName") or userinfo.get("given_name")),
            last_name=_str_or_none(userinfo.get("lastName") or userinfo.get("family_name")),
        )
