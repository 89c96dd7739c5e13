from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Optional

from springsso.config import Settings
from springsso.logging import get_logger
from springsso.storage.models import User

logger = get_logger(__name__)


class TokenIssuer:
    """Mints HS256 JWTs carrying ``{id, username, iat, exp}``.

    Tokens are handed to the client for its own bookkeeping; requests are
    authorized through the server-held session, not by these tokens.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def ttl_seconds(self) -> int:
        return self.settings.jwt_ttl_minutes * 60

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(
                self.settings.jwt_secret.encode(),
                signing_input.encode(),
                hashlib.sha256,
            ).digest()
        )

    def issue(self, user: User, *, now: Optional[int] = None) -> str:
        issued_at = int(now if now is not None else time.time())
        payload = {
            "id": user.id,
            "username": user.username,
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
        }
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def decode(self, token: str) -> Optional[dict[str, Any]]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Reject anything but HS256 to rule out algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except Exception:
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            return None

        if not hmac.compare_digest(self._sign(f"{header_b64}.{payload_b64}"), sig_b64):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except Exception as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        exp = payload.get("exp") if isinstance(payload, dict) else None
        if not isinstance(exp, (int, float)) or exp <= time.time():
            return None
        return payload
