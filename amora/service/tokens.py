"""Signed, time-bounded access and refresh tokens.

Tokens are compact HS256 JWTs. Access and refresh tokens are signed with
separate secrets and carry a ``token_type`` claim, so one is never accepted
in place of the other.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from amora.logging import get_logger
from amora.service.errors import InvalidToken

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class AccessClaims:
    identity_id: str
    email: str
    issued_at: int
    expires_at: int
    jti: str


@dataclass(frozen=True)
class RefreshClaims:
    identity_id: str
    issued_at: int
    expires_at: int
    jti: str


class TokenCodec:
    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        issuer: str,
        audience: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._access_secret = access_secret.encode()
        self._refresh_secret = refresh_secret.encode()
        self.issuer = issuer
        self.audience = audience
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.time) -> "TokenCodec":
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            clock=clock,
        )

    def issue_access_token(self, identity_id: str, email: str) -> str:
        now = int(self._clock())
        return self._encode_jwt(
            {
                "iss": self.issuer,
                "aud": self.audience,
                "sub": identity_id,
                "email": email,
                "token_type": ACCESS,
                "jti": str(uuid.uuid4()),
                "iat": now,
                "exp": now + self.access_ttl_seconds,
            },
            self._access_secret,
        )

    def issue_refresh_token(self, identity_id: str) -> str:
        now = int(self._clock())
        return self._encode_jwt(
            {
                "iss": self.issuer,
                "aud": self.audience,
                "sub": identity_id,
                "token_type": REFRESH,
                "jti": str(uuid.uuid4()),
                "iat": now,
                "exp": now + self.refresh_ttl_seconds,
            },
            self._refresh_secret,
        )

    def verify_access_token(self, token: str) -> AccessClaims:
        payload = self._verify(token, self._access_secret, ACCESS)
        email = payload.get("email")
        if not isinstance(email, str):
            raise InvalidToken("Invalid token")
        return AccessClaims(
            identity_id=payload["sub"],
            email=email,
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload["exp"]),
            jti=str(payload.get("jti", "")),
        )

    def verify_refresh_token(self, token: str) -> RefreshClaims:
        payload = self._verify(token, self._refresh_secret, REFRESH)
        return RefreshClaims(
            identity_id=payload["sub"],
            issued_at=int(payload.get("iat", 0)),
            expires_at=int(payload["exp"]),
            jti=str(payload.get("jti", "")),
        )

    def _verify(self, token: str, secret: bytes, token_type: str) -> dict[str, Any]:
        payload = self._decode_jwt(token, secret)
        if payload is None:
            raise InvalidToken("Invalid token")
        if payload.get("token_type") != token_type:
            logger.info("jwt_wrong_token_type", expected=token_type)
            raise InvalidToken("Invalid token")
        if not isinstance(payload.get("sub"), str) or not payload["sub"]:
            raise InvalidToken("Invalid token")
        return payload

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str, secret: bytes) -> str:
        return self._encode_segment(
            hmac.new(secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any], secret: bytes) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, secret)}"

    def _decode_jwt(self, token: str, secret: bytes) -> Optional[dict[str, Any]]:
        if not isinstance(token, str):
            return None
        if not token.isascii():
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Only HS256 is accepted; anything else is an algorithm confusion attempt
        try:
            header = json.loads(self._decode_segment(header_b64))
        except ValueError:
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return None

        signing_input = f"{header_b64}.{payload_b64}"
        if not hmac.compare_digest(
            self._sign(signing_input, secret).encode(), sig_b64.encode()
        ):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except ValueError as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.issuer:
            return None
        aud = payload.get("aud")
        if isinstance(aud, str):
            valid_aud = aud == self.audience
        elif isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = False
        if not valid_aud:
            return None
        exp = payload.get("exp")
        if exp is None:
            return None
        try:
            exp_ts = float(exp)
        except (TypeError, ValueError):
            return None
        if exp_ts <= self._clock():
            return None
        return payload


__all__ = ["AccessClaims", "RefreshClaims", "TokenCodec"]
