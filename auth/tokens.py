"""
auth/tokens.py -- Signed access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. One symmetric secret signs both token kinds;
       the audience claim keeps them apart. An access token presented where a
       refresh token is expected (or the reverse) fails verification because
       the audience does not match [A1].

  Verification is all-or-nothing: signature, expiry, issuer, audience and the
       required subject/email claims must all pass or InvalidToken is raised.
       No partially-trusted payload ever reaches the caller.

  Every token carries a random jti. Two tokens issued for the same claims in
       the same second are still distinct strings, which token rotation and
       revocation rely on.

  SECRET_KEY: injected by the caller (see TokenIssuer.from_settings). The key
       provisioning policy lives in core.config; this module never generates
       a key on its own.

Layer rule: no imports from api/ or store/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import TokenClaims, TokenPair
from core.config import Settings
from core.errors import InvalidInput, InvalidToken

logger = logging.getLogger("trustgate.auth.tokens")


class TokenIssuer:
    """Issues and verifies the two token kinds with a shared secret."""

    def __init__(
        self,
        secret_key: str,
        issuer: str = "trustgate",
        access_audience: str = "trustgate-client",
        refresh_audience: str = "trustgate-refresh",
        access_ttl: timedelta = timedelta(hours=24),
        refresh_ttl: timedelta = timedelta(days=7),
        algorithm: str = "HS256",
    ) -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a secret key.")
        if access_audience == refresh_audience:
            raise ValueError("Access and refresh audiences must differ.")
        self._secret_key = secret_key
        self.issuer = issuer
        self.access_audience = access_audience
        self.refresh_audience = refresh_audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        if settings.secret_key_generated:
            logger.warning("TokenIssuer running with an ephemeral signing key")
        return cls(
            secret_key=settings.secret_key,
            issuer=settings.jwt_issuer,
            access_audience=settings.access_audience,
            refresh_audience=settings.refresh_audience,
            access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
            algorithm=settings.jwt_algorithm,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: str, email: str, fingerprint: str | None = None) -> str:
        return self._encode(user_id, email, fingerprint, self.access_audience, self.access_ttl)

    def issue_refresh_token(self, user_id: str, email: str, fingerprint: str | None = None) -> str:
        return self._encode(user_id, email, fingerprint, self.refresh_audience, self.refresh_ttl)

    def issue_pair(self, user_id: str, email: str, fingerprint: str | None = None) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(user_id, email, fingerprint),
            refresh_token=self.issue_refresh_token(user_id, email, fingerprint),
        )

    def _encode(
        self,
        user_id: str,
        email: str,
        fingerprint: str | None,
        audience: str,
        ttl: timedelta,
    ) -> str:
        if not user_id or not email:
            raise InvalidInput("Token claims require a subject id and an email.")
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "email": email,
            "iss": self.issuer,
            "aud": audience,
            "iat": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
        }
        if fingerprint:
            payload["fingerprint"] = fingerprint
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str) -> TokenClaims:
        return self._decode(token, self.access_audience)

    def verify_refresh_token(self, token: str) -> TokenClaims:
        return self._decode(token, self.refresh_audience)

    def _decode(self, token: str, audience: str) -> TokenClaims:
        if not token or not isinstance(token, str):
            raise InvalidToken(reason="missing token")
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                audience=audience,
                issuer=self.issuer,
            )
        except JWTError as exc:
            raise InvalidToken(reason=f"{type(exc).__name__}: {exc}") from None
        if not payload.get("sub") or not payload.get("email") or "exp" not in payload:
            raise InvalidToken(reason="required claims missing")
        return TokenClaims(
            user_id=payload["sub"],
            email=payload["email"],
            fingerprint=payload.get("fingerprint"),
            issued_at=datetime.fromtimestamp(payload.get("iat", 0), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            token_id=payload.get("jti", ""),
        )
