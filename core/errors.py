"""
core/errors.py -- Error kinds raised by the trust-decision pipeline.

Every failure the auth layer reports to a caller is a ServiceError carrying:
  kind     -- machine-readable code (stable, used by the HTTP layer and tests)
  message  -- human-readable text that is safe to return to the caller
  reason   -- internal detail for logs and the audit trail only

Two branches:
  SecurityRejection -- validation and security decisions ("denied"). The
      caller must supply new input; nothing is retried automatically.
  StorageUnavailable -- the persistence backend failed ("unavailable"). It is
      never folded into a security rejection, so callers can tell the two apart.

Security-relevant rejections (InvalidCredentials, InvalidRefreshToken,
DeviceMismatch, BotDetected) use deliberately generic messages so a caller
cannot learn which check failed. The specific cause goes into `reason`.

Layer rule: core/ is the kernel. No imports from api/, auth/, or store/.
HTTP status codes are assigned in api/main.py, not here.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for every error kind surfaced by trustgate."""

    kind: str = "service_error"
    default_message: str = "The request could not be completed."

    def __init__(self, message: str | None = None, *, reason: str | None = None) -> None:
        self.message = message or self.default_message
        self.reason = reason
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Return the caller-safe (kind, message) pair. `reason` is never included."""
        return {"code": self.kind, "message": self.message}


class SecurityRejection(ServiceError):
    """A validation or security decision rejected the request."""

    kind = "security_rejection"


class InvalidInput(SecurityRejection):
    kind = "invalid_input"
    default_message = "The request contains invalid input."


class DuplicateUser(SecurityRejection):
    kind = "duplicate_user"
    default_message = "A user with that email already exists."


class WeakPassword(SecurityRejection):
    """Password failed the complexity policy. Criteria are reported for client UX."""

    kind = "weak_password"
    default_message = "Password does not meet the security criteria."

    def __init__(
        self,
        message: str | None = None,
        *,
        criteria: dict[str, bool] | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message, reason=reason)
        self.criteria = dict(criteria or {})

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["criteria"] = self.criteria
        return data


class BotDetected(SecurityRejection):
    kind = "bot_detected"
    default_message = "Suspicious activity detected."


class RateLimited(SecurityRejection):
    """Too many failed logins from one IP; retry_after is in whole seconds."""

    kind = "rate_limited"
    default_message = "Too many failed login attempts. Try again later."

    def __init__(self, message: str | None = None, *, retry_after: int = 0, reason: str | None = None) -> None:
        super().__init__(message, reason=reason)
        self.retry_after = retry_after


class InvalidCredentials(SecurityRejection):
    kind = "invalid_credentials"
    default_message = "Invalid email or password."


class SecurityBlock(SecurityRejection):
    kind = "security_block"
    default_message = "Access blocked for security reasons."


class InvalidToken(SecurityRejection):
    kind = "invalid_token"
    default_message = "Invalid or expired token."


class InvalidSession(SecurityRejection):
    kind = "invalid_session"
    default_message = "Session not found or no longer active."


class DeviceMismatch(SecurityRejection):
    kind = "device_mismatch"
    default_message = "Device not recognized."


class InvalidRefreshToken(SecurityRejection):
    """The single externally visible failure of the renewal path."""

    kind = "invalid_refresh_token"
    default_message = "Invalid refresh token."


class StorageUnavailable(ServiceError):
    """The persistence backend could not complete the operation."""

    kind = "storage_unavailable"
    default_message = "Storage backend unavailable."
