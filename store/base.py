"""
store/base.py -- The persistence contract consumed by the auth pipeline.

Every method is a coroutine and may raise core.errors.StorageUnavailable when
the backend cannot serve the call. Backends translate their own driver errors;
nothing backend-specific leaks past this interface.

Entity lifecycle notes:
  users          created by registration, updated by profile/password flows,
                 never deleted here.
  sessions       created on login, mutated by renewal (token rotation) and
                 logout/termination (deactivation).
  revoked tokens append-only membership set.
  blocked IPs    lazy expiry: an entry past expires_at reads as absent and is
                 removed on that read.
  audit log      append-only, listed newest first.
"""

from __future__ import annotations

import abc
from typing import Any

from auth.models import AuditRecord, BlockedIP, RevokedToken, Session, User


class SessionStore(abc.ABC):
    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def create_user(self, user: User) -> User:
        """Persist a new user. Raises DuplicateUser if the email is taken."""

    @abc.abstractmethod
    async def get_user_by_id(self, user_id: str) -> User | None: ...

    @abc.abstractmethod
    async def get_user_by_email(self, email: str) -> User | None: ...

    @abc.abstractmethod
    async def update_user(self, user_id: str, **fields: Any) -> User | None:
        """Apply field updates and stamp updated_at. Returns None if not found."""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def create_session(self, session: Session) -> Session: ...

    @abc.abstractmethod
    async def get_session(self, session_id: str) -> Session | None: ...

    @abc.abstractmethod
    async def list_user_sessions(self, user_id: str) -> list[Session]:
        """Return every session (active or not) owned by the user."""

    @abc.abstractmethod
    async def update_session(self, session_id: str, **fields: Any) -> Session | None:
        """Apply field updates and stamp updated_at. Returns None if not found."""

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def write_audit(self, record: AuditRecord) -> AuditRecord: ...

    @abc.abstractmethod
    async def list_audit(
        self,
        user_id: str | None = None,
        action: str | None = None,
        ip: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditRecord]: ...

    # ------------------------------------------------------------------
    # Revoked tokens
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def revoke_token(self, revoked: RevokedToken) -> None: ...

    @abc.abstractmethod
    async def is_token_revoked(self, token: str) -> bool: ...

    # ------------------------------------------------------------------
    # Blocked IPs
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def block_ip(self, blocked: BlockedIP) -> None:
        """Insert or replace the block entry for blocked.ip."""

    @abc.abstractmethod
    async def get_blocked_ip(self, ip: str) -> BlockedIP | None:
        """Return the live entry for ip, or None if absent or expired."""

    async def is_ip_blocked(self, ip: str) -> bool:
        return await self.get_blocked_ip(ip) is not None

    @abc.abstractmethod
    async def unblock_ip(self, ip: str) -> bool: ...

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def health(self) -> bool:
        return True

    async def close(self) -> None:
        return None
