"""
store/memory.py -- In-memory SessionStore for development and tests.

All state lives in plain dicts guarded by one asyncio.Lock for writes. The
audit log is capped (oldest entries dropped) so a long-running dev server
does not grow without bound. Records are copied on the way in and out so
callers cannot mutate stored state by accident.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from auth.models import AuditRecord, BlockedIP, RevokedToken, Session, User
from core.errors import DuplicateUser
from store.base import SessionStore


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore(SessionStore):
    """Usage:
    store = MemoryStore()
    await store.create_user(user)
    user = await store.get_user_by_email("a@x.com")
    """

    def __init__(self, audit_log_limit: int = 1000) -> None:
        self.audit_log_limit = audit_log_limit
        self._users: dict[str, User] = {}
        self._sessions: dict[str, Session] = {}
        self._audit: list[AuditRecord] = []
        self._revoked: dict[str, RevokedToken] = {}
        self._blocked: dict[str, BlockedIP] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, user: User) -> User:
        async with self._lock:
            if any(u.email == user.email for u in self._users.values()):
                raise DuplicateUser(reason=f"email {user.email!r} already stored")
            self._users[user.id] = replace(user)
            return replace(user)

    async def get_user_by_id(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return replace(user) if user else None

    async def get_user_by_email(self, email: str) -> User | None:
        for user in self._users.values():
            if user.email == email:
                return replace(user)
        return None

    async def update_user(self, user_id: str, **fields: Any) -> User | None:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            if "email" in fields and any(
                u.email == fields["email"] and u.id != user_id for u in self._users.values()
            ):
                raise DuplicateUser(reason=f"email {fields['email']!r} already stored")
            updated = replace(user, **fields, updated_at=_now())
            self._users[user_id] = updated
            return replace(updated)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, session: Session) -> Session:
        async with self._lock:
            self._sessions[session.id] = replace(session)
            return replace(session)

    async def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return replace(session) if session else None

    async def list_user_sessions(self, user_id: str) -> list[Session]:
        return [replace(s) for s in self._sessions.values() if s.user_id == user_id]

    async def update_session(self, session_id: str, **fields: Any) -> Session | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            updated = replace(session, **{"updated_at": _now(), **fields})
            self._sessions[session_id] = updated
            return replace(updated)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def write_audit(self, record: AuditRecord) -> AuditRecord:
        async with self._lock:
            stored = replace(record, id=record.id or uuid.uuid4().hex, metadata=dict(record.metadata))
            self._audit.append(stored)
            overflow = len(self._audit) - self.audit_log_limit
            if overflow > 0:
                del self._audit[:overflow]
            return replace(stored)

    async def list_audit(
        self,
        user_id: str | None = None,
        action: str | None = None,
        ip: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditRecord]:
        records = [
            r
            for r in reversed(self._audit)
            if (user_id is None or r.user_id == user_id)
            and (action is None or r.action == action)
            and (ip is None or r.ip == ip)
        ]
        return [replace(r) for r in records[offset : offset + limit]]

    # ------------------------------------------------------------------
    # Revoked tokens
    # ------------------------------------------------------------------

    async def revoke_token(self, revoked: RevokedToken) -> None:
        async with self._lock:
            self._revoked.setdefault(revoked.token, replace(revoked))

    async def is_token_revoked(self, token: str) -> bool:
        return token in self._revoked

    # ------------------------------------------------------------------
    # Blocked IPs
    # ------------------------------------------------------------------

    async def block_ip(self, blocked: BlockedIP) -> None:
        async with self._lock:
            self._blocked[blocked.ip] = replace(blocked)

    async def get_blocked_ip(self, ip: str) -> BlockedIP | None:
        async with self._lock:
            entry = self._blocked.get(ip)
            if entry is None:
                return None
            if entry.is_expired(_now()):
                del self._blocked[ip]
                return None
            return replace(entry)

    async def unblock_ip(self, ip: str) -> bool:
        async with self._lock:
            return self._blocked.pop(ip, None) is not None

    # ------------------------------------------------------------------
    # Dev helpers
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        return {
            "users": len(self._users),
            "sessions": len(self._sessions),
            "audit_records": len(self._audit),
            "revoked_tokens": len(self._revoked),
            "blocked_ips": len(self._blocked),
        }
