"""
store/sql.py -- SQLAlchemy Core implementation of SessionStore.

Pattern: Repository + Data Mapper. SQLStore is the repository; the _row_to_*
functions are the mappers. Nothing outside this module touches SQL.

The engine is synchronous. Each public coroutine hands its blocking body to
asyncio.to_thread so the event loop never waits on the database. Driver
errors are translated at that single boundary: IntegrityError on the users
email column becomes DuplicateUser, every other SQLAlchemyError becomes
StorageUnavailable.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Revoked tokens are stored as SHA-256 hex digests, never as bearer strings.

Timestamps are stored as ISO 8601 UTC strings, audit metadata as JSON text.

Layer rule: imports from auth.models and core/ only.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import AuditRecord, BlockedIP, RevokedToken, Session, User
from core.errors import DuplicateUser, StorageUnavailable
from store.base import SessionStore

logger = logging.getLogger("trustgate.store")

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("display_name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("access_token", Text, nullable=False),
    Column("refresh_token", Text, nullable=False),
    Column("fingerprint", String(64), nullable=False),
    Column("ip", String(64), nullable=False),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("ended_at", String(32)),
)

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", String(64), nullable=False, unique=True),
    Column("user_id", String(64), index=True),
    Column("action", String(64), nullable=False),
    Column("ip", String(64), nullable=False),
    Column("metadata_json", Text, nullable=False, server_default="{}"),
    Column("timestamp", String(32), nullable=False),
)

_revoked_tokens = Table(
    "revoked_tokens",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # SHA-256 hex
    Column("revoked_at", String(32), nullable=False),
    Column("reason", String(64), nullable=False),
)

_blocked_ips = Table(
    "blocked_ips",
    _metadata,
    Column("ip", String(64), primary_key=True),
    Column("reason", Text, nullable=False),
    Column("blocked_at", String(32), nullable=False),
    Column("expires_at", String(32)),  # NULL = permanent
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection: SQLite PRAGMAs are not inherited by pooled connections.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _to_columns(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert dataclass-typed values to their column representation."""
    out: dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, bool):
            out[key] = 1 if value else 0
        elif isinstance(value, datetime):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SQLStore(SessionStore):
    """Durable SessionStore backed by any SQLAlchemy-supported database.

    Usage:
        store = SQLStore("sqlite:///trustgate.db")
        await store.create_user(user)
        await store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as exc:
            logger.error("Storage call %s failed: %s", fn.__name__, exc)
            raise StorageUnavailable(reason=f"{fn.__name__}: {exc.__class__.__name__}") from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, user: User) -> User:
        return await self._run(self._create_user, user)

    def _create_user(self, user: User) -> User:
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        email=user.email,
                        password_hash=user.password_hash,
                        display_name=user.display_name,
                        created_at=_iso(user.created_at),
                        updated_at=_iso(user.updated_at),
                        is_active=1 if user.is_active else 0,
                        is_verified=1 if user.is_verified else 0,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateUser(reason=f"email {user.email!r} already stored") from exc
        return user

    async def get_user_by_id(self, user_id: str) -> User | None:
        return await self._run(self._get_user, _users.c.id == user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        return await self._run(self._get_user, _users.c.email == email)

    def _get_user(self, clause) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
        return _row_to_user(row) if row is not None else None

    async def update_user(self, user_id: str, **fields: Any) -> User | None:
        return await self._run(self._update_user, user_id, fields)

    def _update_user(self, user_id: str, fields: dict[str, Any]) -> User | None:
        values = _to_columns({**fields, "updated_at": _now()})
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateUser(reason=f"email {fields.get('email')!r} already stored") from exc
        if result.rowcount == 0:
            return None
        return self._get_user(_users.c.id == user_id)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, session: Session) -> Session:
        return await self._run(self._create_session, session)

    def _create_session(self, session: Session) -> Session:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    access_token=session.access_token,
                    refresh_token=session.refresh_token,
                    fingerprint=session.fingerprint,
                    ip=session.ip,
                    user_agent=session.user_agent,
                    created_at=_iso(session.created_at),
                    updated_at=_iso(session.updated_at),
                    expires_at=_iso(session.expires_at),
                    is_active=1 if session.is_active else 0,
                    ended_at=_iso(session.ended_at),
                )
            )
            conn.commit()
        return session

    async def get_session(self, session_id: str) -> Session | None:
        return await self._run(self._get_session, session_id)

    def _get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    async def list_user_sessions(self, user_id: str) -> list[Session]:
        return await self._run(self._list_user_sessions, user_id)

    def _list_user_sessions(self, user_id: str) -> list[Session]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.created_at)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    async def update_session(self, session_id: str, **fields: Any) -> Session | None:
        return await self._run(self._update_session, session_id, fields)

    def _update_session(self, session_id: str, fields: dict[str, Any]) -> Session | None:
        values = _to_columns({"updated_at": _now(), **fields})
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(**values))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self._get_session(session_id)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def write_audit(self, record: AuditRecord) -> AuditRecord:
        return await self._run(self._write_audit, record)

    def _write_audit(self, record: AuditRecord) -> AuditRecord:
        record_id = record.id or uuid.uuid4().hex
        with self.engine.connect() as conn:
            conn.execute(
                _audit_log.insert().values(
                    id=record_id,
                    user_id=record.user_id,
                    action=record.action,
                    ip=record.ip,
                    metadata_json=json.dumps(record.metadata, default=str),
                    timestamp=_iso(record.timestamp),
                )
            )
            conn.commit()
        return AuditRecord(
            action=record.action,
            ip=record.ip,
            timestamp=record.timestamp,
            user_id=record.user_id,
            metadata=dict(record.metadata),
            id=record_id,
        )

    async def list_audit(
        self,
        user_id: str | None = None,
        action: str | None = None,
        ip: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditRecord]:
        return await self._run(self._list_audit, user_id, action, ip, limit, offset)

    def _list_audit(
        self, user_id: str | None, action: str | None, ip: str | None, limit: int, offset: int
    ) -> list[AuditRecord]:
        query = select(_audit_log)
        if user_id is not None:
            query = query.where(_audit_log.c.user_id == user_id)
        if action is not None:
            query = query.where(_audit_log.c.action == action)
        if ip is not None:
            query = query.where(_audit_log.c.ip == ip)
        query = query.order_by(_audit_log.c.seq.desc()).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit(r) for r in rows]

    # ------------------------------------------------------------------
    # Revoked tokens
    # ------------------------------------------------------------------

    async def revoke_token(self, revoked: RevokedToken) -> None:
        await self._run(self._revoke_token, revoked)

    def _revoke_token(self, revoked: RevokedToken) -> None:
        digest = _token_digest(revoked.token)
        with self.engine.connect() as conn:
            exists = conn.execute(
                select(_revoked_tokens.c.token_hash).where(_revoked_tokens.c.token_hash == digest)
            ).fetchone()
            if exists is None:
                conn.execute(
                    _revoked_tokens.insert().values(
                        token_hash=digest,
                        revoked_at=_iso(revoked.revoked_at),
                        reason=revoked.reason,
                    )
                )
                conn.commit()

    async def is_token_revoked(self, token: str) -> bool:
        return await self._run(self._is_token_revoked, token)

    def _is_token_revoked(self, token: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_revoked_tokens.c.token_hash).where(_revoked_tokens.c.token_hash == _token_digest(token))
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Blocked IPs
    # ------------------------------------------------------------------

    async def block_ip(self, blocked: BlockedIP) -> None:
        await self._run(self._block_ip, blocked)

    def _block_ip(self, blocked: BlockedIP) -> None:
        with self.engine.connect() as conn:
            conn.execute(_blocked_ips.delete().where(_blocked_ips.c.ip == blocked.ip))
            conn.execute(
                _blocked_ips.insert().values(
                    ip=blocked.ip,
                    reason=blocked.reason,
                    blocked_at=_iso(blocked.blocked_at),
                    expires_at=_iso(blocked.expires_at),
                )
            )
            conn.commit()

    async def get_blocked_ip(self, ip: str) -> BlockedIP | None:
        return await self._run(self._get_blocked_ip, ip)

    def _get_blocked_ip(self, ip: str) -> BlockedIP | None:
        with self.engine.connect() as conn:
            row = conn.execute(_blocked_ips.select().where(_blocked_ips.c.ip == ip)).fetchone()
            if row is None:
                return None
            entry = _row_to_blocked_ip(row)
            if entry.is_expired(_now()):
                conn.execute(_blocked_ips.delete().where(_blocked_ips.c.ip == ip))
                conn.commit()
                return None
        return entry

    async def unblock_ip(self, ip: str) -> bool:
        return await self._run(self._unblock_ip, ip)

    def _unblock_ip(self, ip: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_blocked_ips.delete().where(_blocked_ips.c.ip == ip))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def health(self) -> bool:
        try:
            await self._run(self._ping)
        except StorageUnavailable:
            return False
        return True

    def _ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        display_name=row.display_name,
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        fingerprint=row.fingerprint,
        ip=row.ip,
        user_agent=row.user_agent,
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
        expires_at=_parse(row.expires_at),
        is_active=bool(row.is_active),
        ended_at=_parse(row.ended_at),
    )


def _row_to_audit(row) -> AuditRecord:
    return AuditRecord(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        ip=row.ip,
        metadata=json.loads(row.metadata_json or "{}"),
        timestamp=_parse(row.timestamp),
    )


def _row_to_blocked_ip(row) -> BlockedIP:
    return BlockedIP(
        ip=row.ip,
        reason=row.reason,
        blocked_at=_parse(row.blocked_at),
        expires_at=_parse(row.expires_at),
    )
