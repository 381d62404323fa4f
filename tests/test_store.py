"""
tests/test_store.py -- SessionStore contract tests for MemoryStore and SQLStore.

The contract classes run once per backend through the parametrized `backend`
fixture. Backend-specific behavior (audit cap, token digests, driver error
translation) lives in the classes at the bottom.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from auth.models import AuditRecord, BlockedIP, RevokedToken, Session, User
from core.errors import DuplicateUser, StorageUnavailable
from store import build_store
from store.memory import MemoryStore
from store.sql import SQLStore, _revoked_tokens, _token_digest
from conftest import make_settings

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_user(user_id: str = "u1", email: str = "ana@example.com") -> User:
    return User(
        id=user_id,
        email=email,
        password_hash="$2b$04$hash",
        display_name="Ana",
        created_at=NOW,
        updated_at=NOW,
    )


def make_session(session_id: str = "s1", user_id: str = "u1", **overrides) -> Session:
    values = {
        "id": session_id,
        "user_id": user_id,
        "access_token": f"access-{session_id}",
        "refresh_token": f"refresh-{session_id}",
        "fingerprint": "fp-1",
        "ip": "203.0.113.10",
        "user_agent": "Mozilla/5.0",
        "created_at": NOW,
        "updated_at": NOW,
        "expires_at": NOW + timedelta(days=1),
    }
    values.update(overrides)
    return Session(**values)


def audit(action: str, user_id: str | None = "u1", ip: str = "203.0.113.10") -> AuditRecord:
    return AuditRecord(action=action, ip=ip, timestamp=NOW, user_id=user_id, metadata={"k": "v"})


@pytest_asyncio.fixture(params=["memory", "sql"])
async def backend(request, tmp_path):
    if request.param == "memory":
        store = MemoryStore()
    else:
        store = SQLStore(f"sqlite:///{tmp_path / 'trustgate.db'}")
    yield store
    await store.close()


class TestUsers:
    @pytest.mark.asyncio
    async def test_create_and_fetch(self, backend) -> None:
        await backend.create_user(make_user())
        by_id = await backend.get_user_by_id("u1")
        by_email = await backend.get_user_by_email("ana@example.com")
        assert by_id == by_email
        assert by_id.display_name == "Ana"
        assert by_id.is_active is True
        assert by_id.created_at == NOW

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, backend) -> None:
        await backend.create_user(make_user())
        with pytest.raises(DuplicateUser):
            await backend.create_user(make_user(user_id="u2"))

    @pytest.mark.asyncio
    async def test_unknown_user_is_none(self, backend) -> None:
        assert await backend.get_user_by_id("nobody") is None
        assert await backend.get_user_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_update_stamps_updated_at(self, backend) -> None:
        await backend.create_user(make_user())
        updated = await backend.update_user("u1", display_name="Ana Maria", is_active=False)
        assert updated.display_name == "Ana Maria"
        assert updated.is_active is False
        assert updated.updated_at > NOW

    @pytest.mark.asyncio
    async def test_update_to_taken_email_rejected(self, backend) -> None:
        await backend.create_user(make_user())
        await backend.create_user(make_user(user_id="u2", email="bea@example.com"))
        with pytest.raises(DuplicateUser):
            await backend.update_user("u2", email="ana@example.com")

    @pytest.mark.asyncio
    async def test_update_missing_user_is_none(self, backend) -> None:
        assert await backend.update_user("nobody", display_name="x") is None


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_get_and_list(self, backend) -> None:
        await backend.create_session(make_session("s1"))
        await backend.create_session(make_session("s2"))
        await backend.create_session(make_session("s3", user_id="u2"))
        assert (await backend.get_session("s1")).refresh_token == "refresh-s1"
        assert {s.id for s in await backend.list_user_sessions("u1")} == {"s1", "s2"}

    @pytest.mark.asyncio
    async def test_update_rotates_tokens(self, backend) -> None:
        await backend.create_session(make_session("s1"))
        updated = await backend.update_session("s1", access_token="a2", refresh_token="r2")
        assert updated.access_token == "a2"
        assert updated.refresh_token == "r2"
        assert updated.updated_at > NOW

    @pytest.mark.asyncio
    async def test_deactivate(self, backend) -> None:
        await backend.create_session(make_session("s1"))
        ended = NOW + timedelta(hours=1)
        await backend.update_session("s1", is_active=False, ended_at=ended)
        session = await backend.get_session("s1")
        assert session.is_active is False
        assert session.ended_at == ended

    @pytest.mark.asyncio
    async def test_update_missing_session_is_none(self, backend) -> None:
        assert await backend.update_session("nope", is_active=False) is None


class TestAudit:
    @pytest.mark.asyncio
    async def test_newest_first_with_ids(self, backend) -> None:
        for action in ("REGISTER", "LOGIN_SUCCESS", "LOGOUT"):
            stored = await backend.write_audit(audit(action))
            assert stored.id
        records = await backend.list_audit(user_id="u1")
        assert [r.action for r in records] == ["LOGOUT", "LOGIN_SUCCESS", "REGISTER"]
        assert records[0].metadata == {"k": "v"}

    @pytest.mark.asyncio
    async def test_filters_and_paging(self, backend) -> None:
        await backend.write_audit(audit("LOGIN_FAILURE", user_id=None, ip="198.51.100.1"))
        for _ in range(3):
            await backend.write_audit(audit("LOGIN_SUCCESS"))
        assert len(await backend.list_audit(action="LOGIN_SUCCESS")) == 3
        assert [r.user_id for r in await backend.list_audit(ip="198.51.100.1")] == [None]
        assert len(await backend.list_audit(limit=2)) == 2
        assert len(await backend.list_audit(limit=10, offset=3)) == 1


class TestRevocationAndBlocks:
    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, backend) -> None:
        revoked = RevokedToken(token="tok", revoked_at=NOW, reason="LOGOUT")
        await backend.revoke_token(revoked)
        await backend.revoke_token(revoked)
        assert await backend.is_token_revoked("tok") is True
        assert await backend.is_token_revoked("other") is False

    @pytest.mark.asyncio
    async def test_permanent_block(self, backend) -> None:
        await backend.block_ip(BlockedIP(ip="198.51.100.9", reason="manual", blocked_at=NOW))
        assert await backend.is_ip_blocked("198.51.100.9") is True
        assert (await backend.get_blocked_ip("198.51.100.9")).reason == "manual"

    @pytest.mark.asyncio
    async def test_expired_block_reads_as_absent(self, backend) -> None:
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        await backend.block_ip(
            BlockedIP(ip="198.51.100.9", reason="anomaly", blocked_at=past - timedelta(hours=1), expires_at=past)
        )
        assert await backend.get_blocked_ip("198.51.100.9") is None
        assert await backend.unblock_ip("198.51.100.9") is False, "expired entry is removed on read"

    @pytest.mark.asyncio
    async def test_unblock(self, backend) -> None:
        await backend.block_ip(BlockedIP(ip="198.51.100.9", reason="manual", blocked_at=NOW))
        assert await backend.unblock_ip("198.51.100.9") is True
        assert await backend.is_ip_blocked("198.51.100.9") is False

    @pytest.mark.asyncio
    async def test_health(self, backend) -> None:
        assert await backend.health() is True


# ---------------------------------------------------------------------------
# Backend-specific behavior
# ---------------------------------------------------------------------------


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_audit_log_is_capped(self) -> None:
        store = MemoryStore(audit_log_limit=3)
        for i in range(5):
            await store.write_audit(audit(f"A{i}"))
        assert [r.action for r in await store.list_audit()] == ["A4", "A3", "A2"]

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self) -> None:
        store = MemoryStore()
        await store.create_user(make_user())
        fetched = await store.get_user_by_id("u1")
        fetched.display_name = "mutated"
        assert (await store.get_user_by_id("u1")).display_name == "Ana"


class TestSQLStore:
    @pytest.mark.asyncio
    async def test_revoked_tokens_stored_as_digest(self, tmp_path) -> None:
        store = SQLStore(f"sqlite:///{tmp_path / 'digest.db'}")
        await store.revoke_token(RevokedToken(token="bearer-secret", revoked_at=NOW, reason="LOGOUT"))
        with store.engine.connect() as conn:
            stored = conn.execute(select(_revoked_tokens.c.token_hash)).scalars().all()
        assert stored == [_token_digest("bearer-secret")]
        assert "bearer-secret" not in stored
        await store.close()

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path) -> None:
        url = f"sqlite:///{tmp_path / 'durable.db'}"
        first = SQLStore(url)
        await first.create_user(make_user())
        await first.close()
        second = SQLStore(url)
        assert (await second.get_user_by_email("ana@example.com")).id == "u1"
        await second.close()

    @pytest.mark.asyncio
    async def test_driver_errors_become_storage_unavailable(self, tmp_path, monkeypatch) -> None:
        store = SQLStore(f"sqlite:///{tmp_path / 'down.db'}")

        def broken_connect():
            raise OperationalError("SELECT 1", {}, Exception("database is down"))

        monkeypatch.setattr(store.engine, "connect", broken_connect)
        with pytest.raises(StorageUnavailable):
            await store.get_user_by_email("ana@example.com")
        assert await store.health() is False


class TestBuildStore:
    def test_memory_without_database_url(self) -> None:
        assert isinstance(build_store(make_settings(database_url="")), MemoryStore)

    def test_sql_with_database_url(self, tmp_path) -> None:
        store = build_store(make_settings(database_url=f"sqlite:///{tmp_path / 'built.db'}"))
        assert isinstance(store, SQLStore)
        store.engine.dispose()
