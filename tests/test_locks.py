"""
tests/test_locks.py -- Unit tests for KeyedLock and StripedLock.
"""

from __future__ import annotations

import asyncio

import pytest

from auth.locks import KeyedLock, StripedLock


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        locks = KeyedLock()
        events: list[str] = []

        async def worker(name: str) -> None:
            async with locks("k"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self) -> None:
        locks = KeyedLock()
        async with locks("a"):
            await asyncio.wait_for(self._enter(locks, "b"), timeout=1)

    @staticmethod
    async def _enter(locks: KeyedLock, key: str) -> None:
        async with locks(key):
            pass

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self) -> None:
        locks = KeyedLock()
        async with locks("a"):
            assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self) -> None:
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks("a"):
                raise RuntimeError("boom")
        assert len(locks) == 0
        await asyncio.wait_for(self._enter(locks, "a"), timeout=1)


class TestStripedLock:
    def test_same_key_same_stripe(self) -> None:
        locks = StripedLock(stripes=8)
        assert locks("198.51.100.1") is locks("198.51.100.1")

    def test_rejects_zero_stripes(self) -> None:
        with pytest.raises(ValueError):
            StripedLock(stripes=0)
