"""
auth/attempts.py -- Per-IP failed-login counter with a lockout window.

Once an IP reaches max_attempts failures it is locked out for lockout_seconds
measured from its most recent failure. After the window elapses the counter
resets and the IP starts from zero. A successful login clears the counter.

An entry whose last failure is older than lockout_seconds is dead whether or
not it ever reached the limit. Dead entries are dropped when their IP is next
seen, and every sweep_every recorded failures a sweep drops all of them, so
the map is bounded by the IPs that failed within one window.

Every read-modify-write runs under a per-IP lock, so concurrent requests
from the same IP cannot slip past the limit by racing the increment.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from auth.locks import KeyedLock
from core.errors import RateLimited


@dataclass
class _Attempts:
    count: int = 0
    last_failure: float = 0.0


class LoginAttemptTracker:
    def __init__(
        self,
        max_attempts: int = 5,
        lockout_seconds: int = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
        sweep_every: int = 256,
    ) -> None:
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self.sweep_every = sweep_every
        self._clock = clock
        self._attempts: dict[str, _Attempts] = {}
        self._locks = KeyedLock()
        self._since_sweep = 0

    def _expired(self, entry: _Attempts, now: float) -> bool:
        return now - entry.last_failure >= self.lockout_seconds

    async def check(self, ip: str) -> None:
        """Raise RateLimited while the IP is inside its lockout window."""
        async with self._locks(ip):
            entry = self._attempts.get(ip)
            if entry is None:
                return
            now = self._clock()
            if self._expired(entry, now):
                del self._attempts[ip]
                return
            if entry.count >= self.max_attempts:
                raise RateLimited(
                    retry_after=math.ceil(entry.last_failure + self.lockout_seconds - now),
                    reason=f"{entry.count} failed attempts from {ip}",
                )

    async def record_failure(self, ip: str) -> int:
        """Count one failure and return the running total for the IP."""
        async with self._locks(ip):
            now = self._clock()
            entry = self._attempts.get(ip)
            if entry is None or self._expired(entry, now):
                entry = self._attempts[ip] = _Attempts()
            entry.count += 1
            entry.last_failure = now
            self._since_sweep += 1
            if self._since_sweep >= self.sweep_every:
                self.sweep()
            return entry.count

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        dead = [ip for ip, entry in self._attempts.items() if self._expired(entry, now)]
        for ip in dead:
            del self._attempts[ip]
        self._since_sweep = 0
        return len(dead)

    async def reset(self, ip: str) -> None:
        async with self._locks(ip):
            self._attempts.pop(ip, None)

    def attempts_for(self, ip: str) -> int:
        entry = self._attempts.get(ip)
        return entry.count if entry else 0

    def tracked_ips(self) -> int:
        return len(self._attempts)
