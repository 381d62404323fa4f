"""
auth/honeypot.py -- Bot detection for form submissions.

Decoy fields are rendered invisible to humans (off-screen, hidden, removed
from the tab order). Naive automated submitters fill them in. Four rules are
evaluated on every submission, all of them, without short-circuiting:

  1. any decoy field non-empty                       -> HIGH
  2. filled faster than honeypot_min_fill_ms         -> MEDIUM
  3. every submitted field populated, none skipped   -> MEDIUM
  4. IP already captured as a bot source             -> CRITICAL

trust_score starts at 100 and loses LOW 10 / MEDIUM 25 / HIGH 50 /
CRITICAL 100 per violation, floored at 0. Any violation records a strike for
the IP; the max_strikes-th live strike promotes the IP to the captured set.
Strikes older than strike_ttl are pruned before counting. Every sweep_every
strikes, and on stats(), a sweep prunes all IPs and drops those left with no
live strike. The captured set itself never decays; only release() clears it.

State is process-wide and guarded per IP stripe, so concurrent submissions
from one IP cannot lose strikes.

Layer rule: no imports from api/ or store/.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from auth.locks import StripedLock
from auth.models import DecoyField, HoneypotChallenge, HoneypotVerdict, Severity, Violation

logger = logging.getLogger("trustgate.auth.honeypot")

ISSUED_AT_FIELD = "form_timestamp"

DECOY_FIELDS: tuple[DecoyField, ...] = (
    DecoyField(name="confirm_email", type="text", style="position: absolute; left: -9999px;"),
    DecoyField(name="website", type="url", style="display: none;"),
    DecoyField(name="phone_number", type="tel", style="opacity: 0; position: absolute;"),
)
DECOY_NAMES = frozenset(f.name for f in DECOY_FIELDS)

SEVERITY_PENALTY = {
    Severity.LOW: 10,
    Severity.MEDIUM: 25,
    Severity.HIGH: 50,
    Severity.CRITICAL: 100,
}


@dataclass
class _Strike:
    timestamp_ms: int
    violations: list[Violation]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


class HoneypotGuard:
    def __init__(
        self,
        min_fill_ms: int = 2000,
        max_strikes: int = 3,
        strike_ttl_seconds: int = 24 * 60 * 60,
        clock: Callable[[], int] = _now_ms,
        sweep_every: int = 256,
    ) -> None:
        self.min_fill_ms = min_fill_ms
        self.max_strikes = max_strikes
        self.strike_ttl_ms = strike_ttl_seconds * 1000
        self._clock = clock
        self._strikes: dict[str, list[_Strike]] = {}
        self._captured: set[str] = set()
        self._locks = StripedLock()
        self._captured_lock = threading.Lock()
        self.sweep_every = sweep_every
        self._since_sweep = 0
        self._sweep_lock = threading.Lock()

    def decoy_fields(self) -> HoneypotChallenge:
        """Return fresh decoy descriptors plus the server-side issuance time."""
        return HoneypotChallenge(
            fields=[DecoyField(name=f.name, type=f.type, style=f.style) for f in DECOY_FIELDS],
            issued_at=self._clock(),
        )

    def evaluate_submission(self, form: Mapping[str, Any], ip: str) -> HoneypotVerdict:
        now = self._clock()
        violations: list[Violation] = []

        if any(not _is_empty(form.get(name)) for name in DECOY_NAMES):
            violations.append(Violation("DECOY_FILLED", Severity.HIGH, "Decoy fields were filled in"))

        elapsed = now - _parse_ms(form.get(ISSUED_AT_FIELD))
        if elapsed < self.min_fill_ms:
            violations.append(Violation("TOO_FAST", Severity.MEDIUM, f"Form completed in {elapsed}ms"))

        if form and all(not _is_empty(value) for value in form.values()):
            violations.append(
                Violation("SEQUENTIAL_FILL", Severity.MEDIUM, "Every field populated, automated fill pattern")
            )

        if self.is_captured(ip):
            violations.append(Violation("KNOWN_BOT", Severity.CRITICAL, "IP previously identified as a bot"))

        if violations:
            self._record_strike(ip, now, violations)

        return HoneypotVerdict(
            is_bot=bool(violations),
            violations=violations,
            trust_score=trust_score(violations),
        )

    def _record_strike(self, ip: str, now: int, violations: list[Violation]) -> None:
        with self._locks(ip):
            strikes = self._live(self._strikes.get(ip, []), now)
            strikes.append(_Strike(timestamp_ms=now, violations=violations))
            self._strikes[ip] = strikes
            if len(strikes) >= self.max_strikes:
                with self._captured_lock:
                    newly_captured = ip not in self._captured
                    self._captured.add(ip)
                if newly_captured:
                    logger.warning("IP %s captured after %d honeypot strikes", ip, len(strikes))
        with self._sweep_lock:
            self._since_sweep += 1
            due = self._since_sweep >= self.sweep_every
            if due:
                self._since_sweep = 0
        if due:
            self.sweep()

    def _live(self, strikes: list[_Strike], now: int) -> list[_Strike]:
        cutoff = now - self.strike_ttl_ms
        return [s for s in strikes if s.timestamp_ms >= cutoff]

    def sweep(self) -> int:
        """Prune expired strikes for every IP and forget IPs left with none.

        Returns the number of IPs removed. Captured IPs are unaffected.
        """
        now = self._clock()
        removed = 0
        for ip in list(self._strikes):
            with self._locks(ip):
                strikes = self._live(self._strikes.get(ip, []), now)
                if strikes:
                    self._strikes[ip] = strikes
                elif self._strikes.pop(ip, None) is not None:
                    removed += 1
        return removed

    def is_captured(self, ip: str) -> bool:
        with self._captured_lock:
            return ip in self._captured

    def release(self, ip: str) -> None:
        """Administrative override: forget both the strikes and the capture."""
        with self._locks(ip):
            self._strikes.pop(ip, None)
            with self._captured_lock:
                self._captured.discard(ip)
        logger.info("IP %s released from honeypot state", ip)

    def tracked_ips(self) -> int:
        return len(self._strikes)

    def stats(self) -> dict[str, int]:
        self.sweep()
        with self._captured_lock:
            captured = len(self._captured)
        strikes = list(self._strikes.values())
        return {
            "captured_ips": captured,
            "suspicious_ips": len(strikes),
            "total_strikes": sum(len(s) for s in strikes),
        }


def trust_score(violations: list[Violation]) -> int:
    score = 100
    for violation in violations:
        score -= SEVERITY_PENALTY[violation.severity]
    return max(score, 0)


def _parse_ms(value: Any) -> int:
    # A missing or unparseable timestamp counts as epoch 0.
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
