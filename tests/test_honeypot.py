"""
tests/test_honeypot.py -- Unit tests for HoneypotGuard.

A fake millisecond clock drives every test so the timing rule and the strike
TTL are deterministic.
"""

from __future__ import annotations

import pytest

from auth.honeypot import DECOY_NAMES, HoneypotGuard, trust_score
from auth.models import Severity, Violation

IP = "198.51.100.20"
T0 = 1_760_000_000_000


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def guard(clock: FakeClock) -> HoneypotGuard:
    return HoneypotGuard(min_fill_ms=2000, max_strikes=3, strike_ttl_seconds=3600, clock=clock)


def human_form(clock: FakeClock, **overrides) -> dict:
    form = {name: "" for name in DECOY_NAMES}
    form.update({"email": "ana@example.com", "password": "Str0ng!Pass", "form_timestamp": clock() - 5000})
    form.update(overrides)
    return form


def types(verdict) -> list[str]:
    return [v.type for v in verdict.violations]


class TestEvaluateSubmission:
    def test_clean_form_passes(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        verdict = guard.evaluate_submission(human_form(clock), IP)
        assert verdict.is_bot is False
        assert verdict.violations == []
        assert verdict.trust_score == 100

    def test_filled_decoy_is_a_bot(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        verdict = guard.evaluate_submission(human_form(clock, website="http://spam.example"), IP)
        assert verdict.is_bot is True
        assert types(verdict) == ["DECOY_FILLED"]
        assert verdict.trust_score == 50

    def test_two_decoys_and_fast_fill_report_both(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        """All rules run; a decoy hit does not hide the timing violation."""
        form = human_form(clock, confirm_email="x@y.z", website="spam", form_timestamp=clock() - 500)
        verdict = guard.evaluate_submission(form, IP)
        assert verdict.is_bot is True
        assert set(types(verdict)) == {"DECOY_FILLED", "TOO_FAST"}
        assert verdict.trust_score == 25

    def test_fill_exactly_at_minimum_is_not_too_fast(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        verdict = guard.evaluate_submission(human_form(clock, form_timestamp=clock() - 2000), IP)
        assert "TOO_FAST" not in types(verdict)

    def test_every_field_populated_is_sequential_fill(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        """A submission that skips no field at all (no decoys sent) looks scripted."""
        form = {"email": "ana@example.com", "password": "Str0ng!Pass", "form_timestamp": clock() - 5000}
        verdict = guard.evaluate_submission(form, IP)
        assert types(verdict) == ["SEQUENTIAL_FILL"]
        assert verdict.trust_score == 75

    def test_unparseable_timestamp_counts_as_epoch(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        verdict = guard.evaluate_submission(human_form(clock, form_timestamp="not-a-number"), IP)
        assert "TOO_FAST" not in types(verdict)


class TestStrikes:
    def test_third_strike_captures_ip(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        for _ in range(3):
            guard.evaluate_submission(human_form(clock, website="spam"), IP)
            clock.advance(1000)
        assert guard.is_captured(IP) is True

        verdict = guard.evaluate_submission(human_form(clock), IP)
        assert verdict.is_bot is True
        assert types(verdict) == ["KNOWN_BOT"]
        assert verdict.trust_score == 0

    def test_two_strikes_do_not_capture(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        for _ in range(2):
            guard.evaluate_submission(human_form(clock, website="spam"), IP)
        assert guard.is_captured(IP) is False

    def test_expired_strikes_are_pruned(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        for _ in range(2):
            guard.evaluate_submission(human_form(clock, website="spam"), IP)
        clock.advance(3600 * 1000 + 1)
        guard.evaluate_submission(human_form(clock, website="spam"), IP)
        assert guard.is_captured(IP) is False
        assert guard.stats()["total_strikes"] == 1

    def test_clean_submission_records_no_strike(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        guard.evaluate_submission(human_form(clock), IP)
        assert guard.stats() == {"captured_ips": 0, "suspicious_ips": 0, "total_strikes": 0}

    def test_strikes_are_per_ip(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        for ip in ("198.51.100.1", "198.51.100.2", "198.51.100.3"):
            guard.evaluate_submission(human_form(clock, website="spam"), ip)
        stats = guard.stats()
        assert stats["captured_ips"] == 0
        assert stats["suspicious_ips"] == 3

    def test_stats_forgets_ips_whose_strikes_expired(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        for ip in ("198.51.100.1", "198.51.100.2"):
            guard.evaluate_submission(human_form(clock, website="spam"), ip)
        clock.advance(3600 * 1000 + 1)
        assert guard.stats() == {"captured_ips": 0, "suspicious_ips": 0, "total_strikes": 0}

    def test_periodic_sweep_drops_idle_ips(self, clock: FakeClock) -> None:
        guard = HoneypotGuard(min_fill_ms=2000, max_strikes=3, strike_ttl_seconds=3600, clock=clock, sweep_every=5)
        for n in range(4):
            guard.evaluate_submission(human_form(clock, website="spam"), f"198.51.100.{n}")
        clock.advance(3600 * 1000 + 1)
        guard.evaluate_submission(human_form(clock, website="spam"), IP)
        assert guard.tracked_ips() == 1

    def test_sweep_keeps_captured_ips(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        for _ in range(3):
            guard.evaluate_submission(human_form(clock, website="spam"), IP)
        clock.advance(3600 * 1000 + 1)
        assert guard.sweep() == 1
        assert guard.is_captured(IP) is True

    def test_release_forgets_capture_and_strikes(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        for _ in range(3):
            guard.evaluate_submission(human_form(clock, website="spam"), IP)
        guard.release(IP)
        assert guard.is_captured(IP) is False
        assert guard.evaluate_submission(human_form(clock), IP).is_bot is False
        assert guard.stats()["total_strikes"] == 0


class TestDecoyFields:
    def test_challenge_lists_hidden_decoys(self, guard: HoneypotGuard, clock: FakeClock) -> None:
        challenge = guard.decoy_fields()
        assert {f.name for f in challenge.fields} == set(DECOY_NAMES)
        assert challenge.issued_at == clock()
        for decoy in challenge.fields:
            assert decoy.tabindex == "-1"
            assert decoy.autocomplete == "off"
            assert decoy.value == ""

    def test_challenges_are_independent_copies(self, guard: HoneypotGuard) -> None:
        first = guard.decoy_fields()
        first.fields[0].value = "tampered"
        assert guard.decoy_fields().fields[0].value == ""


def test_trust_score_floors_at_zero() -> None:
    violations = [Violation("KNOWN_BOT", Severity.CRITICAL, ""), Violation("DECOY_FILLED", Severity.HIGH, "")]
    assert trust_score(violations) == 0
    assert trust_score([Violation("X", Severity.LOW, "")]) == 90
