"""
tests/test_anomaly.py -- Unit tests for AnomalyScorer.

Timestamps are fixed UTC instants one day apart, so hour-of-day factors are
deterministic regardless of the machine's timezone.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from auth.anomaly import AnomalyScorer, haversine_km, risk_level_for
from auth.models import GeoPoint, LoginAttempt, RiskLevel

USER = "user-1"
LISBON = GeoPoint(lat=38.72, lon=-9.14)
PORTO = GeoPoint(lat=41.15, lon=-8.61)
TOKYO = GeoPoint(lat=35.68, lon=139.69)
BASE = datetime(2026, 1, 5, 15, 0, tzinfo=timezone.utc)


def at(day: int, hour: int = 15) -> int:
    moment = BASE + timedelta(days=day)
    return int(moment.replace(hour=hour).timestamp() * 1000)


def attempt(day: int, hour: int = 15, location: GeoPoint | None = LISBON, **overrides) -> LoginAttempt:
    values = {
        "ip": "203.0.113.10",
        "timestamp_ms": at(day, hour),
        "fingerprint": "fp-home",
        "user_agent": "Mozilla/5.0 Chrome",
        "location": location,
    }
    values.update(overrides)
    return LoginAttempt(**values)


@pytest.fixture
def scorer() -> AnomalyScorer:
    return AnomalyScorer()


async def seed(scorer: AnomalyScorer, count: int = 5) -> None:
    for day in range(count):
        await scorer.score_login_attempt(USER, attempt(day))


class TestInsufficientHistory:
    @pytest.mark.asyncio
    async def test_first_logins_score_flat_low(self, scorer: AnomalyScorer) -> None:
        for day in range(5):
            analysis = await scorer.score_login_attempt(USER, attempt(day, location=TOKYO if day else LISBON))
            assert analysis.score == pytest.approx(0.3)
            assert analysis.risk_level == RiskLevel.LOW
            assert analysis.is_anomalous is False

    @pytest.mark.asyncio
    async def test_first_login_reports_new_device(self, scorer: AnomalyScorer) -> None:
        analysis = await scorer.score_login_attempt(USER, attempt(0))
        assert [r.type for r in analysis.reasons] == ["NEW_DEVICE"]


class TestScoring:
    @pytest.mark.asyncio
    async def test_familiar_login_is_low(self, scorer: AnomalyScorer) -> None:
        await seed(scorer)
        analysis = await scorer.score_login_attempt(USER, attempt(5))
        assert analysis.score == pytest.approx(0.0)
        assert analysis.risk_level == RiskLevel.LOW
        assert analysis.reasons == []

    @pytest.mark.asyncio
    async def test_distant_location_saturates_deviation(self, scorer: AnomalyScorer) -> None:
        await seed(scorer)
        profile = scorer.profile_for(USER)
        assert scorer.location_deviation(profile, TOKYO) == 1.0
        assert scorer.location_deviation(profile, PORTO) < 1.0

    @pytest.mark.asyncio
    async def test_everything_unusual_is_critical_and_not_learned(self, scorer: AnomalyScorer) -> None:
        """Far away, 12 hours off, new device and new browser: (1 + 1 + 0.8 + 0.6) / 4."""
        await seed(scorer)
        analysis = await scorer.score_login_attempt(
            USER,
            attempt(5, hour=3, location=TOKYO, fingerprint="fp-attacker", user_agent="curl/8.4.0"),
        )
        assert analysis.score == pytest.approx(0.85)
        assert analysis.is_anomalous is True
        assert analysis.risk_level == RiskLevel.CRITICAL
        assert {"UNUSUAL_LOCATION", "UNUSUAL_HOUR", "NEW_DEVICE"} <= {r.type for r in analysis.reasons}

        profile = scorer.profile_for(USER)
        assert profile.login_count == 5, "anomalous attempts must not enter the baseline"
        assert "fp-attacker" not in profile.devices
        assert TOKYO not in profile.locations

    @pytest.mark.asyncio
    async def test_missing_location_contributes_zero(self, scorer: AnomalyScorer) -> None:
        await seed(scorer)
        analysis = await scorer.score_login_attempt(USER, attempt(5, location=None))
        assert analysis.score == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_profiles_are_per_user(self, scorer: AnomalyScorer) -> None:
        await seed(scorer)
        analysis = await scorer.score_login_attempt("someone-else", attempt(5))
        assert analysis.score == pytest.approx(0.3)


class TestImpossibleTravel:
    @pytest.mark.asyncio
    async def test_lisbon_to_tokyo_in_an_hour(self, scorer: AnomalyScorer) -> None:
        await scorer.score_login_attempt(USER, attempt(0, hour=15))
        analysis = await scorer.score_login_attempt(USER, attempt(0, hour=16, location=TOKYO))
        assert "IMPOSSIBLE_TRAVEL" in [r.type for r in analysis.reasons]

    @pytest.mark.asyncio
    async def test_lisbon_to_porto_in_a_day_is_fine(self, scorer: AnomalyScorer) -> None:
        await scorer.score_login_attempt(USER, attempt(0))
        analysis = await scorer.score_login_attempt(USER, attempt(1, location=PORTO))
        assert "IMPOSSIBLE_TRAVEL" not in [r.type for r in analysis.reasons]


class TestProfileMaintenance:
    @pytest.mark.asyncio
    async def test_histories_are_capped(self, scorer: AnomalyScorer) -> None:
        for day in range(15):
            await scorer.score_login_attempt(USER, attempt(day))
        profile = scorer.profile_for(USER)
        assert profile.login_count == 15
        assert len(profile.login_hours) == 10
        assert len(profile.locations) == 10

    @pytest.mark.asyncio
    async def test_last_login_tracks_latest_accepted_attempt(self, scorer: AnomalyScorer) -> None:
        await seed(scorer, count=2)
        last = scorer.profile_for(USER).last_login
        assert last is not None
        assert last.timestamp_ms == at(1)
        assert last.fingerprint == "fp-home"

    @pytest.mark.asyncio
    async def test_concurrent_logins_are_all_learned(self, scorer: AnomalyScorer) -> None:
        attempts = [attempt(day, fingerprint=f"fp-{day}") for day in range(20)]
        analyses = await asyncio.gather(*(scorer.score_login_attempt(USER, a) for a in attempts))
        assert not any(a.is_anomalous for a in analyses)
        profile = scorer.profile_for(USER)
        assert profile.login_count == 20
        assert len(profile.devices) == 20
        assert len(profile.login_hours) == 10


def test_haversine_lisbon_tokyo() -> None:
    assert 11_000 < haversine_km(LISBON, TOKYO) < 11_300
    assert haversine_km(LISBON, LISBON) == pytest.approx(0.0)


@pytest.mark.parametrize(
    "score,level",
    [
        (0.0, RiskLevel.LOW),
        (0.29, RiskLevel.LOW),
        (0.3, RiskLevel.MEDIUM),
        (0.6, RiskLevel.HIGH),
        (0.8, RiskLevel.CRITICAL),
    ],
)
def test_risk_level_buckets(score: float, level: RiskLevel) -> None:
    assert risk_level_for(score) == level
