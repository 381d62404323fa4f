"""
auth/anomaly.py -- Behavioral scoring of login attempts.

Each user gets an in-memory BehavioralProfile built from their previous
non-anomalous logins: recent locations, login hours, seen devices and
user-agents, and a last-login snapshot.

Scoring:
  fewer than min_logins scored logins -> flat 0.3, reported LOW (new accounts
      have no history to deviate from).
  otherwise the score is the mean of the applicable factors:
      location deviation  mean haversine distance to history / distance_km, cap 1.0
      hour deviation      |hour - mean historical hour| / hour_window, cap 1.0
      new device          0.8 when the fingerprint was never seen
      new user-agent      0.6 when the user-agent was never seen
  is_anomalous = score > threshold; risk buckets <0.3 LOW, <0.6 MEDIUM,
  <0.8 HIGH, else CRITICAL.

Reasons are attached independently of the composite score, with fixed per-rule
thresholds (location/hour factor > 0.7, unseen device, implied speed from the
last login above max_speed_kmh).

The profile is updated only on the non-anomalous path so an attacker's
anomalous attempt never becomes part of the baseline. Scoring and the
update run under a per-user lock; different users never contend.

Hours are taken in UTC. Location and hour histories are both capped at
history_size entries (oldest evicted first).

Layer rule: no imports from api/ or store/.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone

from auth.locks import KeyedLock
from auth.models import (
    AnomalyAnalysis,
    AnomalyReason,
    BehavioralProfile,
    GeoPoint,
    LastLogin,
    LoginAttempt,
    RiskLevel,
)

logger = logging.getLogger("trustgate.auth.anomaly")

EARTH_RADIUS_KM = 6371.0
INSUFFICIENT_HISTORY_SCORE = 0.3
NEW_DEVICE_WEIGHT = 0.8
NEW_USER_AGENT_WEIGHT = 0.6
REASON_THRESHOLD = 0.7


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(b.lat - a.lat)
    d_lon = math.radians(b.lon - a.lon)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def risk_level_for(score: float) -> RiskLevel:
    if score < 0.3:
        return RiskLevel.LOW
    if score < 0.6:
        return RiskLevel.MEDIUM
    if score < 0.8:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def hour_of(timestamp_ms: int) -> int:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).hour


class AnomalyScorer:
    def __init__(
        self,
        threshold: float = 0.7,
        min_logins: int = 5,
        distance_km: float = 500.0,
        max_speed_kmh: float = 1000.0,
        hour_window: float = 6.0,
        history_size: int = 10,
    ) -> None:
        self.threshold = threshold
        self.min_logins = min_logins
        self.distance_km = distance_km
        self.max_speed_kmh = max_speed_kmh
        self.hour_window = hour_window
        self.history_size = history_size
        self._profiles: dict[str, BehavioralProfile] = {}
        self._locks = KeyedLock()

    def profile_for(self, user_id: str) -> BehavioralProfile:
        """Return the stored profile, or a fresh empty one (not stored)."""
        return self._profiles.get(user_id) or BehavioralProfile()

    async def score_login_attempt(self, user_id: str, attempt: LoginAttempt) -> AnomalyAnalysis:
        async with self._locks(user_id):
            profile = self.profile_for(user_id)
            analysis = self._analyze(profile, attempt)
            if not analysis.is_anomalous:
                self._update_profile(user_id, profile, attempt)
            else:
                logger.info(
                    "Anomalous login for user %s (score=%.2f, reasons=%s)",
                    user_id,
                    analysis.score,
                    [r.type for r in analysis.reasons],
                )
            return analysis

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _analyze(self, profile: BehavioralProfile, attempt: LoginAttempt) -> AnomalyAnalysis:
        if profile.login_count < self.min_logins:
            score = INSUFFICIENT_HISTORY_SCORE
            risk_level = RiskLevel.LOW
        else:
            score = self._composite_score(profile, attempt)
            risk_level = risk_level_for(score)

        reasons: list[AnomalyReason] = []
        if self.location_deviation(profile, attempt.location) > REASON_THRESHOLD:
            reasons.append(AnomalyReason("UNUSUAL_LOCATION", "Login from an unusual location", 0.85))
        if self.hour_deviation(profile, attempt.timestamp_ms) > REASON_THRESHOLD:
            reasons.append(AnomalyReason("UNUSUAL_HOUR", "Login at an atypical hour", 0.75))
        if attempt.fingerprint not in profile.devices:
            reasons.append(AnomalyReason("NEW_DEVICE", "Device not recognized", 0.90))
        if self.impossible_travel(profile, attempt):
            reasons.append(AnomalyReason("IMPOSSIBLE_TRAVEL", "Geographically impossible travel", 0.95))

        return AnomalyAnalysis(
            is_anomalous=score > self.threshold,
            score=score,
            risk_level=risk_level,
            reasons=reasons,
        )

    def _composite_score(self, profile: BehavioralProfile, attempt: LoginAttempt) -> float:
        factors = [
            self.location_deviation(profile, attempt.location),
            self.hour_deviation(profile, attempt.timestamp_ms),
        ]
        if attempt.fingerprint not in profile.devices:
            factors.append(NEW_DEVICE_WEIGHT)
        if attempt.user_agent not in profile.user_agents:
            factors.append(NEW_USER_AGENT_WEIGHT)
        return sum(factors) / len(factors)

    def location_deviation(self, profile: BehavioralProfile, location: GeoPoint | None) -> float:
        if location is None or not profile.locations:
            return 0.0
        mean_km = sum(haversine_km(past, location) for past in profile.locations) / len(profile.locations)
        return min(mean_km / self.distance_km, 1.0)

    def hour_deviation(self, profile: BehavioralProfile, timestamp_ms: int) -> float:
        if not profile.login_hours:
            return 0.0
        mean_hour = sum(profile.login_hours) / len(profile.login_hours)
        return min(abs(hour_of(timestamp_ms) - mean_hour) / self.hour_window, 1.0)

    def impossible_travel(self, profile: BehavioralProfile, attempt: LoginAttempt) -> bool:
        last = profile.last_login
        if last is None or last.location is None or attempt.location is None:
            return False
        distance = haversine_km(last.location, attempt.location)
        elapsed_hours = (attempt.timestamp_ms - last.timestamp_ms) / 1000 / 3600
        if elapsed_hours <= 0:
            return distance > 0
        return distance / elapsed_hours > self.max_speed_kmh

    # ------------------------------------------------------------------
    # Profile maintenance
    # ------------------------------------------------------------------

    def _update_profile(self, user_id: str, profile: BehavioralProfile, attempt: LoginAttempt) -> None:
        profile.login_count += 1
        profile.last_login = LastLogin(
            timestamp_ms=attempt.timestamp_ms,
            location=attempt.location,
            fingerprint=attempt.fingerprint,
        )
        if attempt.location is not None:
            profile.locations.append(attempt.location)
            del profile.locations[: -self.history_size]
        profile.login_hours.append(hour_of(attempt.timestamp_ms))
        del profile.login_hours[: -self.history_size]
        profile.devices.add(attempt.fingerprint)
        profile.user_agents.add(attempt.user_agent)
        self._profiles[user_id] = profile
