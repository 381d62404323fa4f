"""
auth/models.py -- Domain dataclasses for the trust-decision pipeline.

Pattern: Data class (pure data container, no I/O). Stores persist these
shapes, the auth components compute them, and the API layer maps them to
Pydantic response models. Timestamps are timezone-aware UTC datetimes.

Layer rule: no imports from api/ or store/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ---------------------------------------------------------------------------
# Persistent entities (owned by the SessionStore)
# ---------------------------------------------------------------------------


@dataclass
class User:
    """An identity record. The password hash never leaves the service layer."""

    id: str
    email: str  # unique, compared case-sensitively as stored
    password_hash: str
    display_name: str
    created_at: datetime
    updated_at: datetime
    is_active: bool = True
    is_verified: bool = False


@dataclass
class Session:
    """One authenticated device binding.

    At most one active session per (user_id, fingerprint) is relevant for
    renewal matching; a user may hold several across different devices.
    """

    id: str
    user_id: str
    access_token: str
    refresh_token: str
    fingerprint: str
    ip: str
    user_agent: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    is_active: bool = True
    ended_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_usable(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now)


@dataclass
class RevokedToken:
    token: str
    revoked_at: datetime
    reason: str


@dataclass
class BlockedIP:
    """An IP refused before authentication. expires_at=None means permanent."""

    ip: str
    reason: str
    blocked_at: datetime
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


@dataclass
class AuditRecord:
    action: str
    ip: str
    timestamp: datetime
    user_id: str | None = None  # actor; None when the actor is unknown (failed login)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


# ---------------------------------------------------------------------------
# Inbound request context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lon: float


@dataclass
class DeviceInfo:
    """Browser/device metadata declared by the client in the request body."""

    screen_resolution: str = ""
    timezone: str = ""
    canvas: str = ""
    webgl: str = ""
    audio: str = ""
    fonts: list[str] = field(default_factory=list)
    plugins: list[str] = field(default_factory=list)
    cpu_class: str = ""
    hardware_concurrency: int = 0
    device_memory: float = 0
    color_depth: int = 0
    pixel_ratio: float = 0
    touch_support: bool = False
    cookies_enabled: bool = True


@dataclass
class RequestContext:
    """Everything the pipeline needs from the transport layer for one request."""

    ip: str
    user_agent: str = ""
    accept_language: str = ""
    accept_encoding: str = ""
    accept: str = ""
    do_not_track: str = ""
    device: DeviceInfo = field(default_factory=DeviceInfo)
    location: GeoPoint | None = None


# ---------------------------------------------------------------------------
# Component results
# ---------------------------------------------------------------------------


@dataclass
class PasswordComplexity:
    valid: bool
    score: int
    criteria: dict[str, bool]


@dataclass
class TokenClaims:
    user_id: str
    email: str
    fingerprint: str | None
    issued_at: datetime
    expires_at: datetime
    token_id: str


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class DeviceFingerprint:
    id: str
    components: dict[str, Any]
    confidence: int  # 0..100, advisory only


@dataclass
class FingerprintRisk:
    level: RiskLevel
    factors: list[str]
    score: int


@dataclass
class Violation:
    type: str
    severity: Severity
    description: str


@dataclass
class HoneypotVerdict:
    is_bot: bool
    violations: list[Violation]
    trust_score: int


@dataclass
class DecoyField:
    name: str
    type: str
    style: str
    value: str = ""
    autocomplete: str = "off"
    tabindex: str = "-1"


@dataclass
class HoneypotChallenge:
    fields: list[DecoyField]
    issued_at: int  # epoch milliseconds, echoed back as form_timestamp


@dataclass
class LoginAttempt:
    ip: str
    timestamp_ms: int
    fingerprint: str
    user_agent: str
    location: GeoPoint | None = None


@dataclass
class AnomalyReason:
    type: str
    description: str
    confidence: float


@dataclass
class AnomalyAnalysis:
    is_anomalous: bool
    score: float
    risk_level: RiskLevel
    reasons: list[AnomalyReason] = field(default_factory=list)


@dataclass
class LastLogin:
    timestamp_ms: int
    location: GeoPoint | None
    fingerprint: str


@dataclass
class BehavioralProfile:
    """Per-user login history. Only non-anomalous logins are folded in."""

    login_count: int = 0
    locations: list[GeoPoint] = field(default_factory=list)
    login_hours: list[int] = field(default_factory=list)
    devices: set[str] = field(default_factory=set)
    user_agents: set[str] = field(default_factory=set)
    last_login: LastLogin | None = None


# ---------------------------------------------------------------------------
# Orchestrator results
# ---------------------------------------------------------------------------


@dataclass
class UserProfile:
    """Public projection of a User (never carries the hash)."""

    id: str
    email: str
    display_name: str

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(id=user.id, email=user.email, display_name=user.display_name)


@dataclass
class LoginResult:
    user: UserProfile
    access_token: str
    refresh_token: str
    session_id: str
    risk_level: RiskLevel
    device_confidence: int
    anomaly_reasons: list[str] = field(default_factory=list)


@dataclass
class Principal:
    """Result of authenticating an access token."""

    user: User
    session: Session
    claims: TokenClaims


@dataclass
class SessionSummary:
    id: str
    ip: str
    user_agent: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    current: bool
