"""
API request and response models for the trustgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from auth.models import DeviceInfo, GeoPoint, RiskLevel
from auth.passwords import MAX_PASSWORD_BYTES

MAX_PASSWORD_LENGTH = 64
MAX_EMAIL_LENGTH = 320


def _fits_bcrypt(value: str) -> str:
    # Character count alone does not bound the encoded size.
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return value


Password = Annotated[str, AfterValidator(_fits_bcrypt)]


# ---------------------------------------------------------------------------
# Shared request fragments
# ---------------------------------------------------------------------------


class DeviceInfoIn(BaseModel):
    """Browser/device metadata collected client-side and declared in the body.

    Every field is optional. Missing values simply lower the fingerprint
    confidence; they never fail validation.
    """

    screen_resolution: str = Field(default="", max_length=32)
    timezone: str = Field(default="", max_length=64)
    canvas: str = Field(default="", max_length=256)
    webgl: str = Field(default="", max_length=256)
    audio: str = Field(default="", max_length=256)
    fonts: list[str] = Field(default_factory=list, max_length=200)
    plugins: list[str] = Field(default_factory=list, max_length=100)
    cpu_class: str = Field(default="", max_length=32)
    hardware_concurrency: int = Field(default=0, ge=0, le=1024)
    device_memory: float = Field(default=0, ge=0, le=4096)
    color_depth: int = Field(default=0, ge=0, le=64)
    pixel_ratio: float = Field(default=0, ge=0, le=16)
    touch_support: bool = False
    cookies_enabled: bool = True

    def to_domain(self) -> DeviceInfo:
        return DeviceInfo(**self.model_dump())


class LocationIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)

    def to_domain(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lon=self.lon)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    confirm_email, website and phone_number are the honeypot decoys rendered
    invisibly by GET /auth/honeypot; humans submit them empty. form_timestamp
    echoes the challenge's issued_at (epoch milliseconds). Fields a client
    leaves out are left out of the honeypot evaluation too.
    """

    email: str = Field(min_length=3, max_length=MAX_EMAIL_LENGTH)
    password: Password = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)
    display_name: str = Field(min_length=1, max_length=255)
    form_timestamp: Optional[int] = None
    confirm_email: Optional[str] = Field(default=None, max_length=2048)
    website: Optional[str] = Field(default=None, max_length=2048)
    phone_number: Optional[str] = Field(default=None, max_length=2048)
    device: DeviceInfoIn = Field(default_factory=DeviceInfoIn)

    def honeypot_form(self) -> dict:
        """The honeypot keys exactly as submitted."""
        return self.model_dump(
            include={"confirm_email", "website", "phone_number", "form_timestamp"},
            exclude_unset=True,
        )


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=MAX_EMAIL_LENGTH)
    password: Password = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)
    device: DeviceInfoIn = Field(default_factory=DeviceInfoIn)
    location: Optional[LocationIn] = None


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh.

    The device block must match the one declared at login: refresh tokens are
    bound to the device fingerprint.
    """

    refresh_token: str = Field(min_length=1, max_length=4096)
    device: DeviceInfoIn = Field(default_factory=DeviceInfoIn)


class PasswordStrengthRequest(BaseModel):
    password: Password = Field(max_length=MAX_PASSWORD_LENGTH)


class ProfileUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/me. Omitted fields are unchanged."""

    display_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, min_length=3, max_length=MAX_EMAIL_LENGTH)


class PasswordChangeRequest(BaseModel):
    current_password: Password = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)
    new_password: Password = Field(min_length=1, max_length=MAX_PASSWORD_LENGTH)


class BlockIPRequest(BaseModel):
    """Request body for POST /api/v1/admin/blocked-ips. No duration = permanent."""

    ip: str = Field(min_length=1, max_length=64)
    reason: str = Field(min_length=1, max_length=500)
    duration_seconds: Optional[int] = Field(default=None, gt=0)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public user projection. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    display_name: str


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    session_id: str
    risk_level: RiskLevel
    device_confidence: int
    anomaly_reasons: list[str] = Field(default_factory=list)


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class LogoutResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool


class PasswordStrengthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    score: int
    criteria: dict[str, bool]


class DecoyFieldResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    style: str
    value: str
    autocomplete: str
    tabindex: str


class HoneypotChallengeResponse(BaseModel):
    """Response for GET /api/v1/auth/honeypot.

    Render every field invisibly and submit issued_at back as form_timestamp.
    """

    model_config = ConfigDict(frozen=True)

    decoys: list[DecoyFieldResponse]
    issued_at: int


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse
    session_id: str
    session_expires_at: datetime


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    ip: str
    user_agent: str
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    current: bool


class ActivityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str]
    action: str
    ip: str
    timestamp: datetime
    metadata: dict


class PasswordChangeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    sessions_terminated: int


class BlockedIPResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip: str
    reason: str
    blocked_at: datetime
    expires_at: Optional[datetime] = None


class HoneypotStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    captured_ips: int
    suspicious_ips: int
    total_strikes: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    criteria: Optional[dict[str, bool]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
