"""
api/routes/v1/auth.py -- Registration, login and token lifecycle endpoints.

Routes:
  GET  /api/v1/auth/honeypot          -- decoy fields + issuance time for a new form
  POST /api/v1/auth/password-strength -- complexity report for client-side UX
  POST /api/v1/auth/register          -- create an account; 201
  POST /api/v1/auth/login             -- password login; returns token pair + risk summary
  POST /api/v1/auth/refresh           -- rotate the token pair (device-bound)
  POST /api/v1/auth/logout            -- end the session and revoke the access token
  GET  /api/v1/auth/me                -- current user and session (requires auth)

Security:
  [H2] POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT). This sits
       in front of the per-IP failed-attempt lockout inside AuthService.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Errors are raised as core.errors.ServiceError and rendered by the handler in
  api/main.py; these handlers never build error bodies themselves.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import (
    DecoyFieldResponse,
    HoneypotChallengeResponse,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    MeResponse,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    UserResponse,
)
from auth.dependencies import bearer_token, get_principal, get_service, request_context
from auth.models import Principal
from core.config import get_settings

# Auth policy:
# - GET  /api/v1/auth/honeypot:          public
# - POST /api/v1/auth/password-strength: public
# - POST /api/v1/auth/register:          public (honeypot-guarded)
# - POST /api/v1/auth/login:             public (rate-limited)
# - POST /api/v1/auth/refresh:           refresh token in body
# - POST /api/v1/auth/logout:            bearer access token
# - GET  /api/v1/auth/me:                bearer access token (get_principal)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/honeypot", response_model=HoneypotChallengeResponse)
async def honeypot_challenge(request: Request) -> HoneypotChallengeResponse:
    """Issue decoy fields for a registration form.

    The client renders every decoy invisibly and echoes issued_at back as
    form_timestamp on submission.
    """
    challenge = get_service(request).honeypot_challenge()
    return HoneypotChallengeResponse(
        decoys=[DecoyFieldResponse(**vars(f)) for f in challenge.fields],
        issued_at=challenge.issued_at,
    )


@router.post("/auth/password-strength", response_model=PasswordStrengthResponse)
async def password_strength(request: Request, body: PasswordStrengthRequest) -> PasswordStrengthResponse:
    report = get_service(request).check_password_strength(body.password)
    return PasswordStrengthResponse(valid=report.valid, score=report.score, criteria=report.criteria)


@router.post("/auth/register", response_model=UserResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an account.

    Rejections: 403 bot_detected, 409 duplicate_user, 422 weak_password
    (with per-criterion results), 400 invalid_input.
    """
    context = request_context(request, device=body.device.to_domain())
    profile = await get_service(request).register(
        body.email,
        body.password,
        body.display_name,
        context,
        form=body.honeypot_form(),
    )
    return UserResponse(id=profile.id, email=profile.email, display_name=profile.display_name)


@limiter.limit(_login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 invalid_credentials
    response after the same minimum handling time.
    """
    context = request_context(
        request,
        device=body.device.to_domain(),
        location=body.location.to_domain() if body.location else None,
    )
    result = await get_service(request).login(body.email, body.password, context)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return LoginResponse(
        user=UserResponse(id=result.user.id, email=result.user.email, display_name=result.user.display_name),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        session_id=result.session_id,
        risk_level=result.risk_level,
        device_confidence=result.device_confidence,
        anomaly_reasons=result.anomaly_reasons,
    )


@router.post("/auth/refresh", response_model=TokenPairResponse)
async def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
    """Rotate both tokens. Any failure is reported as 401 invalid_refresh_token."""
    context = request_context(request, device=body.device.to_domain())
    pair = await get_service(request).renew(body.refresh_token, context)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenPairResponse(access_token=pair.access_token, refresh_token=pair.refresh_token)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=LogoutResponse)
async def logout(request: Request) -> LogoutResponse:
    """End the current session. Repeating the call with the same token succeeds."""
    success = await get_service(request).logout(bearer_token(request), request_context(request))
    return LogoutResponse(success=success)


@router.get("/auth/me", response_model=MeResponse)
async def me(principal: Principal = Depends(get_principal)) -> MeResponse:
    """Return identity and session information for the bearer token."""
    user = principal.user
    return MeResponse(
        user=UserResponse(id=user.id, email=user.email, display_name=user.display_name),
        session_id=principal.session.id,
        session_expires_at=principal.session.expires_at,
    )
