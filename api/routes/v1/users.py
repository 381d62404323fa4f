"""
api/routes/v1/users.py -- Self-service account endpoints.

Routes (all require a bearer access token):
  GET    /api/v1/users/me                      -- profile
  PATCH  /api/v1/users/me                      -- update display name / email
  POST   /api/v1/users/me/password             -- change password; ends every session
  GET    /api/v1/users/me/sessions             -- live sessions, current one flagged
  DELETE /api/v1/users/me/sessions/{id}        -- terminate one session; 204
  GET    /api/v1/users/me/activity             -- own audit trail, newest first

IDOR guard: every handler acts on principal.user.id only. terminate_session()
verifies ownership in the service and reports a foreign id as 404-equivalent
invalid_session, never revealing that the session exists.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    ActivityResponse,
    PasswordChangeRequest,
    PasswordChangeResponse,
    ProfileUpdate,
    SessionResponse,
    UserResponse,
)
from auth.dependencies import get_principal, get_service, request_context
from auth.models import Principal, UserProfile

router = APIRouter()


def _to_response(profile: UserProfile) -> UserResponse:
    return UserResponse(id=profile.id, email=profile.email, display_name=profile.display_name)


@router.get("/users/me", response_model=UserResponse)
async def get_profile(request: Request, principal: Principal = Depends(get_principal)) -> UserResponse:
    return _to_response(await get_service(request).get_profile(principal.user.id))


@router.patch("/users/me", response_model=UserResponse)
async def update_profile(
    request: Request,
    body: ProfileUpdate,
    principal: Principal = Depends(get_principal),
) -> UserResponse:
    profile = await get_service(request).update_profile(
        principal.user.id,
        request_context(request),
        display_name=body.display_name,
        email=body.email,
    )
    return _to_response(profile)


@router.post("/users/me/password", response_model=PasswordChangeResponse)
async def change_password(
    request: Request,
    body: PasswordChangeRequest,
    principal: Principal = Depends(get_principal),
) -> PasswordChangeResponse:
    """Change the password. Every session, including the caller's, is terminated."""
    terminated = await get_service(request).change_password(
        principal.user.id,
        body.current_password,
        body.new_password,
        request_context(request),
    )
    return PasswordChangeResponse(sessions_terminated=terminated)


@router.get("/users/me/sessions", response_model=list[SessionResponse])
async def list_sessions(request: Request, principal: Principal = Depends(get_principal)) -> list[SessionResponse]:
    sessions = await get_service(request).list_sessions(principal.user.id, current_session_id=principal.session.id)
    return [SessionResponse(**vars(s)) for s in sessions]


@router.delete("/users/me/sessions/{session_id}", status_code=204)
async def terminate_session(
    request: Request,
    session_id: str,
    principal: Principal = Depends(get_principal),
) -> Response:
    await get_service(request).terminate_session(principal.user.id, session_id, request_context(request))
    return Response(status_code=204)


@router.get("/users/me/activity", response_model=list[ActivityResponse])
async def list_activity(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_principal),
) -> list[ActivityResponse]:
    records = await get_service(request).list_activity(principal.user.id, limit=limit, offset=offset)
    return [
        ActivityResponse(id=r.id, action=r.action, ip=r.ip, timestamp=r.timestamp, metadata=r.metadata)
        for r in records
    ]
