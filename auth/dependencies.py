"""
auth/dependencies.py -- FastAPI Depends() helpers for the trust pipeline.

get_service()        -- the AuthService built in the api lifespan.
request_context()    -- builds the RequestContext the pipeline consumes from
                        the HTTP request plus the device metadata and
                        geolocation the client declared in the body.
bearer_token()       -- extracts "Authorization: Bearer <token>".
get_principal()      -- resolves the bearer token through
                        AuthService.authenticate; InvalidToken propagates and
                        the api exception handler turns it into HTTP 401.
require_admin_key()  -- X-Admin-Key check for the administrative routes.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from auth.models import DeviceInfo, GeoPoint, Principal, RequestContext
from auth.service import AuthService
from core.errors import InvalidToken


def get_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def request_context(
    request: Request,
    device: DeviceInfo | None = None,
    location: GeoPoint | None = None,
) -> RequestContext:
    """Collect the transport-level facts the pipeline needs for one request.

    Header names are looked up case-insensitively by Starlette. Missing
    headers become empty strings so the fingerprint stays deterministic.
    """
    headers = request.headers
    return RequestContext(
        ip=client_ip(request),
        user_agent=headers.get("user-agent", ""),
        accept_language=headers.get("accept-language", ""),
        accept_encoding=headers.get("accept-encoding", ""),
        accept=headers.get("accept", ""),
        do_not_track=headers.get("dnt", ""),
        device=device or DeviceInfo(),
        location=location,
    )


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer ") or not auth_header[7:].strip():
        raise InvalidToken(reason="missing bearer token")
    return auth_header[7:].strip()


async def get_principal(request: Request) -> Principal:
    """Require a live access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_principal)): ...
    """
    return await get_service(request).authenticate(bearer_token(request))


def require_admin_key(request: Request) -> None:
    """Require the X-Admin-Key header to match ADMIN_API_KEY.

    Administrative routes are disabled (404) when no key is configured, so an
    unset key never means "open". Comparison is constant-time.
    """
    expected = request.app.state.settings.admin_api_key
    if not expected:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Not found."},
        )
    supplied = request.headers.get("X-Admin-Key", "")
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
