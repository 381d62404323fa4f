"""
api/routes/v1/admin.py -- Operator endpoints for IP blocking and bot release.

Routes (all require X-Admin-Key):
  POST   /api/v1/admin/blocked-ips          -- block an IP (optional duration)
  DELETE /api/v1/admin/blocked-ips/{ip}     -- lift a block; 404 if none
  DELETE /api/v1/admin/captured-ips/{ip}    -- release an IP from the honeypot set
  GET    /api/v1/admin/honeypot/stats       -- captured/suspicious/strike counts

The router is disabled (404) unless ADMIN_API_KEY is configured.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import BlockedIPResponse, BlockIPRequest, HoneypotStatsResponse
from auth.dependencies import get_service, request_context, require_admin_key

router = APIRouter(dependencies=[Depends(require_admin_key)])


@router.post("/admin/blocked-ips", response_model=BlockedIPResponse, status_code=201)
async def block_ip(request: Request, body: BlockIPRequest) -> BlockedIPResponse:
    entry = await get_service(request).block_ip(
        body.ip,
        body.reason,
        request_context(request),
        duration_seconds=body.duration_seconds,
    )
    return BlockedIPResponse(**vars(entry))


@router.delete("/admin/blocked-ips/{ip}", status_code=204)
async def unblock_ip(request: Request, ip: str) -> Response:
    if not await get_service(request).unblock_ip(ip, request_context(request)):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "IP is not blocked."},
        )
    return Response(status_code=204)


@router.delete("/admin/captured-ips/{ip}", status_code=204)
async def release_captured_ip(request: Request, ip: str) -> Response:
    await get_service(request).release_bot_ip(ip, request_context(request))
    return Response(status_code=204)


@router.get("/admin/honeypot/stats", response_model=HoneypotStatsResponse)
async def honeypot_stats(request: Request) -> HoneypotStatsResponse:
    return HoneypotStatsResponse(**get_service(request).honeypot_stats())
