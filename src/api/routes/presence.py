"""
Presence endpoints
==================

PUT    /api/v1/presence             -- driver heartbeat (latest write wins)
DELETE /api/v1/presence/{driver_id} -- driver goes offline
"""

from fastapi import APIRouter, Depends, Request, Response

from src.api.dependencies import get_coordinator
from src.api.middleware import limiter
from src.api.schemas import PresenceResponse, PresenceUpdateRequest
from src.services.coordinator import DispatchCoordinator

router = APIRouter(prefix="/presence", tags=["presence"])


@router.put("", response_model=PresenceResponse, summary="Report driver location")
@limiter.limit("600/minute")
async def update_presence(
    request: Request,
    body: PresenceUpdateRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    entry = await coordinator.record_presence(
        body.driver_id, body.to_location(), body.sector, body.available
    )
    return PresenceResponse(
        driver_id=entry.driver_id,
        sector=entry.sector,
        cell=entry.cell,
        available=entry.available,
    )


@router.delete("/{driver_id}", status_code=204, summary="Mark driver offline")
@limiter.limit("100/minute")
async def remove_presence(
    request: Request,
    driver_id: str,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    await coordinator.remove_presence(driver_id)
    return Response(status_code=204)
