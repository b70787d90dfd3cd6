"""
Admin / observability endpoints
===============================

GET /api/v1/admin/stats  -- online drivers, open bid books, held locks
GET /api/v1/admin/health -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_coordinator
from src.api.middleware import limiter
from src.api.schemas import HealthResponse, StatsResponse
from src.services.coordinator import DispatchCoordinator

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Coordinator counters for this instance",
)
@limiter.limit("100/minute")
async def get_stats(
    request: Request,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    return StatsResponse(**coordinator.stats())


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
