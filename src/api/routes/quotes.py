"""
Quote and intent endpoints
==========================

POST /api/v1/quotes  -- route distance, duration and suggested fare
POST /api/v1/intents -- free-text trip description -> structured fields
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_coordinator
from src.api.middleware import limiter
from src.api.schemas import (
    ErrorResponse,
    IntentRequest,
    IntentResponse,
    QuoteRequest,
    QuoteResponse,
)
from src.domain.entities import TripIntent
from src.services.coordinator import DispatchCoordinator

router = APIRouter(tags=["quotes"])


@router.post(
    "/quotes",
    response_model=QuoteResponse,
    summary="Quote a route",
    responses={503: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def quote(
    request: Request,
    body: QuoteRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    result = await coordinator.quote(body.pickup.to_location(), body.dropoff.to_location())
    return QuoteResponse.from_quote(result)


@router.post(
    "/intents",
    response_model=IntentResponse,
    summary="Refine a trip draft from free text",
    description="Best effort: fields the assistant cannot fill keep their draft values.",
)
@limiter.limit("20/minute")
async def parse_intent(
    request: Request,
    body: IntentRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    draft = TripIntent(
        pickup_label=body.pickup_label,
        dropoff_label=body.dropoff_label,
        category=body.category,
        mode=body.mode,
    )
    near = body.near.to_location() if body.near else None
    refined = await coordinator.refine_request(draft, body.text, near)
    return IntentResponse(
        pickup_label=refined.pickup_label,
        dropoff_label=refined.dropoff_label,
        category=refined.category,
        mode=refined.mode,
    )
