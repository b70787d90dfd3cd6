"""
Trip endpoints
==============

POST /api/v1/trips                      -- request a trip and open bidding
GET  /api/v1/trips/{trip_id}            -- current status and accepted bid
POST /api/v1/trips/{trip_id}/dispatch   -- retry dispatch after NO_COVERAGE
POST /api/v1/trips/{trip_id}/bids       -- driver submits an offer
GET  /api/v1/trips/{trip_id}/bids       -- offers in arrival order
POST /api/v1/trips/{trip_id}/accept     -- rider picks a bid
POST /api/v1/trips/{trip_id}/auto-accept -- pick a bid by policy
POST /api/v1/trips/{trip_id}/cancel     -- rider cancels
POST /api/v1/trips/{trip_id}/start      -- driver starts the trip
POST /api/v1/trips/{trip_id}/complete   -- driver completes the trip
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from src.api.dependencies import get_coordinator
from src.api.middleware import limiter
from src.api.schemas import (
    AcceptRequest,
    AutoAcceptRequest,
    BidCreateRequest,
    BidResponse,
    CancelRequest,
    ErrorResponse,
    TripCreateRequest,
    TripResponse,
)
from src.domain.entities import Bid, TripDetails
from src.domain.policies import POLICIES
from src.services.coordinator import DispatchCoordinator

router = APIRouter(prefix="/trips", tags=["trips"])

_CONFLICT = {409: {"model": ErrorResponse}}
_NOT_FOUND = {404: {"model": ErrorResponse}}


@router.post(
    "",
    status_code=201,
    response_model=TripResponse,
    summary="Request a trip",
    responses={
        409: {
            "model": ErrorResponse,
            "description": "No eligible drivers; the trip stays REQUESTED.",
        },
        503: {"model": ErrorResponse, "description": "Routing unavailable."},
    },
)
@limiter.limit("100/minute")
async def create_trip(
    request: Request,
    body: TripCreateRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    details = TripDetails(
        pickup=body.pickup.to_waypoint(),
        dropoff=body.dropoff.to_waypoint(),
        mode=body.mode,
        category=body.category,
        sector=body.sector,
        proposed_price=body.proposed_price,
        distance_km=body.distance_km,
        duration_min=body.duration_min,
        idempotency_key=body.idempotency_key,
    )
    trip = await coordinator.request_trip(body.rider_id, details)
    return TripResponse.from_trip(trip)


@router.get(
    "/{trip_id}",
    response_model=TripResponse,
    summary="Get trip status",
    responses=_NOT_FOUND,
)
@limiter.limit("100/minute")
async def get_trip(
    request: Request,
    trip_id: str,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    return TripResponse.from_trip(await coordinator.get_trip(trip_id))


@router.post(
    "/{trip_id}/dispatch",
    response_model=TripResponse,
    summary="Retry dispatch for a REQUESTED trip",
    responses={**_CONFLICT, **_NOT_FOUND},
)
@limiter.limit("100/minute")
async def dispatch_trip(
    request: Request,
    trip_id: str,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    return TripResponse.from_trip(await coordinator.dispatch(trip_id))


@router.post(
    "/{trip_id}/bids",
    status_code=201,
    response_model=BidResponse,
    summary="Submit a driver bid",
    responses={**_CONFLICT, **_NOT_FOUND},
)
@limiter.limit("100/minute")
async def submit_bid(
    request: Request,
    trip_id: str,
    body: BidCreateRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    bid = Bid(
        id=body.bid_id or str(uuid.uuid4()),
        trip_id=trip_id,
        driver_id=body.driver_id,
        driver_name=body.driver_name,
        driver_rating=body.driver_rating,
        amount=body.amount,
    )
    return BidResponse.from_bid(await coordinator.submit_bid(trip_id, bid))


@router.get(
    "/{trip_id}/bids",
    response_model=list[BidResponse],
    summary="List bids in arrival order",
    responses=_NOT_FOUND,
)
@limiter.limit("100/minute")
async def list_bids(
    request: Request,
    trip_id: str,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    return [BidResponse.from_bid(b) for b in await coordinator.list_bids(trip_id)]


@router.post(
    "/{trip_id}/accept",
    response_model=TripResponse,
    summary="Accept a bid",
    description=(
        "Transitions BIDDING to MATCHED.  Only the first accept wins; "
        "later ones get ALREADY_MATCHED."
    ),
    responses={**_CONFLICT, **_NOT_FOUND},
)
@limiter.limit("100/minute")
async def accept_bid(
    request: Request,
    trip_id: str,
    body: AcceptRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    return TripResponse.from_trip(await coordinator.accept_bid(trip_id, body.bid_id))


@router.post(
    "/{trip_id}/auto-accept",
    response_model=TripResponse,
    summary="Accept the bid chosen by a policy",
    responses={**_CONFLICT, **_NOT_FOUND},
)
@limiter.limit("100/minute")
async def auto_accept(
    request: Request,
    trip_id: str,
    body: AutoAcceptRequest,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    policy = POLICIES.get(body.policy)
    if policy is None:
        raise HTTPException(
            status_code=422,
            detail=f"Unknown policy {body.policy!r}; choose from {sorted(POLICIES)}",
        )
    return TripResponse.from_trip(await coordinator.auto_accept(trip_id, policy))


@router.post(
    "/{trip_id}/cancel",
    response_model=TripResponse,
    summary="Cancel a trip",
    description=(
        "Allowed from REQUESTED, BIDDING or MATCHED.  Cancelling an already "
        "cancelled trip returns it unchanged."
    ),
    responses={**_CONFLICT, **_NOT_FOUND},
)
@limiter.limit("100/minute")
async def cancel_trip(
    request: Request,
    trip_id: str,
    body: Optional[CancelRequest] = None,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    expected = body.expected_status if body else None
    return TripResponse.from_trip(await coordinator.cancel(trip_id, expected))


@router.post(
    "/{trip_id}/start",
    response_model=TripResponse,
    summary="Driver starts the trip",
    responses={**_CONFLICT, **_NOT_FOUND},
)
@limiter.limit("100/minute")
async def start_trip(
    request: Request,
    trip_id: str,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    return TripResponse.from_trip(await coordinator.start_trip(trip_id))


@router.post(
    "/{trip_id}/complete",
    response_model=TripResponse,
    summary="Driver completes the trip",
    responses={**_CONFLICT, **_NOT_FOUND},
)
@limiter.limit("100/minute")
async def complete_trip(
    request: Request,
    trip_id: str,
    coordinator: DispatchCoordinator = Depends(get_coordinator),
):
    return TripResponse.from_trip(await coordinator.complete_trip(trip_id))
