"""Domain error taxonomy surfaced by the dispatch coordinator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .entities import Trip


class DispatchError(Exception):
    """Base class; ``code`` is the stable identifier exposed to clients."""

    code = "DISPATCH_ERROR"

    def __init__(self, message: str, trip: Optional["Trip"] = None):
        super().__init__(message)
        self.trip = trip


class InvalidTransition(DispatchError):
    """Event is not valid for the trip's current state; trip is unchanged."""

    code = "INVALID_TRANSITION"


class AlreadyMatched(DispatchError):
    """Lost a race against an accept that already produced a winner."""

    code = "ALREADY_MATCHED"


class NoCoverage(DispatchError):
    """No eligible drivers at dispatch time; trip stays REQUESTED."""

    code = "NO_COVERAGE"


class InvalidState(DispatchError):
    """Bid submitted to a trip that is not accepting bids."""

    code = "INVALID_STATE"


class TripNotFound(DispatchError):
    code = "TRIP_NOT_FOUND"


class BidNotFound(DispatchError):
    code = "BID_NOT_FOUND"


class RoutingUnavailable(DispatchError):
    code = "ROUTING_UNAVAILABLE"
