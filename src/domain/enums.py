"""Domain enumerations and state-transition rules."""

import enum


class TripStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    BIDDING = "BIDDING"
    MATCHED = "MATCHED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TripEvent(str, enum.Enum):
    DISPATCH_OPENED = "DISPATCH_OPENED"
    BID_ACCEPTED = "BID_ACCEPTED"
    TRIP_STARTED = "TRIP_STARTED"
    TRIP_COMPLETED = "TRIP_COMPLETED"
    CANCEL = "CANCEL"


class TripMode(str, enum.Enum):
    PASSENGER = "PASSENGER"
    FREIGHT = "FREIGHT"


# State machine: event -> {current status -> next status}
TRIP_TRANSITIONS: dict[TripEvent, dict[TripStatus, TripStatus]] = {
    TripEvent.DISPATCH_OPENED: {TripStatus.REQUESTED: TripStatus.BIDDING},
    TripEvent.BID_ACCEPTED: {TripStatus.BIDDING: TripStatus.MATCHED},
    TripEvent.TRIP_STARTED: {TripStatus.MATCHED: TripStatus.IN_PROGRESS},
    TripEvent.TRIP_COMPLETED: {TripStatus.IN_PROGRESS: TripStatus.COMPLETED},
    TripEvent.CANCEL: {
        TripStatus.REQUESTED: TripStatus.CANCELLED,
        TripStatus.BIDDING: TripStatus.CANCELLED,
        TripStatus.MATCHED: TripStatus.CANCELLED,
    },
}

TERMINAL_STATUSES = frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED})

# Statuses in which a trip must carry an accepted bid reference
MATCHED_STATUSES = frozenset(
    {TripStatus.MATCHED, TripStatus.IN_PROGRESS, TripStatus.COMPLETED}
)
