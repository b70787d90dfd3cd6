"""
Bid Collector
=============

Per-trip, time-bounded aggregation of competing driver offers.

* ``open`` starts a book for a trip; ``close`` stops further submissions
  (idempotent).  Closed books still answer reads until ``discard``.
* Submissions are **idempotent per bid id**: a redelivered bid from the
  same driver is ignored and the first copy wins.  The transport is
  at-least-once, so duplicates are expected.
* Bids are kept in insertion order.  No ranking is applied here; picking
  a winner is the caller's job (see ``src.domain.policies``).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from .entities import Bid
from .errors import InvalidState


@dataclass
class _BidBook:
    opened_at: float
    deadline: Optional[float]
    is_open: bool = True
    bids: dict[str, Bid] = field(default_factory=dict)


class BidCollector:
    def __init__(
        self,
        window_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        self._books: dict[str, _BidBook] = {}

    def open(self, trip_id: str) -> None:
        """Start accepting bids for *trip_id*.  Re-opening keeps prior bids."""
        now = self._clock()
        deadline = now + self.window_seconds if self.window_seconds > 0 else None
        book = self._books.get(trip_id)
        if book is None:
            self._books[trip_id] = _BidBook(opened_at=now, deadline=deadline)
        else:
            book.is_open = True
            book.opened_at = now
            book.deadline = deadline

    def restore(self, trip_id: str, bids: Iterable[Bid], elapsed: float = 0.0) -> None:
        """Rebuild a book after a restart, replaying persisted bids in order.

        *elapsed* is how long the trip has been BIDDING.  The window keeps
        counting from the original open, so a book whose window ran out
        comes back closed and only answers reads.
        """
        self.open(trip_id)
        book = self._books[trip_id]
        if book.deadline is not None:
            book.opened_at -= elapsed
            book.deadline -= elapsed
            if self._clock() > book.deadline:
                book.is_open = False
        for bid in bids:
            self.keep(trip_id, bid)

    def keep(self, trip_id: str, bid: Bid) -> None:
        """Record an already persisted bid, ignoring the window."""
        book = self._books.get(trip_id)
        if book is not None:
            book.bids.setdefault(bid.id, bid)

    def submit(self, trip_id: str, bid: Bid) -> bool:
        """Add *bid*.  Returns False when it is a duplicate delivery."""
        book = self._books.get(trip_id)
        if book is None or not self.is_open(trip_id):
            raise InvalidState(f"Trip {trip_id} is not accepting bids")
        existing = book.bids.get(bid.id)
        if existing is not None:
            if existing.driver_id != bid.driver_id:
                raise InvalidState(
                    f"Bid id {bid.id} already belongs to another driver"
                )
            return False
        book.bids[bid.id] = bid
        return True

    def close(self, trip_id: str) -> None:
        book = self._books.get(trip_id)
        if book is not None:
            book.is_open = False

    def withdraw(self, trip_id: str, bid_id: str) -> None:
        book = self._books.get(trip_id)
        if book is not None:
            book.bids.pop(bid_id, None)

    def discard(self, trip_id: str) -> None:
        self._books.pop(trip_id, None)

    def is_open(self, trip_id: str) -> bool:
        book = self._books.get(trip_id)
        if book is None or not book.is_open:
            return False
        return book.deadline is None or self._clock() <= book.deadline

    def knows(self, trip_id: str) -> bool:
        return trip_id in self._books

    def get(self, trip_id: str, bid_id: str) -> Optional[Bid]:
        book = self._books.get(trip_id)
        return book.bids.get(bid_id) if book else None

    def bids(self, trip_id: str) -> list[Bid]:
        book = self._books.get(trip_id)
        return list(book.bids.values()) if book else []

    def open_trip_ids(self) -> list[str]:
        return [t for t in self._books if self.is_open(t)]
