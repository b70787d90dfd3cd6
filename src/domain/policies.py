"""
Auto-accept policies  (Strategy Pattern)
========================================

The Bid Collector imposes no ranking; choosing a winner belongs to the
caller.  A rider either picks a bid explicitly or delegates to one of these
strategies.  Ties keep insertion order (first submitted wins).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from .entities import Bid


class BidSelectionPolicy(ABC):
    name: str = ""

    @abstractmethod
    def select(self, bids: Sequence[Bid]) -> Optional[Bid]: ...


class LowestOfferPolicy(BidSelectionPolicy):
    name = "lowest_offer"

    def select(self, bids: Sequence[Bid]) -> Optional[Bid]:
        best: Optional[Bid] = None
        for bid in bids:
            if best is None or bid.amount < best.amount:
                best = bid
        return best


class BestRatedPolicy(BidSelectionPolicy):
    """Highest driver rating; cheaper offer breaks rating ties."""

    name = "best_rated"

    def select(self, bids: Sequence[Bid]) -> Optional[Bid]:
        best: Optional[Bid] = None
        for bid in bids:
            if best is None:
                best = bid
            elif bid.driver_rating > best.driver_rating or (
                bid.driver_rating == best.driver_rating and bid.amount < best.amount
            ):
                best = bid
        return best


POLICIES: dict[str, BidSelectionPolicy] = {
    p.name: p for p in (LowestOfferPolicy(), BestRatedPolicy())
}
