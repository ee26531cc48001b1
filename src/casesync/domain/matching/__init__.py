"""Entity matching: link violation records to external tickets."""

from __future__ import annotations

from .contracts import (
    MatchLogEntry,
    MatchResult,
    ReviewQueueItem,
    ReviewReason,
    ReviewStats,
    ReviewStatus,
)
from .matcher import MatcherSettings, TicketMatcher
from .review import ReviewItemNotFoundError, pending_reviews, resolve_review_item, review_stats

__all__ = [
    "MatchLogEntry",
    "MatchResult",
    "MatcherSettings",
    "ReviewItemNotFoundError",
    "ReviewQueueItem",
    "ReviewReason",
    "ReviewStats",
    "ReviewStatus",
    "TicketMatcher",
    "pending_reviews",
    "resolve_review_item",
    "review_stats",
]
