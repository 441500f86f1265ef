"""Read-side history reconstruction over the audit ledger."""

from .service import EntityTimeline, IncompleteTransaction, StatusDrift, TimelineService, UnsettledSettlement

__all__ = ["EntityTimeline", "IncompleteTransaction", "StatusDrift", "TimelineService", "UnsettledSettlement"]
