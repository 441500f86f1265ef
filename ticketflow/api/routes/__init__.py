"""Route modules exposed by the API package."""

from . import jobs, lifecycle, metrics, ping, tickets, timeline

__all__ = ["jobs", "lifecycle", "metrics", "ping", "tickets", "timeline"]
