"""Periodic lifecycle jobs."""

from .scheduler import BatchResult, LifecycleScheduler

__all__ = ["BatchResult", "LifecycleScheduler"]
