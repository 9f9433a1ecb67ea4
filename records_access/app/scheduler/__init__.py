"""
Request scheduling package.

Holds the quota-aware request scheduler that every call to the records
backend goes through, including the cache's own traffic.
"""

from .request_scheduler import Lane, QueuedOperation, RateWindow, RequestScheduler

__all__ = ["Lane", "QueuedOperation", "RateWindow", "RequestScheduler"]
