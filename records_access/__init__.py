"""
Records Access Layer.

Rate-limited, retrying, cache-aware access to a record-oriented REST backend.
"""

__version__ = "1.0.0"
