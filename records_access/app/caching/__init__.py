"""
Caching package for the access layer.

The cache lives in a table on the same rate-limited backend it protects,
so every cache call costs request budget. Entries are tombstoned rather
than deleted and compacted by an explicit cleanup sweep.
"""

from .cache_store import CacheStore
from .cache_switch import CacheSwitch, cache_switch
from .models import CacheOwner, CacheRecord, CacheRecordState
from .payload_codec import JsonPayloadCodec, PayloadCodec, PayloadCodecRegistry, UrlPayloadCodec

__all__ = [
    "CacheStore",
    "CacheSwitch",
    "cache_switch",
    "CacheOwner",
    "CacheRecord",
    "CacheRecordState",
    "JsonPayloadCodec",
    "PayloadCodec",
    "PayloadCodecRegistry",
    "UrlPayloadCodec",
]
