"""
Cache record model and its mapping onto the cache table's fields.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from shared.config import CacheFieldMap


TRUE_VALUES = {"yes", "true", "1"}


class CacheRecordState(str, Enum):
    """Lifecycle of a cache record before physical deletion."""
    VALID = "valid"
    TOMBSTONED = "tombstoned"


@dataclass
class CacheOwner:
    """Who wrote an entry; stored for auditing only."""
    identity: str = "unknown"
    organisation: str = ""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO string or a raw date object (``iso_timestamp``/``timestamp``)."""
    if isinstance(value, dict):
        value = value.get("iso_timestamp") or value.get("timestamp")
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_VALUES


def format_flag(value: bool) -> str:
    return "Yes" if value else "No"


def parse_count(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass
class CacheRecord:
    """One row of the cache table, identified by ``(key, type)``."""
    key: str
    type: str
    payload: Optional[str] = None
    url_value: Optional[str] = None
    owner_identity: str = "unknown"
    owner_org: str = ""
    created_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    access_count: int = 0
    expires_at: Optional[datetime] = None
    is_valid: bool = True
    record_id: Optional[str] = None

    @property
    def state(self) -> CacheRecordState:
        return CacheRecordState.VALID if self.is_valid else CacheRecordState.TOMBSTONED

    def is_expired(self, now: datetime) -> bool:
        # An unreadable expiry cannot prove freshness
        if self.expires_at is None:
            return True
        return self.expires_at < now

    @classmethod
    def from_backend(cls, raw: Dict[str, Any], fields: CacheFieldMap) -> "CacheRecord":
        url_value = raw.get(fields.url_value)
        if isinstance(url_value, dict):
            url_value = url_value.get("url")
        return cls(
            key=str(raw.get(fields.key, "")),
            type=str(raw.get(fields.type, "")),
            payload=raw.get(fields.payload),
            url_value=url_value,
            owner_identity=raw.get(fields.owner_identity) or "unknown",
            owner_org=raw.get(fields.owner_org) or "",
            created_at=parse_timestamp(raw.get(fields.created_at)),
            last_accessed_at=parse_timestamp(raw.get(fields.last_accessed_at)),
            access_count=parse_count(raw.get(fields.access_count)),
            expires_at=parse_timestamp(raw.get(fields.expires_at)),
            is_valid=parse_flag(raw.get(fields.is_valid)),
            record_id=raw.get("id"),
        )

    def to_backend(self, fields: CacheFieldMap) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            fields.key: self.key,
            fields.type: self.type,
            fields.owner_identity: self.owner_identity,
            fields.owner_org: self.owner_org,
            fields.access_count: self.access_count,
            fields.is_valid: format_flag(self.is_valid),
            fields.client_address: "",
        }
        if self.payload is not None:
            data[fields.payload] = self.payload
        if self.url_value is not None:
            data[fields.url_value] = self.url_value
        for attr in ("created_at", "last_accessed_at", "expires_at"):
            value = getattr(self, attr)
            if value is not None:
                data[getattr(fields, attr)] = to_iso(value)
        return data
