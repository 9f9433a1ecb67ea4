"""
Type-specific payload encoding for the shared cache table.

Each cache type is bound to one codec. Most types keep JSON in the generic
payload field; URL-valued types keep the bare URL in a dedicated field.
"""

import json
import re
from typing import Any, Dict, Iterable, Optional

from shared.config import CacheFieldMap
from shared.errors import CacheCorruptionError, ValidationError

from .models import CacheRecord


class PayloadCodec:
    """Encodes a value into cache table fields and decodes it back."""

    name = "base"

    def encode(self, data: Any, fields: CacheFieldMap) -> Dict[str, Any]:
        raise NotImplementedError

    def decode(self, record: CacheRecord) -> Any:
        raise NotImplementedError


class JsonPayloadCodec(PayloadCodec):
    name = "json"

    def encode(self, data: Any, fields: CacheFieldMap) -> Dict[str, Any]:
        try:
            return {fields.payload: json.dumps(data)}
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Value is not JSON serializable: {e}")

    def decode(self, record: CacheRecord) -> Any:
        if not isinstance(record.payload, str):
            raise CacheCorruptionError(record.type, "Payload field is empty")
        try:
            return json.loads(record.payload)
        except ValueError as e:
            raise CacheCorruptionError(record.type, f"Payload is not valid JSON: {e}")


class UrlPayloadCodec(PayloadCodec):
    name = "url"

    URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)

    def _is_url(self, value: Any) -> bool:
        return isinstance(value, str) and bool(self.URL_PATTERN.match(value))

    def encode(self, data: Any, fields: CacheFieldMap) -> Dict[str, Any]:
        if not self._is_url(data):
            raise ValidationError("Value is not an http(s) URL", details={"value": repr(data)[:200]})
        # Generic payload stays a valid empty JSON object
        return {fields.url_value: data, fields.payload: json.dumps({})}

    def decode(self, record: CacheRecord) -> Any:
        if not self._is_url(record.url_value):
            raise CacheCorruptionError(
                record.type,
                "URL field does not hold an http(s) URL",
                details={"value_type": type(record.url_value).__name__}
            )
        return record.url_value


class PayloadCodecRegistry:
    """Maps cache types to codecs, falling back to the default codec."""

    def __init__(self, default: Optional[PayloadCodec] = None,
                 codecs: Optional[Dict[str, PayloadCodec]] = None):
        self.default = default or JsonPayloadCodec()
        self._codecs: Dict[str, PayloadCodec] = dict(codecs or {})

    @classmethod
    def with_url_types(cls, url_types: Iterable[str]) -> "PayloadCodecRegistry":
        url_codec = UrlPayloadCodec()
        return cls(codecs={cache_type: url_codec for cache_type in url_types})

    def register(self, cache_type: str, codec: PayloadCodec):
        self._codecs[cache_type] = codec

    def for_type(self, cache_type: str) -> PayloadCodec:
        return self._codecs.get(cache_type, self.default)
