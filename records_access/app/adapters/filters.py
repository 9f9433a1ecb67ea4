"""
Record filter models serialized into the backend's ``filters`` query parameter.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class FilterMatch(str, Enum):
    """How rules combine."""
    AND = "and"
    OR = "or"


class FilterOperator(str, Enum):
    """Rule operators understood by the records backend."""
    IS = "is"
    IS_NOT = "is not"
    CONTAINS = "contains"
    IS_BEFORE = "is before"
    IS_AFTER = "is after"
    HIGHER_THAN = "higher than"
    LOWER_THAN = "lower than"


@dataclass
class FilterRule:
    """Single filter rule."""
    field: str
    operator: FilterOperator
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "operator": FilterOperator(self.operator).value,
            "value": self.value,
        }


@dataclass
class RecordFilter:
    """Structured query ``{match, rules}``."""
    rules: List[FilterRule] = field(default_factory=list)
    match: FilterMatch = FilterMatch.AND

    @classmethod
    def all_of(cls, *rules: FilterRule) -> "RecordFilter":
        return cls(rules=list(rules), match=FilterMatch.AND)

    @classmethod
    def any_of(cls, *rules: FilterRule) -> "RecordFilter":
        return cls(rules=list(rules), match=FilterMatch.OR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match": FilterMatch(self.match).value,
            "rules": [rule.to_dict() for rule in self.rules],
        }

    def to_query_param(self) -> str:
        """JSON text for the ``filters`` parameter; URL encoding is left to httpx."""
        return json.dumps(self.to_dict(), separators=(",", ":"))
