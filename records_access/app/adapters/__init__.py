"""
Adapters package for the records backend.

HTTP plumbing shared by every consumer of the access layer:

- Header assembly and filter serialization
- The httpx transport and its status-code to error mapping
- The CRUD client and the paginated bulk fetcher

Every request leaves through the request scheduler; adapters never call
the network directly.
"""

from .filters import FilterMatch, FilterOperator, FilterRule, RecordFilter
from .headers import HeaderBuilder
from .transport import HttpTransport
from .records_client import RecordsClient
from .paginated_fetcher import PaginatedFetcher

__all__ = [
    "FilterMatch",
    "FilterOperator",
    "FilterRule",
    "RecordFilter",
    "HeaderBuilder",
    "HttpTransport",
    "RecordsClient",
    "PaginatedFetcher",
]
