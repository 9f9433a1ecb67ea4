"""
Bulk fetch of every record matching a filter, one page at a time.
"""

from typing import Any, Dict, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger

from ..scheduler import Lane
from .filters import RecordFilter
from .records_client import RecordsClient


MAX_PAGE_SIZE = 1000


class PaginatedFetcher:
    """Walks pages until a short or empty page, or the page cap.

    Failures are soft by default: whatever was accumulated before the error
    is returned and the error is logged. Callers must treat a short result as
    degraded data, not as the complete set. With ``strict=True`` the error is
    logged and re-raised instead.
    """

    def __init__(self, client: RecordsClient, page_size: int = MAX_PAGE_SIZE, max_pages: int = 10):
        self.client = client
        self.page_size = page_size
        self.max_pages = max_pages
        self.logger = get_logger("records.paginator")

    async def fetch_all(self,
                        endpoint: str,
                        record_filter: Optional[RecordFilter] = None,
                        page_size: Optional[int] = None,
                        max_pages: Optional[int] = None,
                        lane: Lane = Lane.USER,
                        strict: bool = False) -> List[Dict[str, Any]]:
        page_size = self.page_size if page_size is None else page_size
        max_pages = self.max_pages if max_pages is None else max_pages
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}",
                details={"page_size": page_size}
            )
        if max_pages < 1:
            raise ValidationError("max_pages must be at least 1", details={"max_pages": max_pages})

        records: List[Dict[str, Any]] = []
        page = 1
        try:
            while page <= max_pages:
                response = await self.client.find(
                    endpoint, record_filter, page=page, rows_per_page=page_size, lane=lane
                )
                batch = response.get("records") or []
                if not batch:
                    self.logger.debug("No more records", endpoint=endpoint, page=page)
                    break

                records.extend(batch)
                self.logger.debug("Fetched page", endpoint=endpoint, page=page, count=len(batch))
                if len(batch) < page_size:
                    break
                page += 1
            else:
                self.logger.warning(
                    "Page cap reached, results may be incomplete",
                    endpoint=endpoint,
                    max_pages=max_pages,
                    total=len(records)
                )
        except Exception as e:
            if strict:
                self.logger.error(
                    "Pagination failed",
                    endpoint=endpoint,
                    page=page,
                    error_type=type(e).__name__,
                    error=str(e)
                )
                raise
            self.logger.error(
                "Pagination failed, returning partial results",
                endpoint=endpoint,
                page=page,
                fetched=len(records),
                error_type=type(e).__name__,
                error=str(e)
            )

        self.logger.info("Pagination complete", endpoint=endpoint, total=len(records))
        return records
