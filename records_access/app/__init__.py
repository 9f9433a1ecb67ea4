"""
Records Access Layer application package.

Sits between application code and a rate-limited records REST backend:
- Request scheduling: a per-window quota with 429 requeueing
- Retries: exponential backoff for transient failures
- Pagination: bulk fetch with soft-fail partial results
- Caching: a TTL cache stored in a table on the same backend

Structure:
- app.main: AccessLayer composition root and consumer surface.
- app.scheduler: Quota-aware request queue and dispatcher.
- app.adapters: Headers, filters, httpx transport, CRUD client, paginator.
- app.caching: Cache store, payload codecs and the disable switch.
"""
