"""
Shared utilities for the Records Access Layer.

This package aggregates common building blocks consumed by the access layer:

- config: Configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Exponential backoff for transient failures
- test_helpers: In-memory records backend for tests

Do not import from records_access into shared/.
"""
