"""Localdex error hierarchy.

Every exception raised by the core inherits from ``LocaldexError`` so that the
HTTP and CLI layers can catch one type at their boundary and render a message,
while callers deeper in the stack catch the specific condition they can
recover from (``except SyncInProgressError``).

Hierarchy::

    LocaldexError
    ├── NotFoundError
    ├── AlreadyExistsError
    ├── InvalidInputError
    ├── NotImplementedFeatureError
    ├── UnsupportedTypeError
    ├── SyncInProgressError
    ├── SyncFailedError
    ├── TaskFailedError
    ├── AuthError
    │   ├── AuthRequiredError
    │   ├── AuthExpiredError
    │   └── TokenRefreshFailedError
    ├── ConnectorError
    └── ServiceUnavailableError
        ├── SearchUnavailableError
        ├── EmbeddingUnavailableError
        ├── VectorIndexUnavailableError
        └── LLMUnavailableError
"""

from __future__ import annotations

from typing import Any


class LocaldexError(Exception):
    """Base class for all localdex errors."""


class NotFoundError(LocaldexError):
    """A requested entity does not exist."""


class AlreadyExistsError(LocaldexError):
    """An entity with the same identity already exists."""


class InvalidInputError(LocaldexError):
    """Malformed or invalid input."""


class NotImplementedFeatureError(LocaldexError):
    """Functionality is not available for this input."""


class UnsupportedTypeError(LocaldexError):
    """Unknown connector, normaliser or processor type."""


class SyncInProgressError(LocaldexError):
    """A sync is already running for the source."""

    def __init__(self, source_id: str) -> None:
        super().__init__(f"sync already in progress for source {source_id}")
        self.source_id = source_id


class SyncFailedError(LocaldexError):
    """A sync run aborted; ``result`` holds what was committed before the failure."""

    def __init__(self, message: str, result: Any) -> None:
        super().__init__(message)
        self.result = result


class TaskFailedError(LocaldexError):
    """A scheduled task finished with failures."""

    def __init__(self, message: str, items_processed: int = 0) -> None:
        super().__init__(message)
        self.items_processed = items_processed


class AuthError(LocaldexError):
    """Base class for authentication problems."""


class AuthRequiredError(AuthError):
    """The connector requires credentials but none are configured."""


class AuthExpiredError(AuthError):
    """Credentials have expired and could not be refreshed."""


class TokenRefreshFailedError(AuthError):
    """OAuth token refresh failed."""


class ConnectorError(LocaldexError):
    """Stream-level connector failure."""


class ServiceUnavailableError(LocaldexError):
    """A backing service is not configured or unreachable."""


class SearchUnavailableError(ServiceUnavailableError):
    """The keyword search index is not configured or unreachable."""


class EmbeddingUnavailableError(ServiceUnavailableError):
    """No embedding provider is configured or it failed."""


class VectorIndexUnavailableError(ServiceUnavailableError):
    """The vector index is not configured or unreachable."""


class LLMUnavailableError(ServiceUnavailableError):
    """No LLM provider is configured or it failed."""


__all__ = [
    "LocaldexError",
    "NotFoundError",
    "AlreadyExistsError",
    "InvalidInputError",
    "NotImplementedFeatureError",
    "UnsupportedTypeError",
    "SyncInProgressError",
    "SyncFailedError",
    "TaskFailedError",
    "AuthError",
    "AuthRequiredError",
    "AuthExpiredError",
    "TokenRefreshFailedError",
    "ConnectorError",
    "ServiceUnavailableError",
    "SearchUnavailableError",
    "EmbeddingUnavailableError",
    "VectorIndexUnavailableError",
    "LLMUnavailableError",
]
