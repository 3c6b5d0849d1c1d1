"""
Exception taxonomy for couchconfig.

All exceptions inherit from ``SyncError`` so hosts can catch every
adapter failure with a single ``except`` clause.  Where a builtin
exception already describes the failure mode (``ValueError`` for bad
options, ``ConnectionError`` for transport problems, ``RuntimeError`` for
precondition violations) the class also inherits from it.

Delivery channels:
    - ``ConfigValidationError`` is raised synchronously at construction.
    - ``NotInitializedError`` is raised synchronously by ``get_services``.
    - ``StoreConnectionError`` / ``CollectionNotFoundError`` are delivered
      through the ``init`` callback.
    - ``QueryError`` is raised by the awaited query, untouched.
    - ``FeedError`` is only ever delivered as an ``error`` event.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SyncError(Exception):
    """Base exception for all couchconfig errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} [{context_str}]"
        return self.message


class ConfigValidationError(SyncError, ValueError):
    """A required option is missing or malformed."""

    def __init__(self, option: str, reason: str) -> None:
        super().__init__(
            f"CouchDB configuration error. Invalid option {option}: {reason}",
            context={"option": option},
        )
        self.option = option
        self.reason = reason


class StoreConnectionError(SyncError, ConnectionError):
    """The document store could not be reached."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message, context={"url": url} if url else None)
        self.url = url


class CollectionNotFoundError(SyncError):
    """The store is reachable but the target database does not exist."""

    def __init__(self, database_name: str) -> None:
        super().__init__(
            f"Database {database_name} does not exist.",
            context={"database": database_name},
        )
        self.database_name = database_name


class NotInitializedError(SyncError, RuntimeError):
    """An operation was invoked before ``init`` completed successfully."""

    def __init__(self) -> None:
        super().__init__("Couch configuration not initialized.")


class QueryError(SyncError):
    """A list or view query failed.

    ``status`` is the HTTP status when the server answered, ``None`` for
    transport failures.  ``error`` and ``reason`` mirror the CouchDB error
    body when one was returned.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        status: Optional[int] = None,
        error: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        context: Dict[str, Any] = {}
        if path is not None:
            context["path"] = path
        if status is not None:
            context["status"] = status
        if error is not None:
            context["error"] = error
        if reason is not None:
            context["reason"] = reason
        super().__init__(message, context=context)
        self.path = path
        self.status = status
        self.error = error
        self.reason = reason


class FeedError(SyncError):
    """The change feed failed.  Terminal for the watcher that saw it."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message, context={"status": status} if status is not None else None)
        self.status = status
