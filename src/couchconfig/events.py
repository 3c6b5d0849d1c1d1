"""
Explicit publish/subscribe channel used by ``ConfigSource``.

Hosts register handlers per event kind (``update``, ``error``).  A
handler that raises is logged and skipped; it never prevents delivery to
the remaining handlers and never propagates into the change feed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

logger = logging.getLogger("couchconfig.events")

Handler = Callable[[Any], Any]


class EventChannel:
    """Per-kind handler registry with synchronous, in-order delivery."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, kind: str, handler: Handler) -> None:
        self._handlers[kind].append(handler)

    def unsubscribe(self, kind: str, handler: Handler) -> None:
        """Remove *handler*; unknown handlers are ignored."""
        try:
            self._handlers[kind].remove(handler)
        except ValueError:
            pass

    def has_subscribers(self, kind: str) -> bool:
        return bool(self._handlers.get(kind))

    def emit(self, kind: str, payload: Any) -> int:
        """Deliver *payload* to every handler of *kind*.

        Returns:
            Number of handlers that completed without raising.
        """
        delivered = 0
        # Copy so handlers may unsubscribe themselves during delivery.
        for handler in list(self._handlers.get(kind, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler %r for '%s' event raised", handler, kind)
                continue
            delivered += 1
        return delivered
