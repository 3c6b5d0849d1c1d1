"""
Change feed watcher.

Turns raw change records into ``update`` events and feed failures into a
single ``error`` event.  The watcher has two states::

    SUBSCRIBED --(feed error)--> ABANDONED

``ABANDONED`` is terminal.  There is no retry, backoff or reconnect, and
no sequence tracking: every change is handled on its own.  On error the
watcher stops reading and drops the feed; it does not close the
underlying stream itself.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional

from couchconfig.errors import FeedError
from couchconfig.settings import SyncConfig
from couchconfig.strategies import ConfigDocument, inject_id

logger = logging.getLogger("couchconfig.feed")

Emit = Callable[[str, Any], Any]


class FeedState(enum.Enum):
    SUBSCRIBED = "subscribed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class ChangeEvent:
    """A single changed configuration document."""

    document: ConfigDocument

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Optional["ChangeEvent"]:
        """Build an event from a change record, or ``None`` without a doc."""
        document = record.get("doc")
        if not document:
            return None
        return cls(document=inject_id(document))


def build_feed_options(config: SyncConfig) -> Dict[str, Any]:
    """Change feed options: changes from now on, with documents."""
    options: Dict[str, Any] = {"since": "now", "include_docs": True}
    if config.filter:
        options["filter"] = config.filter
    if config.keys is not None:
        options["query_params"] = {"keys": json.dumps(list(config.keys))}
    return options


class ChangeFeedWatcher:
    """Forwards change records from *feed* through *emit*.

    Args:
        feed: Async iterator of raw change records.  Failures surface as
            exceptions raised from iteration.
        emit: ``emit(kind, payload)``, typically ``EventChannel.emit``.
        name: Label used in log lines.
    """

    def __init__(self, feed: AsyncIterator[Dict[str, Any]], emit: Emit, name: str = "") -> None:
        self._feed = feed
        self._emit = emit
        self._name = name
        self.state = FeedState.SUBSCRIBED
        self.changes_seen = 0

    @property
    def abandoned(self) -> bool:
        return self.state is FeedState.ABANDONED

    def handle_change(self, record: Dict[str, Any]) -> bool:
        """Emit an ``update`` for *record*.  Returns whether one was emitted."""
        if self.abandoned:
            return False
        event = ChangeEvent.from_record(record)
        if event is None:
            logger.debug("Ignoring change without document: %r", record.get("id"))
            return False
        self.changes_seen += 1
        logger.info("Configuration document %s changed", event.document["id"])
        self._emit("update", [event.document])
        return True

    def handle_error(self, exc: BaseException) -> None:
        """Emit ``error`` once and stop listening for good."""
        if self.abandoned:
            return
        self.state = FeedState.ABANDONED
        # TODO: reconnect with bounded backoff, resuming from the last seen seq.
        logger.error(
            "Change feed %s failed; no longer listening for changes: %s",
            self._name,
            exc,
        )
        self._emit("error", exc)

    async def run(self) -> None:
        """Read the feed until it ends or fails."""
        try:
            async for record in self._feed:
                if self.abandoned:
                    break
                self.handle_change(record)
        except FeedError as exc:
            self.handle_error(exc)
            return
        except Exception as exc:
            wrapped = FeedError(f"Change feed {self._name} failed: {exc}")
            wrapped.__cause__ = exc
            self.handle_error(wrapped)
            return

        if not self.abandoned:
            logger.warning(
                "Change feed %s ended after %d changes; no further updates",
                self._name,
                self.changes_seen,
            )
