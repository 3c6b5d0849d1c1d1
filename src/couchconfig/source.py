"""
ConfigSource loads configuration documents from CouchDB and keeps the
host updated through the change feed.

Lifecycle::

    source = ConfigSource(config)          # attach: no I/O
    source.subscribe("update", on_update)  # [document]
    source.subscribe("error", on_error)    # FeedError
    await source.init(callback)            # connect, check, start feed
    services = await source.get_services()

``init`` reports its outcome exactly once: through ``callback`` when one is
given, otherwise by returning the source or raising.  After that the feed
only ever talks to the host through events.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from couchconfig.couch import CouchDatabase, CouchServer
from couchconfig.errors import (
    CollectionNotFoundError,
    NotInitializedError,
    QueryError,
    SyncError,
)
from couchconfig.events import EventChannel, Handler
from couchconfig.feed import ChangeFeedWatcher, build_feed_options
from couchconfig.settings import SyncConfig
from couchconfig.strategies import QueryStrategy, select_strategy

logger = logging.getLogger("couchconfig.source")

InitCallback = Callable[..., Any]
Connector = Callable[[SyncConfig], CouchDatabase]


def open_database(config: SyncConfig) -> CouchDatabase:
    """Open a handle to the configured database.  No network I/O."""
    server = CouchServer(config.host, config.port, config.extra)
    return server.database(config.database_name)


class ConfigSource:
    """Configuration source backed by a CouchDB database.

    Args:
        config: A ``SyncConfig`` or an options mapping accepted by
            :meth:`SyncConfig.from_mapping`.
        connect: Factory returning the database handle; defaults to
            :func:`open_database`.

    Raises:
        ConfigValidationError: If *config* is a mapping that does not
            validate.
    """

    def __init__(
        self,
        config: Union[SyncConfig, Mapping[str, Any]],
        connect: Optional[Connector] = None,
    ) -> None:
        if not isinstance(config, SyncConfig):
            config = SyncConfig.from_mapping(config)
        self.config = config
        self.strategy: QueryStrategy = select_strategy(config)
        self.events = EventChannel()
        self._connect = connect or open_database
        self._db: Optional[CouchDatabase] = None
        self._watcher: Optional[ChangeFeedWatcher] = None
        self._feed_task: Optional[asyncio.Task[None]] = None

    def __repr__(self) -> str:
        state = "initialized" if self._db is not None else "detached"
        return (
            f"<ConfigSource db={self.config.database_name!r} "
            f"strategy={self.strategy.name} {state}>"
        )

    # ----- events ---------------------------------------------------------

    def subscribe(self, kind: str, handler: Handler) -> None:
        self.events.subscribe(kind, handler)

    def unsubscribe(self, kind: str, handler: Handler) -> None:
        self.events.unsubscribe(kind, handler)

    # ----- state ----------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._db is not None

    @property
    def watcher(self) -> Optional[ChangeFeedWatcher]:
        return self._watcher

    @property
    def feed_task(self) -> Optional["asyncio.Task[None]"]:
        return self._feed_task

    # ----- lifecycle ------------------------------------------------------

    async def init(self, callback: Optional[InitCallback] = None) -> Optional["ConfigSource"]:
        """Connect, verify the database exists, then follow its changes.

        Args:
            callback: ``callback(err)`` on failure or ``callback(None, self)``
                on success.  Called at most once, before the feed starts.

        Returns:
            ``self`` on success; ``None`` when a failure was handed to
            *callback*.

        Raises:
            StoreConnectionError: Transport failure, when no *callback*.
            CollectionNotFoundError: Database absent, when no *callback*.
        """
        config = self.config
        db = self._connect(config)

        try:
            exists = await db.exists()
            if not exists:
                raise CollectionNotFoundError(config.database_name)
        except SyncError as exc:
            logger.error("Configuration source init failed: %s", exc)
            await db.server.aclose()
            if callback is None:
                raise
            callback(exc)
            return None

        self._db = db
        logger.info(
            "Database %s found; loading services with %s strategy",
            config.database_name,
            self.strategy.name,
        )
        if callback is not None:
            callback(None, self)

        self._start_feed(db, config)
        return self

    def _start_feed(self, db: CouchDatabase, config: SyncConfig) -> None:
        options = build_feed_options(config)
        feed = db.changes(options)
        self._watcher = ChangeFeedWatcher(feed, self.events.emit, name=config.database_name)
        self._feed_task = asyncio.create_task(
            self._watcher.run(),
            name=f"couchconfig-feed-{config.database_name}",
        )

    def get_services(self, callback: Optional[InitCallback] = None) -> Awaitable[Any]:
        """Fetch every configuration document.

        Raises ``NotInitializedError`` immediately (not when awaited) if
        ``init`` has not succeeded.  The returned awaitable resolves to a
        list of documents (View) or the list function's output (List).

        Args:
            callback: ``callback(err, None)`` on query failure or
                ``callback(None, services)`` on success.  Without one the
                awaitable raises ``QueryError`` on query failure.
        """
        if self._db is None:
            raise NotInitializedError()
        fetch = self.strategy.fetch(self._db, self.config)
        if callback is None:
            return fetch
        return self._deliver(fetch, callback)

    async def _deliver(self, fetch: Awaitable[Any], callback: InitCallback) -> Any:
        try:
            services = await fetch
        except QueryError as exc:
            logger.error("Loading services from %s failed: %s", self.config.database_name, exc)
            callback(exc, None)
            return None
        callback(None, services)
        return services

    async def close(self) -> None:
        """Stop following the feed and close the HTTP client."""
        if self._feed_task is not None and not self._feed_task.done():
            self._feed_task.cancel()
            try:
                await self._feed_task
            except asyncio.CancelledError:
                pass
        if self._db is not None:
            await self._db.server.aclose()
