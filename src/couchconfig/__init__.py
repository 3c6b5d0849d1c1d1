"""
couchconfig keeps a host application's site/service configuration in
sync with a CouchDB database.

The initial load goes through a view (or a list function over it); later
changes arrive through the continuous change feed and are emitted as
``update`` events.  Access is read-only.
"""

from couchconfig.errors import (
    CollectionNotFoundError,
    ConfigValidationError,
    FeedError,
    NotInitializedError,
    QueryError,
    StoreConnectionError,
    SyncError,
)
from couchconfig.plugin import ConfigPlugin
from couchconfig.settings import SyncConfig
from couchconfig.source import ConfigSource

__version__ = "0.3.0"
__all__ = [
    "ConfigPlugin",
    "ConfigSource",
    "SyncConfig",
    "SyncError",
    "ConfigValidationError",
    "StoreConnectionError",
    "CollectionNotFoundError",
    "NotInitializedError",
    "QueryError",
    "FeedError",
]
