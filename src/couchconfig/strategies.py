"""
Initial-load query strategies.

Both strategies fetch the complete configuration set in one request:

- ``ViewStrategy`` queries ``design/view`` and returns each row's document
  with ``id`` set from ``_id``.
- ``ListStrategy`` runs list function ``list`` over the same view and
  returns whatever the list function rendered, untouched.

Strategies hold no state; the ``SyncConfig`` is passed to every call so a
single strategy instance can serve concurrent fetches.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from couchconfig.couch import CouchDatabase
from couchconfig.settings import SyncConfig

logger = logging.getLogger("couchconfig.strategies")

ConfigDocument = Dict[str, Any]


def query_params(config: SyncConfig) -> Dict[str, Any]:
    """Parameters shared by list and view queries."""
    params: Dict[str, Any] = {"include_docs": True}
    if config.keys is not None:
        params["keys"] = list(config.keys)
    return params


def list_query_path(query_path: str, list_name: str) -> str:
    """Insert *list_name* as the second segment: ``d/v`` -> ``d/list/v``."""
    segments = query_path.split("/")
    segments.insert(1, list_name)
    return "/".join(segments)


def inject_id(document: ConfigDocument) -> ConfigDocument:
    """Set ``id`` from the native ``_id``, overwriting any existing value."""
    document["id"] = document["_id"]
    return document


class QueryStrategy:
    """Fetches the full set of configuration documents."""

    name = "base"

    async def fetch(self, db: CouchDatabase, config: SyncConfig) -> Any:
        raise NotImplementedError


class ListStrategy(QueryStrategy):
    name = "list"

    async def fetch(self, db: CouchDatabase, config: SyncConfig) -> Any:
        path = list_query_path(config.query_path, config.list_name)
        logger.debug("Fetching services through list %s", path)
        return await db.list(path, query_params(config))


class ViewStrategy(QueryStrategy):
    name = "view"

    async def fetch(self, db: CouchDatabase, config: SyncConfig) -> List[ConfigDocument]:
        logger.debug("Fetching services through view %s", config.query_path)
        rows = await db.view(config.query_path, query_params(config))
        documents: List[ConfigDocument] = []
        for row in rows:
            # Rows for missing keys carry an error and no document.
            if not row.get("doc"):
                logger.warning(
                    "Skipping view row without document: key=%r error=%s",
                    row.get("key"),
                    row.get("error"),
                )
                continue
            documents.append(inject_id(row["doc"]))
        return documents


def select_strategy(config: SyncConfig) -> QueryStrategy:
    """List strategy when a list name is configured, View otherwise."""
    if config.uses_list:
        return ListStrategy()
    return ViewStrategy()
