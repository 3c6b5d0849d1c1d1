"""
Minimal read-only CouchDB client built on ``httpx``.

Only the calls the configuration source needs are implemented:

- database existence check (``HEAD /{db}``)
- view queries (``/{db}/_design/{ddoc}/_view/{view}``)
- list queries (``/{db}/_design/{ddoc}/_list/{list}/{view}``)
- the continuous change feed (``/{db}/_changes?feed=continuous``)

There is no write method.  Failures are mapped onto the
``couchconfig.errors`` taxonomy at this boundary so callers never see raw
``httpx`` exceptions.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional
from urllib.parse import quote

import httpx

from couchconfig.errors import FeedError, QueryError, StoreConnectionError

logger = logging.getLogger("couchconfig.couch")

_DEFAULT_TIMEOUT_SECONDS = 30.0
_DEFAULT_HEARTBEAT_MS = 30000

# Query parameters CouchDB expects as JSON values.
_JSON_PARAMS = frozenset(
    {"key", "keys", "startkey", "endkey", "start_key", "end_key"}
)


def _encode_param(name: str, value: Any) -> str:
    if name in _JSON_PARAMS:
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _encode_params(params: Mapping[str, Any]) -> Dict[str, str]:
    return {
        name: _encode_param(name, value)
        for name, value in params.items()
        if value is not None
    }


def _error_details(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    """Pull CouchDB's ``{"error": ..., "reason": ...}`` body apart, if any."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text or None
    if not isinstance(body, dict):
        return None, None
    return body.get("error"), body.get("reason")


class CouchServer:
    """Connection to a CouchDB server.

    Args:
        host: Host name or URL (``couch.local`` or ``https://couch.local``).
        port: TCP port.
        options: Connection options: ``protocol`` or ``secure``,
            ``username`` / ``password``, ``timeout`` (seconds),
            ``heartbeat`` (milliseconds), ``headers``.
        transport: Optional ``httpx`` transport (used by tests).
    """

    def __init__(
        self,
        host: str,
        port: int,
        options: Optional[Mapping[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        options = dict(options or {})
        if "://" in host:
            scheme, _, hostname = host.partition("://")
        else:
            secure = options.get("secure") or options.get("protocol") == "https"
            scheme, hostname = ("https" if secure else "http"), host
        hostname = hostname.rstrip("/")
        self.base_url = f"{scheme}://{hostname}:{port}"

        auth = None
        username = options.get("username")
        if username:
            auth = httpx.BasicAuth(username, options.get("password") or "")

        self.timeout = float(options.get("timeout", _DEFAULT_TIMEOUT_SECONDS))
        self.heartbeat = int(options.get("heartbeat", _DEFAULT_HEARTBEAT_MS))

        headers = {"Accept": "application/json"}
        headers.update(options.get("headers") or {})

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=auth,
            headers=headers,
            timeout=self.timeout,
            transport=transport,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    def database(self, name: str) -> "CouchDatabase":
        """Return a handle to database *name*.  Does not touch the network."""
        return CouchDatabase(self, name)

    async def aclose(self) -> None:
        await self._client.aclose()


class CouchDatabase:
    """Read-only handle to a single CouchDB database."""

    def __init__(self, server: CouchServer, name: str) -> None:
        self.name = name
        self._server = server
        self._client = server.client
        self._path = "/" + quote(name, safe="")

    def __repr__(self) -> str:
        return f"<CouchDatabase {self._server.base_url}{self._path}>"

    @property
    def server(self) -> CouchServer:
        return self._server

    # ------------------------------------------------------------------
    # Existence
    # ------------------------------------------------------------------

    async def exists(self) -> bool:
        """Check whether the database exists.

        Raises:
            StoreConnectionError: On transport failure or an unexpected
                status (e.g. 401 when credentials are wrong).
        """
        url = f"{self._server.base_url}{self._path}"
        try:
            response = await self._client.head(self._path)
        except httpx.TransportError as exc:
            raise StoreConnectionError(
                f"Could not reach CouchDB: {exc}", url=url
            ) from exc

        if response.status_code == 404:
            return False
        if response.is_success:
            return True
        raise StoreConnectionError(
            f"Unexpected status {response.status_code} checking database {self.name}",
            url=url,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _design_url(self, path: str, kind: str) -> str:
        design, *rest = path.split("/")
        tail = "/".join(quote(part, safe="") for part in rest)
        return f"{self._path}/_design/{quote(design, safe='')}/{kind}/{tail}"

    async def _query(self, path: str, url: str, params: Mapping[str, Any]) -> httpx.Response:
        params = dict(params or {})
        keys = params.pop("keys", None)
        query = _encode_params(params)
        try:
            if keys is not None:
                response = await self._client.post(
                    url, params=query, json={"keys": list(keys)}
                )
            else:
                response = await self._client.get(url, params=query)
        except httpx.TransportError as exc:
            raise QueryError(f"Query {path} failed: {exc}", path=path) from exc

        if response.is_error:
            error, reason = _error_details(response)
            raise QueryError(
                f"Query {path} failed with status {response.status_code}",
                path=path,
                status=response.status_code,
                error=error,
                reason=reason,
            )
        return response

    async def view(self, path: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Query view ``design/view`` and return its rows."""
        response = await self._query(path, self._design_url(path, "_view"), params or {})
        try:
            body = response.json()
        except ValueError as exc:
            raise QueryError(
                f"View {path} returned invalid JSON",
                path=path,
                status=response.status_code,
            ) from exc
        return body.get("rows", [])

    async def list(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Query list function ``design/list/view`` and return its output.

        List functions may render anything; JSON responses are decoded,
        anything else is returned as text.
        """
        response = await self._query(path, self._design_url(path, "_list"), params or {})
        if "json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError as exc:
                raise QueryError(
                    f"List {path} returned invalid JSON",
                    path=path,
                    status=response.status_code,
                ) from exc
        return response.text

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    async def changes(self, options: Optional[Mapping[str, Any]] = None) -> AsyncIterator[Dict[str, Any]]:
        """Follow the continuous change feed.

        ``options`` are sent as query parameters; ``query_params`` holds
        additional, already-encoded parameters for filter functions.
        Heartbeat blank lines are skipped.  The iterator ends when the
        server closes the feed.

        Raises:
            FeedError: On transport failure, an error status, an error
                record, or an undecodable line.
        """
        options = dict(options or {})
        query: Dict[str, str] = {
            "feed": "continuous",
            "heartbeat": str(self._server.heartbeat),
        }
        extra_params = options.pop("query_params", None) or {}
        query.update(_encode_params(options))
        query.update({name: str(value) for name, value in extra_params.items()})

        url = f"{self._path}/_changes"
        timeout = httpx.Timeout(self._server.timeout, read=None)
        try:
            async with self._client.stream("GET", url, params=query, timeout=timeout) as response:
                if response.is_error:
                    await response.aread()
                    error, reason = _error_details(response)
                    raise FeedError(
                        f"Change feed for {self.name} rejected: {error or 'error'}: {reason}",
                        status=response.status_code,
                    )
                logger.info("Following change feed for %s", self.name)
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except ValueError as exc:
                        raise FeedError(f"Malformed change record: {line[:80]!r}") from exc
                    if "error" in record:
                        raise FeedError(
                            f"Change feed error: {record.get('error')}: {record.get('reason')}"
                        )
                    if "last_seq" in record and "id" not in record:
                        logger.info(
                            "Change feed for %s closed at seq %s",
                            self.name,
                            record["last_seq"],
                        )
                        return
                    yield record
        except httpx.HTTPError as exc:
            raise FeedError(f"Change feed for {self.name} failed: {exc}") from exc
