"""
Configuration for the CouchDB configuration source.

``SyncConfig`` is the single immutable value every operation receives.  It
is built once (at attach time) and never re-read from mutable state.

Settings files are TOML::

    [couchdb]
    host = "http://couch.internal"
    port = 5984
    database = "sites"
    view = "sites/all"          # design/view
    list = "enabled"            # optional: use the list transform
    keys = ["web", "api"]       # optional
    filter = "sites/by_app"     # optional: change feed filter

    [couchdb.extra]
    username = "reader"
    password_secret = "couchdb-password"
    timeout = 30
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import toml

from couchconfig.errors import ConfigValidationError
from shared.secrets import get_secret

logger = logging.getLogger("couchconfig.settings")

_DEFAULT_CONFIG_PATH = Path("/etc/couchconfig/settings.toml")

# Option aliases accepted by ``SyncConfig.from_mapping``.  The camelCase
# names are what existing host applications pass in.
_DATABASE_KEYS = ("database_name", "databaseName", "database")
_QUERY_PATH_KEYS = ("query_path", "queryPath", "view")
_LIST_KEYS = ("list_name", "listName", "list")
_EXTRA_KEYS = ("extra", "extraConf")


def _host_port(host: str) -> Optional[int]:
    netloc_url = host if "://" in host else f"//{host}"
    try:
        return urlsplit(netloc_url).port
    except ValueError:
        raise ConfigValidationError("host", f"'{host}' is not a valid host") from None


@dataclass(frozen=True)
class SyncConfig:
    """Validated connection and query configuration.

    Args:
        host: Store host, optionally with scheme (``http://couch.local``).
        port: Store port.
        database_name: Database (collection) holding the documents.
        query_path: ``design/view`` path of the view to query.
        list_name: Name of a list function in the same design document.
            When set, the List strategy is used instead of the View one.
        keys: Optional keys restricting both the query and the change feed.
        filter: Optional ``design/filter`` applied to the change feed.
        extra: Connection-level options passed to the store client.

    Raises:
        ConfigValidationError: If a required option is missing or malformed.
    """

    host: str
    port: int
    database_name: str
    query_path: str
    list_name: Optional[str] = None
    keys: Optional[Tuple[str, ...]] = None
    filter: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.host or not isinstance(self.host, str):
            raise ConfigValidationError("host", "must be a non-empty string")
        if _host_port(self.host) is not None:
            raise ConfigValidationError(
                "host", f"'{self.host}' includes a port; use the port option"
            )
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigValidationError("port", "must be an integer")
        if not 0 < self.port < 65536:
            raise ConfigValidationError("port", f"{self.port} is out of range")
        if not self.database_name:
            raise ConfigValidationError("database_name", "must not be empty")
        if not self.query_path:
            raise ConfigValidationError("query_path", "must not be empty")
        segments = self.query_path.split("/")
        if len(segments) < 2 or not all(segments):
            raise ConfigValidationError(
                "query_path", f"'{self.query_path}' must look like 'design/view'"
            )
        if self.list_name is not None and not self.list_name:
            raise ConfigValidationError("list_name", "must not be empty when given")
        if self.filter is not None and not self.filter:
            raise ConfigValidationError("filter", "must not be empty when given")

        if self.keys is not None:
            if isinstance(self.keys, (str, bytes)) or not isinstance(
                self.keys, (list, tuple)
            ):
                raise ConfigValidationError("keys", "must be a sequence of keys")
            object.__setattr__(self, "keys", tuple(self.keys))

        if not isinstance(self.extra, Mapping):
            raise ConfigValidationError("extra", "must be a mapping")
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @property
    def uses_list(self) -> bool:
        return self.list_name is not None

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "SyncConfig":
        """Build a ``SyncConfig`` from a loose options mapping.

        Accepts snake_case names as well as the host-facing camelCase ones
        (``databaseName``, ``view``, ``extraConf``).  ``list``, ``keys`` and
        ``filter`` may live either at the top level or inside the extra
        options; they are removed from the extra options either way.
        """
        if options is None:
            raise ConfigValidationError("options", "no configuration given")

        extra: Dict[str, Any] = {}
        for key in _EXTRA_KEYS:
            if options.get(key):
                extra.update(options[key])

        def _pick(names: Tuple[str, ...]) -> Any:
            for name in names:
                if name in options:
                    return options[name]
            return None

        def _pick_with_extra(names: Tuple[str, ...]) -> Any:
            value = _pick(names)
            for name in names:
                if name in extra:
                    nested = extra.pop(name)
                    if value is None:
                        value = nested
            return value

        port = options.get("port")
        if isinstance(port, str) and port.isdigit():
            port = int(port)

        return cls(
            host=options.get("host"),
            port=port,
            database_name=_pick(_DATABASE_KEYS),
            query_path=_pick(_QUERY_PATH_KEYS),
            list_name=_pick_with_extra(_LIST_KEYS),
            keys=_pick_with_extra(("keys",)),
            filter=_pick_with_extra(("filter",)),
            extra=extra,
        )


# ---------------------------------------------------------------------------
# Settings file
# ---------------------------------------------------------------------------


def default_config_path() -> Path:
    env_path = os.environ.get("COUCHCONFIG_CONFIG")
    if env_path:
        return Path(env_path)
    return _DEFAULT_CONFIG_PATH


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load and validate settings from a TOML file.

    Returns:
        Parsed configuration dictionary.

    Raises:
        FileNotFoundError: If the config file does not exist.
        KeyError: If the ``couchdb`` section is missing.
    """
    if path is None:
        path = default_config_path()
    config = toml.load(path)

    if "couchdb" not in config:
        raise KeyError("Missing required config key: couchdb")

    logger.debug("Loaded settings from %s", path)
    return config


def resolve_extra_options(extra: Mapping[str, Any]) -> Dict[str, Any]:
    """Resolve keychain references in connection options.

    ``password_secret`` names a secret that is looked up with
    :func:`shared.secrets.get_secret` and stored as ``password``.
    """
    resolved = dict(extra)
    secret_name = resolved.pop("password_secret", None)
    if secret_name:
        resolved["password"] = get_secret(secret_name)
    return resolved


def sync_config_from_settings(config: Mapping[str, Any]) -> SyncConfig:
    """Build a ``SyncConfig`` from the ``[couchdb]`` settings section."""
    section = dict(config["couchdb"])
    section["extra"] = resolve_extra_options(section.get("extra") or {})
    return SyncConfig.from_mapping(section)
