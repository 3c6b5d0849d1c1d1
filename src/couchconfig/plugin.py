"""
Host binding: installs a ``ConfigSource`` on a host object.

Usage::

    plugin = ConfigPlugin("external_config")
    plugin.attach(app, {"host": "couch.local", "port": 5984, ...})
    app.external_config.subscribe("update", app.reload_site)
    await plugin.init(app, done)
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from couchconfig.settings import SyncConfig
from couchconfig.source import ConfigSource, Connector, InitCallback

logger = logging.getLogger("couchconfig.plugin")

DEFAULT_NAMESPACE = "external_config"


class ConfigPlugin:
    """Attaches a named ``ConfigSource`` to a host.

    Args:
        namespace: Attribute name the source is installed under.
        connect: Optional connector passed through to ``ConfigSource``.
    """

    def __init__(self, namespace: Optional[str] = None, connect: Optional[Connector] = None) -> None:
        self.namespace = namespace or DEFAULT_NAMESPACE
        self._connect = connect

    def attach(self, host: Any, options: Union[SyncConfig, Mapping[str, Any]]) -> ConfigSource:
        """Install a new source as ``host.<namespace>``.  Does not connect."""
        source = ConfigSource(options, connect=self._connect)
        setattr(host, self.namespace, source)
        logger.debug("Attached %r as %s", source, self.namespace)
        return source

    def source(self, host: Any) -> ConfigSource:
        try:
            return getattr(host, self.namespace)
        except AttributeError:
            raise AttributeError(
                f"No configuration source attached as '{self.namespace}'"
            ) from None

    async def init(self, host: Any, done: Optional[InitCallback] = None) -> Optional[ConfigSource]:
        """Delegate to the attached source's ``init``."""
        return await self.source(host).init(done)
