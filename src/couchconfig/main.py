"""
Standalone entry point. Follows the configuration database and logs
every change.

Runs as a long-lived systemd service, or once with ``--once`` to dump the
current configuration documents as JSON.

Key behaviours:
    - Loads configuration from ``/etc/couchconfig/settings.toml``
      (``COUCHCONFIG_CONFIG`` or ``--config`` override it).
    - Store credentials come from the keychain, never the settings file.
    - Records lifecycle events to the audit log.
    - Handles SIGTERM / SIGINT for graceful shutdown.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from couchconfig.errors import SyncError
from couchconfig.settings import load_config, sync_config_from_settings
from couchconfig.source import ConfigSource
from shared.audit import AuditLogger

logger = logging.getLogger("couchconfig.main")

_SERVICE = "couchconfig"


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------


def _document_count(services: Any) -> Optional[int]:
    if isinstance(services, list):
        return len(services)
    if isinstance(services, dict) and isinstance(services.get("rows"), list):
        return len(services["rows"])
    return None


def attach_audit_handlers(source: ConfigSource, audit: AuditLogger) -> None:
    """Log and audit every ``update`` and ``error`` event of *source*."""

    def _on_update(documents: List[Dict[str, Any]]) -> None:
        for document in documents:
            logger.info(
                "Configuration update: id=%s rev=%s",
                document.get("id"),
                document.get("_rev"),
            )
            audit.log_nowait(
                _SERVICE,
                "update",
                {"id": document.get("id"), "rev": document.get("_rev")},
            )

    def _on_error(exc: BaseException) -> None:
        logger.error("Configuration feed stopped: %s", exc)
        audit.log_nowait(_SERVICE, "feed_error", {"error": str(exc)}, success=False)

    source.subscribe("update", _on_update)
    source.subscribe("error", _on_error)


# ---------------------------------------------------------------------------
# Graceful shutdown
# ---------------------------------------------------------------------------

_shutdown_event: asyncio.Event | None = None


def _handle_signal(sig: int) -> None:
    """Signal handler; sets the shutdown event so the main loop exits cleanly."""
    logger.info("Received signal %s, initiating graceful shutdown...", sig)
    if _shutdown_event is not None:
        _shutdown_event.set()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


async def main(config_path: Optional[Path] = None, once: bool = False) -> int:
    """Top-level async entry point.  Returns the process exit code."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    config = load_config(config_path)
    sync_config = sync_config_from_settings(config)
    audit_path = config.get("audit", {}).get("log_path")
    audit = AuditLogger(Path(audit_path)) if audit_path else AuditLogger()

    source = ConfigSource(sync_config)
    attach_audit_handlers(source, audit)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except NotImplementedError:
            logger.debug("Signal handlers unavailable on this platform")

    try:
        try:
            await source.init()
        except SyncError as exc:
            await audit.log(_SERVICE, "startup", {"error": str(exc)}, success=False)
            logger.error("Could not start configuration source: %s", exc)
            return 1

        await audit.log(
            _SERVICE,
            "startup",
            {
                "database": sync_config.database_name,
                "strategy": source.strategy.name,
            },
        )

        try:
            services = await source.get_services()
        except SyncError as exc:
            logger.error("Initial configuration load failed: %s", exc)
            await audit.log(_SERVICE, "initial_load", {"error": str(exc)}, success=False)
            return 1

        count = _document_count(services)
        logger.info("Loaded %s configuration documents", "?" if count is None else count)
        await audit.log(_SERVICE, "initial_load", {"documents": count})

        if once:
            json.dump(services, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            return 0

        await _shutdown_event.wait()
        await audit.log(_SERVICE, "shutdown", {})
        return 0
    finally:
        try:
            await source.close()
        except Exception:
            logger.exception("Failed to close configuration source")
        try:
            await audit.close()
        except Exception:
            logger.exception("Failed to flush/close audit logger")
        logger.info("couchconfig shut down cleanly.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Follow a CouchDB configuration database"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to settings.toml (default: $COUCHCONFIG_CONFIG or /etc/couchconfig/settings.toml)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Print the current configuration documents as JSON and exit",
    )
    return parser


def run(argv: Optional[List[str]] = None) -> None:
    """Synchronous entry point (called from ``__main__`` or systemd)."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(main(args.config, once=args.once)))


if __name__ == "__main__":
    run()
