"""
Structured audit logging. Appends lifecycle events of the configuration
source to a JSON Lines file.

Every significant action (startup, initial load, configuration update,
feed failure, shutdown) is recorded with a timestamp, service name,
action, details dict, and success flag, one JSON object per line.

Events are queued and written by a background task, so ``log_nowait``
can be called from synchronous event handlers running on the loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("shared.audit")

_DEFAULT_LOG_PATH = Path("/var/log/couchconfig/audit.log")


class AuditLogger:
    """Buffered JSON Lines audit logger.

    Args:
        log_path: Path to the audit log file.
        queue_size: Max queued events; further events are dropped (and
            logged) until the writer catches up.
        flush_batch_size: Number of queued events written per append.
    """

    def __init__(
        self,
        log_path: Path = _DEFAULT_LOG_PATH,
        queue_size: int = 1024,
        flush_batch_size: int = 64,
    ) -> None:
        self._log_path = Path(log_path)
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=max(1, queue_size))
        self._flush_batch_size = max(1, flush_batch_size)
        self._worker_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def log_path(self) -> Path:
        return self._log_path

    def _ensure_worker(self) -> None:
        if self._worker_task is None:
            loop = asyncio.get_running_loop()
            self._worker_task = loop.create_task(
                self._worker(),
                name="couchconfig-audit-writer",
            )

    def _append(self, lines: List[str]) -> None:
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_path, "a", encoding="utf-8") as handle:
                handle.write("".join(lines))
        except OSError:
            logger.exception("Failed to write audit log file %s", self._log_path)

    async def _worker(self) -> None:
        """Drain the queue and append lines in small batches."""
        while True:
            line = await self._queue.get()
            if line is None:
                self._queue.task_done()
                break

            batch = [line]
            stop = False
            while len(batch) < self._flush_batch_size:
                try:
                    maybe_next = self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                if maybe_next is None:
                    self._queue.task_done()
                    stop = True
                    break
                batch.append(maybe_next)

            await asyncio.to_thread(self._append, batch)
            for _ in batch:
                self._queue.task_done()

            if stop:
                break

    @staticmethod
    def _format(
        service: str,
        action: str,
        details: Optional[Dict[str, Any]],
        success: bool,
    ) -> str:
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": service,
            "action": action,
            "details": details or {},
            "success": success,
        }
        return json.dumps(event, default=str) + "\n"

    def log_nowait(
        self,
        service: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
    ) -> bool:
        """Queue an audit event without waiting.  Must run on the loop.

        Returns:
            ``False`` if the event was dropped (logger closed or queue full).
        """
        if self._closed:
            logger.debug(
                "Dropping audit event after logger close: service=%s action=%s",
                service,
                action,
            )
            return False
        self._ensure_worker()
        try:
            self._queue.put_nowait(self._format(service, action, details, success))
        except asyncio.QueueFull:
            logger.warning("Audit queue full; dropping event %s/%s", service, action)
            return False
        return True

    async def log(
        self,
        service: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
    ) -> None:
        """Record an audit event, waiting for queue space if needed.

        Args:
            service: Originating service (``"couchconfig"``).
            action: Action identifier (e.g. ``"startup"``, ``"update"``,
                    ``"feed_error"``).
            details: Arbitrary JSON-serialisable metadata.
            success: Whether the action succeeded.
        """
        if self._closed:
            logger.debug(
                "Dropping audit event after logger close: service=%s action=%s",
                service,
                action,
            )
            return
        self._ensure_worker()
        await self._queue.put(self._format(service, action, details, success))

    async def close(self) -> None:
        """Flush queued events and stop the background writer."""
        if self._closed:
            return
        self._closed = True
        worker = self._worker_task
        if worker is not None:
            await self._queue.put(None)
            await worker
            self._worker_task = None
