# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Asynchronous audit sink for verification requests.

Every inbound verification call produces exactly one :class:`AuditRecord`.
:meth:`AuditSink.record` sanitizes the snapshots, enqueues the record on
an ``asyncio.Queue`` and returns immediately; the caller's response is
never held up by database durability.

A single background worker drains the queue and runs the blocking
"insert one row" writer in a worker thread via ``asyncio.to_thread``.
Writer failures are wrapped in :class:`AuditWriteError` and logged; they
never reach the request that produced the record.

Ordering across requests is not guaranteed.  When the queue is full the
record is dropped with a warning rather than blocking the caller.

Lifecycle mirrors the other background services: ``start()`` on
application startup, ``stop()`` on shutdown.  ``stop()`` drains records
already queued before returning (bounded by ``drain_timeout``).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from nidservice.audit.sanitize import sanitize_for_storage
from nidservice.registry.exceptions import AuditWriteError

logger = logging.getLogger("nid.audit")

__all__ = [
    "AuditContext",
    "AuditOutcome",
    "AuditRecord",
    "AuditSink",
]

RowWriter = Callable[[Dict[str, Any]], None]

# Width of request_logs.nid
SUBJECT_ID_MAX_LENGTH = 20


class AuditOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


# ======================================================================
# Correlation context
# ======================================================================


@dataclass
class AuditContext:
    """Correlation data captured when a request is first received.

    ``received_at`` is a monotonic timestamp used only to measure
    processing time.
    """

    client_ip: str
    system_name: Optional[str]
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    received_at: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> int:
        return int(round((time.monotonic() - self.received_at) * 1000.0))


# ======================================================================
# AuditRecord
# ======================================================================


@dataclass(frozen=True)
class AuditRecord:
    """Immutable audit entry.  Snapshots are already sanitized."""

    request_id: str
    client_ip: str
    system_name: Optional[str]
    subject_id: str
    request_snapshot: Dict[str, Any]
    response_snapshot: Optional[Dict[str, Any]]
    outcome: AuditOutcome
    error_detail: Optional[str]
    processing_time_ms: int
    created_at: datetime

    def to_row(self) -> Dict[str, Any]:
        """Column mapping for the ``request_logs`` table."""
        return {
            "request_id": self.request_id,
            "client_ip": self.client_ip,
            "system_name": self.system_name,
            "nid": self.subject_id,
            "request_data": self.request_snapshot,
            "response_data": self.response_snapshot,
            "status": self.outcome.value,
            "error_message": self.error_detail,
            "processing_time_ms": self.processing_time_ms,
            "created_at": self.created_at,
        }


@dataclass
class AuditMetrics:
    recorded: int = 0
    written: int = 0
    failed: int = 0
    dropped: int = 0

    def to_dict(self) -> dict:
        return {
            "recorded": self.recorded,
            "written": self.written,
            "failed": self.failed,
            "dropped": self.dropped,
        }


# ======================================================================
# AuditSink
# ======================================================================


class AuditSink:
    """Fire-and-forget audit recorder backed by a background writer.

    Parameters
    ----------
    writer : callable
        Blocking function that inserts one row (a dict keyed by
        ``request_logs`` column names).  Run in a worker thread.
    max_queue : int
        Maximum number of records waiting to be written.
    drain_timeout : float
        Seconds ``stop()`` waits for queued records before cancelling.
    """

    def __init__(
        self,
        writer: RowWriter,
        max_queue: int = 1000,
        drain_timeout: float = 10.0,
    ) -> None:
        self._writer = writer
        self._drain_timeout = drain_timeout
        self._queue: asyncio.Queue[Optional[AuditRecord]] = asyncio.Queue(maxsize=max_queue)
        self._task: Optional[asyncio.Task] = None
        self._metrics = AuditMetrics()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def record(
        self,
        request_snapshot: Dict[str, Any],
        response_snapshot: Optional[Dict[str, Any]],
        outcome: AuditOutcome,
        processing_time_ms: int,
        context: AuditContext,
        error_detail: Optional[str] = None,
    ) -> Optional[AuditRecord]:
        """Build, sanitize and enqueue an audit record.  Never blocks.

        Returns the enqueued record, or ``None`` if it was dropped.
        """
        record = AuditRecord(
            request_id=context.request_id,
            client_ip=context.client_ip or "unknown",
            system_name=context.system_name,
            subject_id=str(request_snapshot.get("nid") or "N/A")[:SUBJECT_ID_MAX_LENGTH],
            request_snapshot=sanitize_for_storage(request_snapshot),
            response_snapshot=(
                sanitize_for_storage(response_snapshot)
                if response_snapshot is not None
                else None
            ),
            outcome=outcome,
            error_detail=error_detail,
            processing_time_ms=processing_time_ms,
            created_at=datetime.now(timezone.utc),
        )

        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self._metrics.dropped += 1
            logger.warning(
                "Audit queue full; dropping record %s", record.request_id
            )
            return None

        self._metrics.recorded += 1
        logger.info(
            "Request completed - ID: %s, Status: %s, Time: %dms",
            record.request_id,
            record.outcome.value,
            record.processing_time_ms,
        )
        return record

    async def start(self) -> None:
        """Start the background writer.  Idempotent."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._worker())
        logger.info("Audit sink started")

    async def stop(self) -> None:
        """Drain queued records, then stop the writer."""
        if self._task is None:
            return
        await self._queue.put(None)
        try:
            await asyncio.wait_for(self._task, timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Audit sink did not drain within %.0fs; %d records abandoned",
                self._drain_timeout,
                self._queue.qsize(),
            )
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Audit sink stopped")

    async def join(self) -> None:
        """Wait until every queued record has been processed."""
        await self._queue.join()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def stats(self) -> dict:
        d = self._metrics.to_dict()
        d["pending"] = self._queue.qsize()
        return d

    # ------------------------------------------------------------------
    # Internal worker
    # ------------------------------------------------------------------

    async def _worker(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                # None is the shutdown sentinel, queued behind pending records.
                if record is None:
                    return
                await self._write(record)
            finally:
                self._queue.task_done()

    async def _write(self, record: AuditRecord) -> None:
        try:
            await asyncio.to_thread(self._writer, record.to_row())
        except Exception as e:
            self._metrics.failed += 1
            error = AuditWriteError(record.request_id, str(e))
            logger.error("%s", error)
            return
        self._metrics.written += 1
