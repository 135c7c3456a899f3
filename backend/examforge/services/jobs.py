"""
Job Registry: keyed store of extraction jobs with append-only event logs
══════════════════════════════════════════════════════════════════════════

  JobStore
    └── job_id → ExtractionJob
                   ├── state: mode, stage, total_units, completed_units, errors
                   └── events: [e1, e2, … terminal]     (append-only, seq 1..n)

Writers: only the orchestrator task that owns the job calls ``append``.
Readers: any number of cursors.
  - ``events_since(job_id, seq)``  polling cursor (JSON endpoint)
  - ``subscribe(job_id, after)``   async iterator (SSE endpoint)

Readers never block writers and a slow or absent reader loses nothing: the
log is the source of truth, and each reader only remembers its last ``seq``.

Expiry: a job is kept for ``ttl_seconds`` after its terminal event, then
removed by ``purge_expired()`` (called on every ``create`` and by the
application's background sweeper).

All methods must be called from the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator

from examforge.core.config import settings
from examforge.schemas.extraction import (
    CompleteEvent,
    ErrorEvent,
    ExtractionMode,
    ExtractionSummary,
    JobStage,
    ProgressUpdate,
    UnitError,
    is_terminal_event,
)

logger = logging.getLogger(__name__)


class JobNotFound(KeyError):
    pass


class JobClosed(RuntimeError):
    """Raised when appending to a job whose terminal event is already logged."""


@dataclass
class ExtractionJob:
    job_id:          str
    mode:            ExtractionMode
    media_type:      str
    filename:        str
    provider:        str | None = None
    stage:           JobStage = JobStage.QUEUED
    total_units:     int = 0
    completed_units: int = 0
    accumulated_questions: list = field(default_factory=list)
    errors:          list[UnitError] = field(default_factory=list)
    result:          ExtractionSummary | None = None
    events:          list = field(default_factory=list)
    created_at:      float = field(default_factory=time.time)
    finished_at:     float | None = None
    _changed:        asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.finished_at is not None

    @property
    def last_seq(self) -> int:
        return self.events[-1].seq if self.events else 0


class JobStore:
    """
    In-process registry. One instance per application.

    Usage::

        store = JobStore()
        job = store.create(ExtractionMode.VISION, "pdf", "paper.pdf")
        store.append(job.job_id, ProgressUpdate(stage=JobStage.RASTERIZING))
        async for event in store.subscribe(job.job_id):
            ...
    """

    def __init__(self, ttl_seconds: float | None = None) -> None:
        self._ttl  = ttl_seconds if ttl_seconds is not None else settings.job_ttl_seconds
        self._jobs: dict[str, ExtractionJob] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def create(
        self,
        mode:       ExtractionMode,
        media_type: str,
        filename:   str,
        provider:   str | None = None,
    ) -> ExtractionJob:
        self.purge_expired()

        job = ExtractionJob(
            job_id=uuid.uuid4().hex,
            mode=mode,
            media_type=media_type,
            filename=filename,
            provider=provider,
        )
        self._jobs[job.job_id] = job
        self.append(job.job_id, ProgressUpdate(stage=JobStage.QUEUED, message="Job queued"))

        logger.info(
            "JobStore | created job_id=%s mode=%s media_type=%s active=%d",
            job.job_id, mode.value, media_type, len(self._jobs),
        )
        return job

    def get(self, job_id: str) -> ExtractionJob:
        job = self._jobs.get(job_id)
        if job is None or self._is_expired(job, time.time()):
            raise JobNotFound(job_id)
        return job

    def purge_expired(self, now: float | None = None) -> int:
        now = now if now is not None else time.time()
        expired = [jid for jid, job in self._jobs.items() if self._is_expired(job, now)]
        for jid in expired:
            del self._jobs[jid]
        if expired:
            logger.debug("JobStore | purged count=%d remaining=%d", len(expired), len(self._jobs))
        return len(expired)

    def _is_expired(self, job: ExtractionJob, now: float) -> bool:
        return job.finished_at is not None and now - job.finished_at > self._ttl

    # -----------------------------------------------------------------------
    # Writer side
    # -----------------------------------------------------------------------

    def append(self, job_id: str, event):
        """
        Stamp ``event`` with the next seq and the current time, log it, and wake
        subscribers. Returns the stamped event.
        """
        job = self.get(job_id)
        if job.is_terminal:
            raise JobClosed(f"job {job_id} already emitted its terminal event")

        stamped = event.model_copy(update={"seq": job.last_seq + 1, "time": time.time()})
        job.events.append(stamped)

        if isinstance(stamped, ProgressUpdate):
            job.stage = stamped.stage
        elif isinstance(stamped, CompleteEvent):
            job.stage = JobStage.DONE
            job.result = stamped.result
            job.finished_at = stamped.time
        elif isinstance(stamped, ErrorEvent):
            job.stage = JobStage.ERROR
            job.finished_at = stamped.time

        # Wake every waiting subscriber, then arm a fresh event for the next wait
        changed, job._changed = job._changed, asyncio.Event()
        changed.set()
        return stamped

    # -----------------------------------------------------------------------
    # Reader side
    # -----------------------------------------------------------------------

    def events_since(self, job_id: str, seq: int = 0) -> list:
        job = self.get(job_id)
        # seq values are 1..n with no gaps, so the log index is seq - 1
        return job.events[max(seq, 0):]

    async def subscribe(
        self,
        job_id: str,
        after: int = 0,
        idle_timeout: float | None = None,
    ) -> AsyncIterator:
        """
        Yield events with seq > ``after`` in order, waiting for new ones, and
        stop after the terminal event. A cursor at or past the terminal event
        ends the iteration at once.

        With ``idle_timeout``, yields ``None`` whenever that many seconds pass
        without a new event (the SSE endpoint turns it into a keepalive).
        """
        cursor = after
        while True:
            job = self.get(job_id)
            changed = job._changed
            pending = job.events[max(cursor, 0):]

            for event in pending:
                cursor = event.seq
                yield event
                if is_terminal_event(event):
                    return

            # Cursor already at or past the terminal event: nothing more will arrive
            if job.is_terminal and cursor >= job.last_seq:
                return

            if idle_timeout is None:
                await changed.wait()
                continue
            try:
                await asyncio.wait_for(changed.wait(), timeout=idle_timeout)
            except asyncio.TimeoutError:
                yield None
