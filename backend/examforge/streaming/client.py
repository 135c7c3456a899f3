"""
Progress stream consumer: client side of GET /extractions/{job_id}/progress

One consumer owns at most one live subscription. ``start`` cancels the
previous subscription (and waits for it to unwind) before opening the next,
so two readers never race over the same UI state. Cancelling only stops this
client from reading; the server-side job keeps running.

Stream end vs. network error
────────────────────────────
Once the terminal event has arrived, the server closes the connection. Many
transports report that close exactly like a dropped connection. The consumer
therefore remembers whether it has seen a terminal event for the job, and
after that point every transport error is logged at debug level and never
reported through ``on_error``. Before that point, any transport error, or a
stream that simply ends, is reported as TransportFailed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from examforge.core.errors import TransportFailed
from examforge.schemas.extraction import is_terminal_event, parse_progress_event
from examforge.streaming.sse import SSEParser

logger = logging.getLogger(__name__)

EventCallback = Callable[[Any], None]
ErrorCallback = Callable[[TransportFailed], None]

PROGRESS_PATH = "/api/v1/extractions/{job_id}/progress"


@dataclass
class _Subscription:
    job_id:        str
    terminal_seen: bool = False
    events:        int = 0


class ProgressStreamConsumer:
    """
    Usage::

        consumer = ProgressStreamConsumer("https://exams.example.com")
        await consumer.start(job_id, on_event=render, on_error=show_error)
        ...
        await consumer.cancel()          # e.g. user started another import
    """

    def __init__(
        self,
        base_url: str,
        client:   httpx.AsyncClient | None = None,
        headers:  dict[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client   = client
        self._headers  = dict(headers or {})
        self._task: asyncio.Task | None = None
        self._terminal_jobs: set[str] = set()

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def has_seen_terminal(self, job_id: str) -> bool:
        return job_id in self._terminal_jobs

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(
        self,
        job_id:   str,
        on_event: EventCallback,
        on_error: ErrorCallback | None = None,
        since:    int = 0,
    ) -> asyncio.Task:
        await self.cancel()
        task = asyncio.get_event_loop().create_task(
            self._consume(_Subscription(job_id), on_event, on_error, since),
            name=f"progress-{job_id}",
        )
        self._task = task
        return task

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        # asyncio.wait never raises the task's CancelledError into this coroutine
        await asyncio.wait([task])
        logger.debug("ProgressStreamConsumer | cancelled previous subscription")

    async def wait(self) -> None:
        """Block until the current subscription finishes."""
        if self._task is not None:
            await asyncio.wait([self._task])

    # -----------------------------------------------------------------------
    # Stream loop
    # -----------------------------------------------------------------------

    async def _consume(
        self,
        sub:      _Subscription,
        on_event: EventCallback,
        on_error: ErrorCallback | None,
        since:    int,
    ) -> None:
        url = self._base_url + PROGRESS_PATH.format(job_id=sub.job_id)
        params = {"since": since} if since else None
        headers = {"Accept": "text/event-stream", **self._headers}
        parser = SSEParser()

        client = self._client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=None),
        )
        try:
            async with client.stream("GET", url, params=params, headers=headers) as response:
                if response.status_code >= 400:
                    raise TransportFailed(
                        f"progress stream returned HTTP {response.status_code}", job_id=sub.job_id,
                    )
                async for chunk in response.aiter_bytes():
                    for message in parser.feed(chunk):
                        self._dispatch(sub, message, on_event)
            for message in parser.close():
                self._dispatch(sub, message, on_event)
        except (httpx.HTTPError, TransportFailed) as exc:
            self._report(sub, exc, on_error)
            return
        finally:
            if self._client is None:
                await client.aclose()

        if not sub.terminal_seen:
            self._report(
                sub,
                TransportFailed("progress stream ended before a terminal event", job_id=sub.job_id),
                on_error,
            )

    def _dispatch(self, sub: _Subscription, message: str, on_event: EventCallback) -> None:
        try:
            event = parse_progress_event(message)
        except ValidationError as exc:
            logger.warning(
                "ProgressStreamConsumer | skipped malformed event job_id=%s error=%s",
                sub.job_id, exc.errors()[:1],
            )
            return

        sub.events += 1
        if is_terminal_event(event):
            sub.terminal_seen = True
            self._terminal_jobs.add(sub.job_id)
        on_event(event)

    def _report(self, sub: _Subscription, exc: Exception, on_error: ErrorCallback | None) -> None:
        if sub.terminal_seen or sub.job_id in self._terminal_jobs:
            logger.debug(
                "ProgressStreamConsumer | ignoring transport error after terminal event job_id=%s error=%s",
                sub.job_id, exc,
            )
            return

        failure = exc if isinstance(exc, TransportFailed) else TransportFailed(
            f"progress stream failed: {type(exc).__name__}: {exc}", job_id=sub.job_id,
        )
        logger.warning(
            "ProgressStreamConsumer | stream failed job_id=%s events=%d error=%s",
            sub.job_id, sub.events, failure,
        )
        if on_error is not None:
            on_error(failure)
