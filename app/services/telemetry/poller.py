"""
Metrics Poller — Fixed-interval refresh with last-fetch-wins publishing.

Every refresh takes a new generation number. When a run finishes, its result
is published only if no newer refresh (or range change) has started since;
otherwise it is dropped. Failures are recorded and the last good snapshot
stays in place until the next cycle.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Awaitable, Callable

from app.models.telemetry import TelemetrySnapshot
from app.services.telephony.auth import TelephonySession
from app.services.telephony.errors import TelephonyError

logger = logging.getLogger(__name__)

FetchFn = Callable[[TelephonySession, str, date, date], Awaitable[TelemetrySnapshot]]


class MetricsPoller:
    """Owns the latest snapshot for one session + queue."""

    def __init__(
        self,
        session: TelephonySession,
        queue_id: str,
        fetch: FetchFn,
        interval_seconds: float,
    ) -> None:
        self.session = session
        self.queue_id = queue_id
        self.interval_seconds = interval_seconds
        self._fetch = fetch
        self._generation = 0
        self._task: asyncio.Task[None] | None = None

        today = datetime.now(timezone.utc).date()
        self.date_from: date = today
        self.date_to: date = today
        self.snapshot: TelemetrySnapshot | None = None
        self.last_error: str | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_range(self, date_from: date, date_to: date) -> bool:
        """Change the polled range. Returns True if it changed."""
        if (date_from, date_to) == (self.date_from, self.date_to):
            return False
        self.date_from = date_from
        self.date_to = date_to
        self._generation += 1  # anything in flight is now stale
        self.snapshot = None
        return True

    async def refresh(self) -> TelemetrySnapshot | None:
        """Run one aggregation; publish it only if still the latest.

        Raises the TelephonyError of a failed run after recording it, unless
        a newer run has started since; a stale failure is ignored like a
        stale result.
        """
        self._generation += 1
        generation = self._generation
        date_from, date_to = self.date_from, self.date_to

        try:
            snapshot = await self._fetch(self.session, self.queue_id, date_from, date_to)
        except TelephonyError as e:
            if generation != self._generation:
                logger.debug(
                    "Ignoring failure of stale run (generation %d, current %d): %s",
                    generation,
                    self._generation,
                    e,
                )
                return self.snapshot
            self.last_error = str(e)
            raise

        if generation != self._generation:
            logger.debug(
                "Dropping stale metrics (generation %d, current %d)",
                generation,
                self._generation,
            )
            return self.snapshot

        self.snapshot = snapshot
        self.last_error = None
        return snapshot

    async def _loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except TelephonyError as e:
                logger.error("Metrics poll failed: %s", e)
            except Exception:
                logger.exception("Unexpected metrics poll failure")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Polling queue %s every %ss", self.queue_id, self.interval_seconds
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._generation += 1
        logger.info("Polling stopped for queue %s", self.queue_id)
