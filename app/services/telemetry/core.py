"""
Telemetry Pipeline — Date range in, TelemetrySnapshot out.

Pipeline:
  1. Shift windows for the range (capped at 31 days)
  2. Bucket grid seeded for every shift that has started
  3. Page through conversation details per shift, classify, fold
  4. Resolve agent names (session cache, batch lookup for the rest)
  5. Finalize into ordered collections

Any page failure aborts the run with the original TelephonyError.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone

from app.models.telemetry import TelemetrySnapshot
from app.services.telemetry.aggregator import Aggregator, Pager
from app.services.telemetry.bucketing import build_shift_windows
from app.services.telemetry.finalizer import finalize
from app.services.telephony.auth import TelephonySession
from app.services.telephony.client import ConversationPager, UserNameResolver

logger = logging.getLogger(__name__)


async def aggregate(
    pager: Pager,
    resolver: UserNameResolver,
    date_from: date,
    date_to: date,
    now: datetime | None = None,
) -> TelemetrySnapshot:
    """Run one aggregation with explicit collaborators."""
    now = now or datetime.now(timezone.utc)
    start = time.perf_counter()

    shifts = build_shift_windows(date_from, date_to, now=now)
    aggregator = Aggregator(shifts)
    await aggregator.run(pager, now=now)

    names = await resolver.resolve(aggregator.agents.keys())
    snapshot = finalize(aggregator, names, date_from, date_to, generated_at=now)

    elapsed = (time.perf_counter() - start) * 1000
    logger.info(
        "Metrics %s..%s: %d intervals, %d agents (%.0fms)",
        date_from,
        date_to,
        len(snapshot.history),
        len(snapshot.agents),
        elapsed,
    )
    return snapshot


async def fetch_metrics(
    session: TelephonySession,
    queue_id: str,
    date_from: date,
    date_to: date | None = None,
) -> TelemetrySnapshot:
    """Aggregate a queue's conversations over [date_from, date_to]."""
    return await aggregate(
        ConversationPager(session, queue_id),
        UserNameResolver(session),
        date_from,
        date_to or date_from,
    )
