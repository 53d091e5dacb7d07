"""
Finalizer — Turns a finished Aggregator into ordered output collections.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timezone
from typing import Mapping

from app.models.telemetry import (
    AgentPerformance,
    BranchData,
    CallerData,
    TelemetrySnapshot,
    UnifiedDataPoint,
    WrapUpData,
)
from app.services.telemetry.aggregator import Aggregator, Bucket

UNKNOWN_AGENT = "Unknown Agent"


def to_data_point(key: str, bucket: Bucket) -> UnifiedDataPoint:
    """Derive per-interval KPIs; rates stay None when they have no samples."""
    return UnifiedDataPoint(
        timestamp=key,
        offered=bucket.offered,
        answered=bucket.answered,
        abandoned=bucket.abandoned,
        sl_percent=(
            bucket.sl_met / bucket.offered * 100 if bucket.offered > 0 else None
        ),
        mos=bucket.mos_sum / bucket.mos_count if bucket.mos_count > 0 else None,
        aht=(
            (bucket.handle_time_sum_ms / 1000) / bucket.handle_time_count
            if bucket.handle_time_count > 0
            else None
        ),
        agents_count=len(bucket.agent_ids),
        conversations_count=bucket.offered,
    )


def build_history(buckets: Mapping[str, Bucket]) -> list[UnifiedDataPoint]:
    # Keys are fixed-width "YYYY-MM-DD HH:MM", so lexical order is chronological
    return [to_data_point(key, buckets[key]) for key in sorted(buckets)]


def rank(counter: Counter[str]) -> list[tuple[str, int]]:
    """Count descending; ties keep first-seen order."""
    return sorted(counter.items(), key=lambda item: item[1], reverse=True)


def build_agents(
    aggregator: Aggregator,
    names: Mapping[str, str],
) -> list[AgentPerformance]:
    return [
        AgentPerformance(
            user_id=agent.user_id,
            name=names.get(agent.user_id, UNKNOWN_AGENT),
            answered=agent.answered,
            missed=agent.missed,
            handle_time_ms=agent.handle_time_ms,
            first_activity=agent.first_activity,
            last_activity=agent.last_activity,
        )
        for agent in aggregator.agents.values()
    ]


def finalize(
    aggregator: Aggregator,
    names: Mapping[str, str],
    date_from: date,
    date_to: date,
    generated_at: datetime | None = None,
) -> TelemetrySnapshot:
    """Build the five output collections from a completed run."""
    return TelemetrySnapshot(
        date_from=date_from,
        date_to=date_to,
        generated_at=generated_at or datetime.now(timezone.utc),
        shifts_fetched=len(aggregator.fetched_shifts),
        history=build_history(aggregator.buckets),
        agents=build_agents(aggregator, names),
        top_callers=[
            CallerData(number=number, count=count)
            for number, count in rank(aggregator.callers)
        ],
        wrap_ups=[
            WrapUpData(name=name, count=count)
            for name, count in rank(aggregator.wrap_ups)
        ],
        branches=[
            BranchData(name=name, count=count)
            for name, count in rank(aggregator.branches)
        ],
    )
