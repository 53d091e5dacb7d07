"""
Aggregator — Owns the bucket grid and side-tables for one aggregation run.

Pages through every fetched shift sequentially, classifies each record and
folds the result. A TelephonyAPIError from any page propagates and the run
produces nothing. A new run starts from an empty Aggregator; nothing carries
over between runs.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, Field

from app.models.telemetry import ConversationResult, ShiftWindow
from app.services.telemetry.bucketing import shift_bucket_keys
from app.services.telemetry.classifier import classify_conversation

logger = logging.getLogger(__name__)

MAX_PAGES = 100


class Page(Protocol):
    records: list[dict[str, Any]]
    is_last_page: bool


class Pager(Protocol):
    async def fetch(self, interval: str, page_number: int) -> Page: ...


# =============================================================================
# ACCUMULATORS
# =============================================================================


class Bucket(BaseModel):
    """Running totals for one 30-minute interval."""

    offered: int = 0
    answered: int = 0
    abandoned: int = 0
    sl_met: int = 0
    mos_sum: float = 0.0
    mos_count: int = 0
    handle_time_sum_ms: int = 0
    handle_time_count: int = 0
    agent_ids: set[str] = Field(default_factory=set)


class AgentAccumulator(BaseModel):
    """Running totals for one agent across the whole run."""

    user_id: str
    answered: int = 0
    missed: int = 0
    handle_time_ms: int = 0
    first_activity: datetime | None = None
    last_activity: datetime | None = None


# =============================================================================
# AGGREGATOR
# =============================================================================


class Aggregator:
    """Bucket map plus agent, caller, wrap-up and branch tables."""

    def __init__(self, shifts: list[ShiftWindow]) -> None:
        self.shifts = shifts
        self.buckets: dict[str, Bucket] = {}
        self.agents: dict[str, AgentAccumulator] = {}
        self.callers: Counter[str] = Counter()
        self.wrap_ups: Counter[str] = Counter()
        self.branches: Counter[str] = Counter()
        self.conversations_seen = 0
        self.conversations_skipped = 0

        # Only shifts that will be fetched get a grid; future shifts stay absent
        for shift in shifts:
            if not shift.fetch_needed:
                continue
            for key in shift_bucket_keys(shift):
                self.buckets.setdefault(key, Bucket())

    @property
    def fetched_shifts(self) -> list[ShiftWindow]:
        return [s for s in self.shifts if s.fetch_needed]

    def fold(self, result: ConversationResult) -> bool:
        """Fold one classified conversation. Returns False if its bucket is unseeded."""
        bucket = self.buckets.get(result.bucket_key)
        if bucket is None:
            self.conversations_skipped += 1
            logger.debug("Conversation outside fetched shifts: %s", result.bucket_key)
            return False

        bucket.offered += 1
        bucket.agent_ids.update(result.present_agents)
        bucket.mos_sum += sum(result.mos_samples)
        bucket.mos_count += len(result.mos_samples)
        bucket.handle_time_sum_ms += result.handle_time_ms

        if result.outcome == "answered":
            bucket.answered += 1
            bucket.handle_time_count += 1
            if result.sl_met:
                bucket.sl_met += 1
        elif result.outcome == "abandoned":
            bucket.abandoned += 1

        for user_id in result.observed_agents:
            if user_id not in self.agents:
                self.agents[user_id] = AgentAccumulator(user_id=user_id)

        for event in result.agent_events:
            agent = self.agents[event.user_id]
            agent.handle_time_ms += event.handle_time_ms
            if event.interacted:
                agent.answered += 1
            elif event.missed:
                agent.missed += 1
            if event.first_activity is not None and (
                agent.first_activity is None or event.first_activity < agent.first_activity
            ):
                agent.first_activity = event.first_activity
            if event.last_activity is not None and (
                agent.last_activity is None or event.last_activity > agent.last_activity
            ):
                agent.last_activity = event.last_activity

        self.callers.update(result.callers)
        self.wrap_ups.update(result.wrap_ups)
        self.branches.update(result.branches)
        return True

    def fold_records(
        self,
        records: list[dict[str, Any]],
        now: datetime | None = None,
    ) -> None:
        for record in records:
            self.conversations_seen += 1
            result = classify_conversation(record, now=now)
            if result is None:
                self.conversations_skipped += 1
                continue
            self.fold(result)

    async def run(self, pager: Pager, now: datetime | None = None) -> None:
        """Fetch and fold every page of every fetched shift, in order."""
        now = now or datetime.now(timezone.utc)

        for shift in self.fetched_shifts:
            pages = 0
            for page_number in range(1, MAX_PAGES + 1):
                page = await pager.fetch(shift.interval, page_number)
                pages += 1
                self.fold_records(page.records, now=now)
                if page.is_last_page:
                    break
            else:
                logger.warning(
                    "Shift %s hit the %d page ceiling; remaining pages ignored",
                    shift.interval,
                    MAX_PAGES,
                )
            logger.info("Shift %s: %d pages", shift.interval, pages)

        logger.info(
            "Aggregation complete: %d shifts, %d conversations (%d skipped)",
            len(self.fetched_shifts),
            self.conversations_seen,
            self.conversations_skipped,
        )
