"""
Tests for the Aggregator, Finalizer and the aggregation pipeline.

Covers: bucket pre-seeding, folding, pagination limits, run failure,
end-to-end KPIs, frequency ranking, agent roster, idempotence.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.telemetry import ConversationResult
from app.services.telemetry import aggregator as aggregator_mod
from app.services.telemetry.aggregator import Aggregator
from app.services.telemetry.bucketing import build_shift_windows
from app.services.telemetry.core import aggregate
from app.services.telemetry.finalizer import finalize
from app.services.telephony.client import ConversationPage
from app.services.telephony.errors import TelephonyAPIError

_DAY = date(2025, 3, 10)
_NOW = datetime(2025, 3, 12, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# HELPERS
# =============================================================================


def _iso(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _answered(
    start: datetime,
    *,
    agent: str = "agent-1",
    ani: str = "tel:+9647701234567",
    interact_after_ms: int = 3000,
    duration_ms: int = 42000,
    mos: float | None = 4.6,
    wrap_up: str | None = None,
) -> dict[str, Any]:
    seg_start = start + timedelta(milliseconds=interact_after_ms)
    seg_end = seg_start + timedelta(milliseconds=duration_ms)
    session: dict[str, Any] = {
        "mediaType": "voice",
        "segments": [
            {"segmentType": "alert", "segmentStart": _iso(start), "segmentEnd": _iso(seg_start)},
            {"segmentType": "interact", "segmentStart": _iso(seg_start), "segmentEnd": _iso(seg_end)},
        ],
    }
    if wrap_up:
        session["segments"].append(
            {
                "segmentType": "wrapup",
                "segmentStart": _iso(seg_end),
                "segmentEnd": _iso(seg_end),
                "wrapUpName": wrap_up,
            }
        )
    if mos is not None:
        session["mediaEndpointStats"] = [{"mos": mos}]
    return {
        "conversationId": f"conv-{start.isoformat()}-{agent}",
        "conversationStart": _iso(start),
        "participants": [
            {
                "purpose": "customer",
                "sessions": [{"mediaType": "voice", "ani": ani, "dnis": "tel:+9647734011011"}],
            },
            {"purpose": "acd"},
            {"purpose": "agent", "userId": agent, "sessions": [session]},
        ],
    }


def _abandoned(start: datetime, ani: str = "tel:+9647709999999") -> dict[str, Any]:
    return {
        "conversationId": f"conv-{start.isoformat()}-abandoned",
        "conversationStart": _iso(start),
        "participants": [
            {"purpose": "customer", "sessions": [{"mediaType": "voice", "ani": ani}]},
            {"purpose": "acd"},
        ],
    }


def _utc(hour: int, minute: int, day: int = 10) -> datetime:
    return datetime(2025, 3, day, hour, minute, tzinfo=timezone.utc)


class _FakePager:
    """Serves preset pages per interval; an empty page after the list ends."""

    def __init__(self, pages: dict[str, list[list[dict[str, Any]]]], page_size: int = 100) -> None:
        self.pages = pages
        self.page_size = page_size
        self.calls: list[tuple[str, int]] = []

    async def fetch(self, interval: str, page_number: int) -> ConversationPage:
        self.calls.append((interval, page_number))
        shift_pages = self.pages.get(interval, [])
        records = shift_pages[page_number - 1] if page_number <= len(shift_pages) else []
        return ConversationPage(
            records=records,
            page_number=page_number,
            is_last_page=len(records) < self.page_size,
        )


def _resolver(names: dict[str, str] | None = None) -> MagicMock:
    resolver = MagicMock()
    resolver.resolve = AsyncMock(return_value=names or {})
    return resolver


def _interval(day: date = _DAY) -> str:
    return build_shift_windows(day, day, now=_NOW)[0].interval


# =============================================================================
# SEEDING
# =============================================================================


@pytest.mark.unit
class TestSeeding:
    def test_fetched_shift_fully_seeded(self) -> None:
        agg = Aggregator(build_shift_windows(_DAY, _DAY, now=_NOW))
        assert len(agg.buckets) == 36
        assert all(b.offered == 0 for b in agg.buckets.values())

    def test_future_shift_absent(self) -> None:
        shifts = build_shift_windows(date(2025, 3, 12), date(2025, 3, 13), now=_NOW)
        agg = Aggregator(shifts)

        assert "2025-03-12 09:00" in agg.buckets
        assert "2025-03-13 09:00" not in agg.buckets
        assert len(agg.buckets) == 36

    @pytest.mark.asyncio
    async def test_empty_traffic_keeps_zero_rows(self) -> None:
        snapshot = await aggregate(_FakePager({}), _resolver(), _DAY, _DAY, now=_NOW)

        assert len(snapshot.history) == 36
        first = snapshot.history[0]
        assert first.offered == 0
        assert first.mos is None
        assert first.aht is None
        assert first.sl_percent is None
        assert first.agents_count == 0


# =============================================================================
# FOLDING
# =============================================================================


@pytest.mark.unit
class TestFold:
    def test_unseeded_bucket_skipped_entirely(self) -> None:
        agg = Aggregator(build_shift_windows(_DAY, _DAY, now=_NOW))
        result = ConversationResult(
            bucket_key="2030-01-01 10:00",
            outcome="answered",
            callers=("+964",),
            observed_agents=("agent-1",),
        )

        assert agg.fold(result) is False
        assert agg.callers == {}
        assert agg.agents == {}

    def test_answered_and_abandoned_exclusive(self) -> None:
        agg = Aggregator(build_shift_windows(_DAY, _DAY, now=_NOW))
        agg.fold_records(
            [_answered(_utc(7, 5)), _abandoned(_utc(7, 10)), _abandoned(_utc(7, 20))],
            now=_NOW,
        )
        bucket = agg.buckets["2025-03-10 10:00"]

        assert bucket.offered == 3
        assert bucket.answered == 1
        assert bucket.abandoned == 2
        assert bucket.answered + bucket.abandoned <= bucket.offered

    def test_unresolved_counts_only_offered(self) -> None:
        agg = Aggregator(build_shift_windows(_DAY, _DAY, now=_NOW))
        record = _abandoned(_utc(8, 0))
        record["participants"] = record["participants"][:1]  # no acd
        agg.fold_records([record], now=_NOW)
        bucket = agg.buckets["2025-03-10 11:00"]

        assert (bucket.offered, bucket.answered, bucket.abandoned) == (1, 0, 0)

    def test_record_without_start_counted_as_skipped(self) -> None:
        agg = Aggregator(build_shift_windows(_DAY, _DAY, now=_NOW))
        agg.fold_records([{"conversationId": "broken"}], now=_NOW)
        assert agg.conversations_skipped == 1
        assert sum(b.offered for b in agg.buckets.values()) == 0


# =============================================================================
# PAGINATION
# =============================================================================


@pytest.mark.unit
class TestPagination:
    @pytest.mark.asyncio
    async def test_stops_on_short_page(self) -> None:
        full_page = [_abandoned(_utc(7, 5), ani=f"tel:{i}") for i in range(100)]
        short_page = [_abandoned(_utc(7, 40))]
        pager = _FakePager({_interval(): [full_page, short_page]})

        agg = Aggregator(build_shift_windows(_DAY, _DAY, now=_NOW))
        await agg.run(pager, now=_NOW)

        assert [n for _, n in pager.calls] == [1, 2]
        assert agg.buckets["2025-03-10 10:00"].offered == 100
        assert agg.buckets["2025-03-10 10:30"].offered == 1

    @pytest.mark.asyncio
    async def test_page_ceiling(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(aggregator_mod, "MAX_PAGES", 3)
        page = [_abandoned(_utc(7, 5))]
        pager = _FakePager({_interval(): [page] * 10}, page_size=1)

        agg = Aggregator(build_shift_windows(_DAY, _DAY, now=_NOW))
        await agg.run(pager, now=_NOW)

        assert len(pager.calls) == 3
        assert agg.buckets["2025-03-10 10:00"].offered == 3

    @pytest.mark.asyncio
    async def test_only_started_shifts_fetched(self) -> None:
        pager = _FakePager({})
        shifts = build_shift_windows(date(2025, 3, 11), date(2025, 3, 14), now=_NOW)
        agg = Aggregator(shifts)
        await agg.run(pager, now=_NOW)

        fetched = [interval for interval, _ in pager.calls]
        assert fetched == [s.interval for s in shifts[:2]]

    @pytest.mark.asyncio
    async def test_page_failure_aborts_run(self) -> None:
        pager = MagicMock()
        pager.fetch = AsyncMock(
            side_effect=[
                ConversationPage(records=[], page_number=1, is_last_page=True),
                TelephonyAPIError("Analytics failed: 503", status_code=503),
            ]
        )
        resolver = _resolver()

        with pytest.raises(TelephonyAPIError) as exc_info:
            await aggregate(pager, resolver, _DAY, date(2025, 3, 11), now=_NOW)

        assert exc_info.value.status_code == 503
        resolver.resolve.assert_not_called()


# =============================================================================
# END TO END
# =============================================================================


@pytest.mark.unit
class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_single_answered_call(self) -> None:
        pager = _FakePager({_interval(): [[_answered(_utc(7, 5))]]})
        snapshot = await aggregate(
            pager, _resolver({"agent-1": "Noor"}), _DAY, _DAY, now=_NOW
        )

        point = next(p for p in snapshot.history if p.timestamp == "2025-03-10 10:00")
        assert point.offered == 1
        assert point.answered == 1
        assert point.abandoned == 0
        assert point.sl_percent == 100
        assert point.mos == pytest.approx(4.6)
        assert point.aht == pytest.approx(42.0)
        assert point.agents_count == 1
        assert point.conversations_count == 1

        assert snapshot.agents[0].name == "Noor"
        assert snapshot.agents[0].answered == 1
        assert snapshot.agents[0].handle_time_ms == 42000
        assert snapshot.branches[0].name == "Al-Dolai"

    @pytest.mark.asyncio
    async def test_single_abandoned_call(self) -> None:
        pager = _FakePager({_interval(): [[_abandoned(_utc(7, 5))]]})
        snapshot = await aggregate(pager, _resolver(), _DAY, _DAY, now=_NOW)

        point = next(p for p in snapshot.history if p.timestamp == "2025-03-10 10:00")
        assert (point.offered, point.answered, point.abandoned) == (1, 0, 1)
        assert point.sl_percent == 0
        assert point.aht is None
        assert point.mos is None

    @pytest.mark.asyncio
    async def test_weighted_by_call(self) -> None:
        records = [
            _answered(_utc(7, 0), duration_ms=30000, mos=4.0),
            _answered(_utc(7, 10), duration_ms=90000, mos=5.0, interact_after_ms=20000),
            _abandoned(_utc(7, 20)),
        ]
        pager = _FakePager({_interval(): [records]})
        snapshot = await aggregate(pager, _resolver(), _DAY, _DAY, now=_NOW)

        point = next(p for p in snapshot.history if p.timestamp == "2025-03-10 10:00")
        assert point.aht == pytest.approx(60.0)
        assert point.mos == pytest.approx(4.5)
        assert point.sl_percent == pytest.approx(100 / 3)

    @pytest.mark.asyncio
    async def test_history_sorted_across_days(self) -> None:
        pager = _FakePager({})
        snapshot = await aggregate(pager, _resolver(), _DAY, date(2025, 3, 11), now=_NOW)

        keys = [p.timestamp for p in snapshot.history]
        assert keys == sorted(keys)
        assert len(keys) == 72
        assert snapshot.shifts_fetched == 2


# =============================================================================
# SIDE TABLES
# =============================================================================


@pytest.mark.unit
class TestSideTables:
    @pytest.mark.asyncio
    async def test_repeat_caller_ranked_first(self) -> None:
        records = [
            _abandoned(_utc(7, 0), ani="tel:+111"),
            _abandoned(_utc(7, 10), ani="tel:+222"),
            _abandoned(_utc(7, 20), ani="sip:+222@carrier"),
        ]
        pager = _FakePager({_interval(): [records]})
        snapshot = await aggregate(pager, _resolver(), _DAY, _DAY, now=_NOW)

        assert [(c.number, c.count) for c in snapshot.top_callers] == [("+222", 2), ("+111", 1)]

    def test_ties_keep_insertion_order(self) -> None:
        agg = Aggregator(build_shift_windows(_DAY, _DAY, now=_NOW))
        agg.fold_records(
            [
                _answered(_utc(7, 0), wrap_up="Inquiry"),
                _answered(_utc(7, 5), wrap_up="Complaint"),
                _answered(_utc(7, 10), wrap_up="Sale"),
                _answered(_utc(7, 15), wrap_up="Sale"),
            ],
            now=_NOW,
        )
        snapshot = finalize(agg, {}, _DAY, _DAY, generated_at=_NOW)

        assert [w.name for w in snapshot.wrap_ups] == ["Sale", "Inquiry", "Complaint"]

    def test_agent_roster_and_placeholder(self) -> None:
        missed = _answered(_utc(7, 30), agent="agent-2")
        # agent-2 only rang, agent-1 picked up
        missed["participants"][2]["sessions"][0]["segments"] = [
            {
                "segmentType": "alert",
                "segmentStart": _iso(_utc(7, 30)),
                "segmentEnd": _iso(_utc(7, 31)),
            }
        ]
        picked_up = _answered(_utc(7, 31))
        missed["participants"].append(picked_up["participants"][2])

        agg = Aggregator(build_shift_windows(_DAY, _DAY, now=_NOW))
        agg.fold_records([_answered(_utc(7, 0)), missed], now=_NOW)
        snapshot = finalize(agg, {"agent-1": "Noor"}, _DAY, _DAY, generated_at=_NOW)

        roster = {a.user_id: a for a in snapshot.agents}
        assert roster["agent-1"].name == "Noor"
        assert roster["agent-1"].answered == 2
        assert roster["agent-2"].name == "Unknown Agent"
        assert roster["agent-2"].missed == 1
        assert roster["agent-2"].answered == 0
        assert roster["agent-1"].first_activity == _utc(7, 0)
        assert agg.buckets["2025-03-10 10:30"].answered == 1
        assert len(agg.buckets["2025-03-10 10:30"].agent_ids) == 2


# =============================================================================
# IDEMPOTENCE
# =============================================================================


@pytest.mark.unit
class TestIdempotence:
    @pytest.mark.asyncio
    async def test_two_runs_identical(self) -> None:
        records = [
            _answered(_utc(7, 5), wrap_up="Inquiry"),
            _abandoned(_utc(9, 40)),
            _answered(_utc(12, 10), agent="agent-2", mos=3.8),
        ]
        pages = {_interval(): [records]}

        first = await aggregate(_FakePager(pages), _resolver(), _DAY, _DAY, now=_NOW)
        second = await aggregate(_FakePager(pages), _resolver(), _DAY, _DAY, now=_NOW)

        assert first.model_dump_json() == second.model_dump_json()
