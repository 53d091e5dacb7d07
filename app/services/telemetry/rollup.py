"""
Roll-ups — Daily view, KPI summary rows and MOS quality alerts.

Everything here works on finished data points. Rates are always re-weighted
by the volumes behind them (MOS by offered, AHT by answered, SL by offered),
never averaged across intervals.
"""

from __future__ import annotations

from typing import Sequence

from app.models.telemetry import (
    DailyDataPoint,
    KPIRow,
    KPISummary,
    QualityAlert,
    UnifiedDataPoint,
)

# MOS below this is critical regardless of the configured threshold
MOS_CRITICAL = 4.3

Point = UnifiedDataPoint | DailyDataPoint


# =============================================================================
# DAILY ROLL-UP
# =============================================================================


class _DayTotals:
    def __init__(self) -> None:
        self.offered = 0
        self.answered = 0
        self.abandoned = 0
        self.agents_max = 0
        self.mos_weighted = 0.0
        self.mos_weight = 0
        self.aht_weighted = 0.0
        self.aht_weight = 0
        self.sl_met = 0.0

    def add(self, point: UnifiedDataPoint) -> None:
        self.offered += point.offered
        self.answered += point.answered
        self.abandoned += point.abandoned
        self.agents_max = max(self.agents_max, point.agents_count)
        if point.mos is not None:
            self.mos_weighted += point.mos * point.offered
            self.mos_weight += point.offered
        if point.aht is not None:
            self.aht_weighted += point.aht * point.answered
            self.aht_weight += point.answered
        if point.sl_percent is not None:
            self.sl_met += point.sl_percent * point.offered / 100


def rollup_daily(history: Sequence[UnifiedDataPoint]) -> list[DailyDataPoint]:
    """Fold 30-minute points into one point per calendar day."""
    days: dict[str, _DayTotals] = {}
    for point in history:
        day = point.timestamp.split(" ")[0]
        days.setdefault(day, _DayTotals()).add(point)

    return [
        DailyDataPoint(
            timestamp=day,
            offered=t.offered,
            answered=t.answered,
            abandoned=t.abandoned,
            mos=t.mos_weighted / t.mos_weight if t.mos_weight > 0 else None,
            aht=t.aht_weighted / t.aht_weight if t.aht_weight > 0 else None,
            sl_percent=t.sl_met / t.offered * 100 if t.offered > 0 else None,
            agents_count=t.agents_max,
            conversations_count=t.offered,
        )
        for day, t in sorted(days.items())
    ]


# =============================================================================
# KPI SUMMARY
# =============================================================================


def _positive_min(values: list[float]) -> float:
    positives = [v for v in values if v > 0]
    return min(positives) if positives else 0.0


def summarize(points: Sequence[Point], agent_count: int) -> KPISummary:
    """Summary row plus best/worst interval per KPI.

    agent_count is the roster size, not a per-interval figure.
    """
    offered = sum(p.offered for p in points)
    answered = sum(p.answered for p in points)
    abandoned = sum(p.abandoned for p in points)

    sl_met = sum(p.sl_percent * p.offered / 100 for p in points if p.sl_percent is not None)
    mos_weight = sum(p.offered for p in points if p.mos is not None)
    mos_weighted = sum(p.mos * p.offered for p in points if p.mos is not None)
    handle_time = sum(p.aht * p.answered for p in points if p.aht is not None)

    summary = KPIRow(
        mos=mos_weighted / mos_weight if mos_weight > 0 else 0.0,
        sl=sl_met / offered * 100 if offered > 0 else 0.0,
        offered=offered,
        answered=answered,
        abandoned=abandoned,
        agents=agent_count,
        aht=handle_time / answered if answered > 0 else 0.0,
        avg_calls=answered / agent_count if agent_count > 0 else 0.0,
    )

    if not points:
        empty = KPIRow(
            mos=0.0, sl=0.0, offered=0, answered=0, abandoned=0,
            agents=0, aht=0.0, avg_calls=0.0,
        )
        return KPISummary(summary=summary, max=empty, min=empty)

    mos = [p.mos or 0.0 for p in points]
    sl = [p.sl_percent or 0.0 for p in points]
    aht = [p.aht or 0.0 for p in points]
    avg_calls = [
        p.answered / p.agents_count if p.agents_count > 0 else 0.0 for p in points
    ]
    offered_each = [p.offered for p in points]
    answered_each = [p.answered for p in points]
    abandoned_each = [p.abandoned for p in points]
    agents_each = [p.agents_count for p in points]

    return KPISummary(
        summary=summary,
        max=KPIRow(
            mos=max(mos),
            sl=max(sl),
            offered=max(offered_each),
            answered=max(answered_each),
            abandoned=max(abandoned_each),
            agents=max(agents_each),
            aht=max(aht),
            avg_calls=max(avg_calls),
        ),
        min=KPIRow(
            mos=_positive_min(mos),
            sl=_positive_min(sl),
            offered=min(offered_each),
            answered=min(answered_each),
            abandoned=min(abandoned_each),
            agents=min(agents_each),
            aht=_positive_min(aht),
            avg_calls=_positive_min(avg_calls),
        ),
    )


# =============================================================================
# ALERTS
# =============================================================================


def build_alerts(points: Sequence[Point], threshold: float) -> list[QualityAlert]:
    """One alert per point whose MOS is below threshold."""
    alerts: list[QualityAlert] = []
    for p in points:
        if p.mos is None or p.mos >= threshold:
            continue
        severity = "high" if p.mos < MOS_CRITICAL else "medium"
        alerts.append(
            QualityAlert(
                id=f"mos-{p.timestamp}",
                timestamp=p.timestamp,
                value=round(p.mos, 2),
                message=(
                    f"MOS {p.mos:.2f} below threshold {threshold:.2f} "
                    f"across {p.offered} offered calls"
                ),
                severity=severity,
            )
        )
    return alerts
