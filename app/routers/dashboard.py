"""
Dashboard Router — HTTP endpoints for queue telemetry.

Endpoints:
  POST /dashboard/connect        — Authenticate, resolve queue, start polling
  POST /dashboard/disconnect     — Stop polling, drop cached credentials state
  GET  /dashboard/metrics        — Time series, roster, frequency tables, KPIs
  GET  /dashboard/agents/export  — Agent roster as CSV
  POST /dashboard/forensics      — LLM narrative over the MOS series
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from app.config import settings
from app.models.telemetry import (
    ConnectRequest,
    ConnectResponse,
    DashboardResponse,
    DailyDataPoint,
    ForensicsResponse,
    TelemetrySnapshot,
    UnifiedDataPoint,
)
from app.services import forensics
from app.services.dashboard import DashboardState
from app.services.telemetry.poller import MetricsPoller
from app.services.telemetry.rollup import build_alerts, rollup_daily, summarize
from app.services.telephony.errors import (
    QueueNotFoundError,
    TelephonyAuthError,
    TelephonyError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_dashboard(request: Request) -> DashboardState:
    return request.app.state.dashboard


def get_poller(dashboard: DashboardState = Depends(get_dashboard)) -> MetricsPoller:
    if dashboard.poller is None:
        raise HTTPException(status_code=409, detail="Not connected to a queue")
    return dashboard.poller


def _telephony_http_error(e: TelephonyError) -> HTTPException:
    """Map a telephony failure to an HTTP error, message passed through."""
    if isinstance(e, TelephonyAuthError):
        return HTTPException(status_code=401, detail=str(e))
    if isinstance(e, QueueNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


async def _current_snapshot(
    poller: MetricsPoller,
    date_from: date,
    date_to: date,
    refresh: bool,
) -> TelemetrySnapshot:
    changed = poller.set_range(date_from, date_to)
    if changed or refresh or poller.snapshot is None:
        try:
            snapshot = await poller.refresh()
        except TelephonyError as e:
            logger.error("Dashboard: metrics fetch failed: %s", e)
            raise _telephony_http_error(e)
        if snapshot is not None:
            return snapshot
    if poller.snapshot is None:
        raise HTTPException(status_code=503, detail="Metrics not available yet")
    return poller.snapshot


def _resolve_range(date_from: date | None, date_to: date | None) -> tuple[date, date]:
    start = date_from or datetime.now(timezone.utc).date()
    end = date_to or start
    if end < start:
        raise HTTPException(status_code=422, detail="date_to is before date_from")
    return start, end


def _points(
    snapshot: TelemetrySnapshot,
    view: str,
) -> list[UnifiedDataPoint] | list[DailyDataPoint]:
    if view == "daily":
        return rollup_daily(snapshot.history)
    return snapshot.history


# =============================================================================
# CONNECTION
# =============================================================================


@router.post("/connect")
async def connect(
    body: ConnectRequest,
    dashboard: DashboardState = Depends(get_dashboard),
) -> ConnectResponse:
    """Connect to the telephony platform and start polling a queue."""
    try:
        poller = await dashboard.connect(
            body.client_id.strip(),
            body.client_secret.strip(),
            body.queue_name,
            region=body.region,
        )
    except TelephonyError as e:
        logger.warning("Dashboard: connect failed: %s", e)
        raise _telephony_http_error(e)

    return ConnectResponse(
        queue_id=poller.queue_id,
        queue_name=dashboard.queue_name or body.queue_name,
        region=poller.session.region,
    )


@router.post("/disconnect")
async def disconnect(
    dashboard: DashboardState = Depends(get_dashboard),
) -> dict[str, str]:
    await dashboard.disconnect()
    return {"status": "disconnected"}


# =============================================================================
# METRICS
# =============================================================================


@router.get("/metrics")
async def get_metrics(
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    view: Literal["interval", "daily"] = Query(default="interval"),
    refresh: bool = Query(default=False),
    poller: MetricsPoller = Depends(get_poller),
) -> DashboardResponse:
    """Aggregated queue metrics for a date range (at most 31 days are fetched)."""
    start, end = _resolve_range(date_from, date_to)
    snapshot = await _current_snapshot(poller, start, end, refresh)
    points = _points(snapshot, view)

    return DashboardResponse(
        view=view,
        generated_at=snapshot.generated_at,
        history=[p.model_dump() for p in points],
        agents=snapshot.agents,
        top_callers=snapshot.top_callers,
        wrap_ups=snapshot.wrap_ups,
        branches=snapshot.branches,
        summary=summarize(points, agent_count=len(snapshot.agents)),
        alerts=build_alerts(points, settings.mos_alert_threshold),
    )


@router.get("/agents/export")
async def export_agents_csv(
    poller: MetricsPoller = Depends(get_poller),
) -> StreamingResponse:
    """Export the current agent roster as CSV."""
    snapshot = poller.snapshot
    if snapshot is None:
        raise HTTPException(status_code=503, detail="Metrics not available yet")

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(
        [
            "Name",
            "User ID",
            "Handled",
            "Missed",
            "Handle Time (s)",
            "First Activity",
            "Last Activity",
            "Coverage",
        ]
    )

    for agent in sorted(snapshot.agents, key=lambda a: a.answered, reverse=True):
        writer.writerow(
            [
                _sanitize_csv(agent.name),
                agent.user_id,
                agent.answered,
                agent.missed,
                round(agent.handle_time_ms / 1000),
                agent.first_activity.isoformat() if agent.first_activity else "",
                agent.last_activity.isoformat() if agent.last_activity else "",
                _coverage(agent.first_activity, agent.last_activity),
            ]
        )

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": (
                f'attachment; filename="agents-{snapshot.date_from}'
                f'-{snapshot.date_to}.csv"'
            )
        },
    )


# =============================================================================
# FORENSICS
# =============================================================================


@router.post("/forensics")
async def run_forensics(
    view: Literal["interval", "daily"] = Query(default="interval"),
    poller: MetricsPoller = Depends(get_poller),
) -> ForensicsResponse:
    """LLM narrative over the current MOS series."""
    snapshot = poller.snapshot
    if snapshot is None:
        raise HTTPException(status_code=503, detail="Metrics not available yet")

    try:
        analysis, count = await forensics.analyze_mos(_points(snapshot, view))
    except forensics.ForensicsUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return ForensicsResponse(analysis=analysis, points_analyzed=count)


# =============================================================================
# HELPERS
# =============================================================================

# Characters that could trigger CSV formula injection
_CSV_INJECTION_CHARS = {"=", "+", "-", "@", "\t", "\r"}


def _sanitize_csv(value: str) -> str:
    """Prefix cells starting with formula characters with a single quote."""
    if value and value[0] in _CSV_INJECTION_CHARS:
        return f"'{value}"
    return value


def _coverage(first: datetime | None, last: datetime | None) -> str:
    """Span between first and last activity as 'Xh Ym'."""
    if first is None or last is None:
        return "0h 0m"
    minutes = int((last - first).total_seconds() // 60)
    return f"{minutes // 60}h {minutes % 60}m"
