"""
Telemetry Models — Pydantic models for queue metrics and their internals.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

# =============================================================================
# SHIFTS
# =============================================================================


class ShiftWindow(BaseModel):
    """One operating shift: [06:00 UTC, +18h) of a calendar day."""

    start_utc: datetime
    end_utc: datetime
    interval: str  # "YYYY-MM-DDTHH:MM:SSZ/YYYY-MM-DDTHH:MM:SSZ"
    fetch_needed: bool  # False when the shift has not started yet

    class Config:
        frozen = True


# =============================================================================
# CLASSIFIER OUTPUT
# =============================================================================


class AgentEvent(BaseModel):
    """What one agent voice session contributed to a conversation."""

    user_id: str
    interacted: bool = False
    missed: bool = False
    handle_time_ms: int = 0
    first_activity: datetime | None = None
    last_activity: datetime | None = None

    class Config:
        frozen = True


class ConversationResult(BaseModel):
    """Immutable classification of a single conversation record."""

    bucket_key: str
    outcome: Literal["answered", "abandoned", "unresolved"]
    sl_met: bool = False
    mos_samples: tuple[float, ...] = ()
    handle_time_ms: int = 0
    present_agents: tuple[str, ...] = ()  # agents with a voice session
    observed_agents: tuple[str, ...] = ()  # every agent/user participant
    agent_events: tuple[AgentEvent, ...] = ()
    callers: tuple[str, ...] = ()
    branches: tuple[str, ...] = ()
    wrap_ups: tuple[str, ...] = ()

    class Config:
        frozen = True


# =============================================================================
# OUTPUT COLLECTIONS
# =============================================================================


class UnifiedDataPoint(BaseModel):
    """One 30-minute interval of the queue time series."""

    timestamp: str  # "YYYY-MM-DD HH:MM", local time
    offered: int
    answered: int
    abandoned: int
    mos: float | None  # None when no MOS samples
    aht: float | None  # seconds, None when nothing answered
    agents_count: int
    sl_percent: float | None  # None when nothing offered
    conversations_count: int


class AgentPerformance(BaseModel):
    """Per-agent roster row."""

    user_id: str
    name: str
    answered: int
    missed: int  # alerts that were never answered
    handle_time_ms: int
    first_activity: datetime | None = None
    last_activity: datetime | None = None


class CallerData(BaseModel):
    number: str
    count: int


class WrapUpData(BaseModel):
    name: str
    count: int


class BranchData(BaseModel):
    name: str
    count: int


class TelemetrySnapshot(BaseModel):
    """Everything one aggregation run produces."""

    date_from: date
    date_to: date
    generated_at: datetime
    shifts_fetched: int
    history: list[UnifiedDataPoint] = Field(default_factory=list)
    agents: list[AgentPerformance] = Field(default_factory=list)
    top_callers: list[CallerData] = Field(default_factory=list)
    wrap_ups: list[WrapUpData] = Field(default_factory=list)
    branches: list[BranchData] = Field(default_factory=list)


# =============================================================================
# ROLL-UPS / SUMMARY
# =============================================================================


class DailyDataPoint(BaseModel):
    """One calendar day folded from its 30-minute intervals."""

    timestamp: str  # YYYY-MM-DD
    offered: int
    answered: int
    abandoned: int
    mos: float | None
    aht: float | None
    agents_count: int  # max concurrent agents seen in any interval
    sl_percent: float | None
    conversations_count: int


class KPIRow(BaseModel):
    mos: float
    sl: float
    offered: int
    answered: int
    abandoned: int
    agents: int
    aht: float
    avg_calls: float


class KPISummary(BaseModel):
    """Summary cards plus the best/worst interval for each KPI."""

    summary: KPIRow
    max: KPIRow
    min: KPIRow


class QualityAlert(BaseModel):
    """An interval whose MOS dropped below the alert threshold."""

    id: str
    timestamp: str
    value: float
    message: str
    severity: Literal["low", "medium", "high"]


# =============================================================================
# API REQUEST / RESPONSE MODELS
# =============================================================================


class ConnectRequest(BaseModel):
    """Credentials and queue to monitor."""

    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)
    region: str | None = None
    queue_name: str = Field(..., min_length=1, max_length=200)


class ConnectResponse(BaseModel):
    queue_id: str
    queue_name: str
    region: str


class DashboardResponse(BaseModel):
    """Metrics payload for the dashboard views."""

    view: Literal["interval", "daily"]
    generated_at: datetime
    history: list[dict[str, Any]]
    agents: list[AgentPerformance]
    top_callers: list[CallerData]
    wrap_ups: list[WrapUpData]
    branches: list[BranchData]
    summary: KPISummary
    alerts: list[QualityAlert]


class ForensicsResponse(BaseModel):
    analysis: str
    points_analyzed: int
