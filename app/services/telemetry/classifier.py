"""
Conversation Classifier — One detail record in, one ConversationResult out.

Pure function, no I/O, no accumulator state. The Aggregator folds the result.

Per conversation:
  1. Bucket key from conversationStart (local time, 30-minute slot)
  2. Customer/external participants → caller numbers, branch by DNIS
  3. Agent/user participants → presence, MOS samples, handle time,
     wrap-ups, per-session answered/missed
  4. Outcome: answered if any agent handled it, else abandoned if it
     reached an ACD participant, else unresolved

Missing sessions, segments, stats or timestamps mean "no signal".
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from app.models.telemetry import AgentEvent, ConversationResult
from app.services.telemetry.bucketing import bucket_key, parse_timestamp
from app.services.telemetry.lookups import (
    normalize_address,
    resolve_branch,
    resolve_wrap_up,
)

logger = logging.getLogger(__name__)

SL_THRESHOLD_MS = 10_000

CUSTOMER_PURPOSES = frozenset({"customer", "external"})
AGENT_PURPOSES = frozenset({"agent", "user"})
HANDLE_SEGMENT_TYPES = frozenset({"interact", "talk", "hold", "afterCallWork"})


def _ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


def _mos_samples(session: dict[str, Any]) -> list[float]:
    samples: list[float] = []
    for stat in session.get("mediaEndpointStats") or []:
        value = stat.get("mos") or stat.get("minMos")
        if isinstance(value, (int, float)) and value > 0:
            samples.append(float(value))
    return samples


def _caller_signals(
    participant: dict[str, Any],
    callers: list[str],
    branches: list[str],
) -> None:
    for session in participant.get("sessions") or []:
        remote = session.get("ani") or session.get("remote")
        if remote:
            callers.append(normalize_address(remote))

        if session.get("mediaType") == "voice" and session.get("dnis"):
            branch = resolve_branch(session["dnis"])
            if branch:
                branches.append(branch)


class _AgentScan:
    """Scratch state while walking one conversation's agent sessions."""

    def __init__(self, conversation_start: datetime, now: datetime) -> None:
        self.conversation_start = conversation_start
        self.now = now
        self.answered = False
        self.sl_met = False
        self.handle_time_ms = 0
        self.mos_samples: list[float] = []
        self.present: list[str] = []
        self.observed: list[str] = []
        self.events: list[AgentEvent] = []
        self.wrap_ups: list[str] = []

    def scan_participant(self, participant: dict[str, Any]) -> None:
        user_id = participant.get("userId")
        if not user_id:
            return
        if user_id not in self.observed:
            self.observed.append(user_id)

        for session in participant.get("sessions") or []:
            if session.get("mediaType") != "voice":
                continue
            if user_id not in self.present:
                self.present.append(user_id)
            self.mos_samples.extend(_mos_samples(session))
            self.events.append(self._scan_session(user_id, session))

    def _scan_session(self, user_id: str, session: dict[str, Any]) -> AgentEvent:
        segments = session.get("segments") or []
        interacted = False
        handle_ms = 0
        first: datetime | None = None
        last: datetime | None = None

        for seg in segments:
            seg_start = parse_timestamp(seg.get("segmentStart"))
            seg_end = parse_timestamp(seg.get("segmentEnd")) or self.now

            if seg_start is not None and (first is None or seg_start < first):
                first = seg_start
            if last is None or seg_end > last:
                last = seg_end

            if seg.get("wrapUpName") or seg.get("wrapUpCode"):
                self.wrap_ups.append(
                    resolve_wrap_up(seg.get("wrapUpCode"), seg.get("wrapUpName"))
                )

            if seg.get("segmentType") in HANDLE_SEGMENT_TYPES:
                self.answered = True
                interacted = True
                if seg_start is None:
                    continue
                duration = _ms(seg_end - seg_start)
                handle_ms += duration
                self.handle_time_ms += duration
                if (
                    seg.get("segmentType") == "interact"
                    and _ms(seg_start - self.conversation_start) <= SL_THRESHOLD_MS
                ):
                    self.sl_met = True

        missed = not interacted and any(
            seg.get("segmentType") == "alert" for seg in segments
        )
        return AgentEvent(
            user_id=user_id,
            interacted=interacted,
            missed=missed,
            handle_time_ms=handle_ms,
            first_activity=first,
            last_activity=last,
        )


def classify_conversation(
    record: dict[str, Any],
    now: datetime | None = None,
) -> ConversationResult | None:
    """Classify one conversation detail record.

    Returns None when the record has no usable conversationStart.
    """
    started = parse_timestamp(record.get("conversationStart"))
    if started is None:
        logger.warning(
            "Skipping conversation %s: no conversationStart",
            record.get("conversationId", "?"),
        )
        return None

    now = now or datetime.now(timezone.utc)
    participants = record.get("participants") or []
    callers: list[str] = []
    branches: list[str] = []
    scan = _AgentScan(started, now)

    for participant in participants:
        purpose = participant.get("purpose")
        if purpose in CUSTOMER_PURPOSES:
            _caller_signals(participant, callers, branches)
        elif purpose in AGENT_PURPOSES:
            scan.scan_participant(participant)

    if scan.answered:
        outcome = "answered"
    elif any(p.get("purpose") == "acd" for p in participants):
        outcome = "abandoned"
    else:
        outcome = "unresolved"

    return ConversationResult(
        bucket_key=bucket_key(started),
        outcome=outcome,
        sl_met=scan.answered and scan.sl_met,
        mos_samples=tuple(scan.mos_samples),
        handle_time_ms=scan.handle_time_ms,
        present_agents=tuple(scan.present),
        observed_agents=tuple(scan.observed),
        agent_events=tuple(scan.events),
        callers=tuple(callers),
        branches=tuple(branches),
        wrap_ups=tuple(scan.wrap_ups),
    )
