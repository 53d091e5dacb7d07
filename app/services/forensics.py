"""
MOS Forensics — LLM narrative over the quality time series.

Sends the most recent MOS points (truncated) with a fixed instruction and
returns the model's markdown verbatim.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Sequence

import litellm

from app.config import settings
from app.models.telemetry import DailyDataPoint, UnifiedDataPoint

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

NO_RESULT = "Forensic analysis yielded no results."

SYSTEM_INSTRUCTION = """You are a senior telecom and network quality engineer.
Analyze the Mean Opinion Score (MOS) and traffic telemetry of a contact-center queue.

FORMATTING RULES:
1. Organize your output into clear sections using Markdown headers (##).
2. Use bullet points (-) for observations.
3. Use bold text (**) for critical metrics or timestamps.
4. Always conclude with a specific technical hypothesis.

EXPECTED SECTIONS:
## Executive Quality Summary
Summarize the overall voice health of the shift.

## Detailed Trend Analysis
Break down intervals where MOS dipped below 4.0 or traffic spikes affected quality.

## Technical Root Cause Hypotheses
Discuss potential network-layer issues (jitter, packet loss, codec negotiation, ISP peering).

## Actionable Engineering Recommendations
Provide 3 concrete steps for the network team to optimize performance.

Maintain a professional, data-driven tone."""


class ForensicsUnavailable(Exception):
    """The LLM cannot be used (no key, rejected key, or quota exhausted)."""


def format_telemetry(
    points: Sequence[UnifiedDataPoint | DailyDataPoint],
    max_points: int,
) -> tuple[str, int]:
    """Render the last max_points MOS points, one line each."""
    with_mos = [p for p in points if p.mos is not None]
    recent = with_mos[-max_points:]
    lines = [
        f"[{p.timestamp}] MOS: {p.mos:.2f}, Volume: {p.conversations_count}"
        for p in recent
    ]
    return "\n".join(lines), len(recent)


def _model_chain() -> list[str]:
    models = [settings.forensics_model]
    fallback = settings.forensics_fallback_model
    if fallback and fallback != settings.forensics_model:
        models.append(fallback)
    return models


async def _generate(messages: list[dict[str, Any]]) -> str:
    """Ask each model in the chain until one answers.

    A rejected key fails immediately; the fallback shares the same key.
    """
    last_error: Exception | None = None
    for model in _model_chain():
        start = time.perf_counter()
        try:
            response = await litellm.acompletion(
                model=model,
                messages=messages,
                api_key=settings.google_ai_api_key,
                timeout=settings.forensics_timeout_seconds,
            )
        except litellm.AuthenticationError:
            raise
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.error("Forensics model %s failed (%.0fms): %s", model, elapsed, e)
            last_error = e
            continue

        elapsed = (time.perf_counter() - start) * 1000
        logger.debug("Forensics model %s answered in %.0fms", model, elapsed)
        return response.choices[0].message.content or ""

    if last_error is None:
        raise ForensicsUnavailable("No forensics model configured.")
    raise last_error


async def analyze_mos(
    points: Sequence[UnifiedDataPoint | DailyDataPoint],
) -> tuple[str, int]:
    """Return (analysis markdown, number of points sent)."""
    if not settings.google_ai_api_key:
        raise ForensicsUnavailable("LLM API key missing.")

    summary, count = format_telemetry(points, settings.forensics_max_points)
    if count == 0:
        raise ValueError("No MOS data to analyze")

    messages = [
        {"role": "system", "content": SYSTEM_INSTRUCTION},
        {"role": "user", "content": f"TELEMETRY DATA FOR ANALYSIS:\n{summary}"},
    ]

    try:
        text = await _generate(messages)
    except litellm.AuthenticationError as e:
        raise ForensicsUnavailable("LLM API key rejected.") from e
    except litellm.RateLimitError as e:
        raise ForensicsUnavailable(
            "AI quota exceeded. Please try again in a few minutes."
        ) from e

    logger.info("Forensics analysis over %d points: %d chars", count, len(text))
    return text or NO_RESULT, count
