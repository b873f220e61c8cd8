"""Common utility helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from time import perf_counter


_URGENCY_ORDER = {"High": 1, "Medium": 2, "Low": 3, "Unknown": 4}

# Pain-score delta (first vs latest reading) that counts as a trend.
PAIN_TREND_DELTA = 2


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> float:
    return perf_counter() * 1000.0


def elapsed_ms(start_ms: float) -> int:
    return int(perf_counter() * 1000.0 - start_ms)


def urgency_rank(urgency: str) -> int:
    return _URGENCY_ORDER.get(str(getattr(urgency, "value", urgency)), len(_URGENCY_ORDER))


def derive_pain_trend(pain_scores: list[int]) -> str:
    if len(pain_scores) < 2:
        return "stable"
    delta = pain_scores[-1] - pain_scores[0]
    if delta >= PAIN_TREND_DELTA:
        return "up"
    if delta <= -PAIN_TREND_DELTA:
        return "down"
    return "stable"
