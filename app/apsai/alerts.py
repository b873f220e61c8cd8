"""Dashboard alert counters and pain-score banding."""

from __future__ import annotations

from typing import Iterable, Sequence

from apsai.schemas import Consult, Patient, Urgency

UNCONTROLLED_PAIN_SCORE = 7
HIGH_PAIN_BAND = 6
MODERATE_PAIN_BAND = 3


def pain_band(score: int) -> str:
    if score > HIGH_PAIN_BAND:
        return "high"
    if score > MODERATE_PAIN_BAND:
        return "moderate"
    return "low"


def has_uncontrolled_pain(patient: Patient) -> bool:
    latest = patient.latest_vital
    return latest is not None and latest.pain_score > UNCONTROLLED_PAIN_SCORE


def dashboard_alerts(patients: Sequence[Patient], consults: Iterable[Consult]) -> dict[str, int]:
    return {
        "high_urgency_consults": sum(1 for c in consults if c.urgency is Urgency.HIGH),
        "uncontrolled_pain": sum(1 for p in patients if has_uncontrolled_pain(p)),
        "block_candidates": sum(1 for p in patients if p.is_block_candidate),
    }
