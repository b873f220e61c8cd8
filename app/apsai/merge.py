"""Copy-on-write merges of AI annotations into consult and patient collections.

Both merges are pure: they return a new tuple and never mutate the records they
were given. Records that are not touched by a merge are carried over as the same
objects, so callers can rely on identity for "unchanged".
"""

from __future__ import annotations

from typing import Iterable, Sequence

from apsai.schemas import Consult, Patient, PatientAnalysis, TriageResult, Urgency
from apsai.utils import urgency_rank


def merge_triage(consults: Sequence[Consult], results: Iterable[TriageResult]) -> tuple[Consult, ...]:
    by_id: dict[int, TriageResult] = {}
    for result in results:
        # First judgement for an id wins.
        by_id.setdefault(result.id, result)

    merged: list[Consult] = []
    for consult in consults:
        result = by_id.get(consult.id)
        if result is None:
            merged.append(consult)
            continue
        merged.append(
            consult.model_copy(update={"urgency": result.urgency, "ai_rationale": result.rationale})
        )
    return tuple(merged)


def merge_analysis(
    patients: Sequence[Patient],
    patient_id: int,
    result: PatientAnalysis,
) -> tuple[Patient, ...]:
    return tuple(
        patient.model_copy(
            update={
                "ai_recommendation": result.recommendation,
                "rebound_pain_risk": result.rebound_pain_risk,
            }
        )
        if patient.id == patient_id
        else patient
        for patient in patients
    )


def pending_triage(consults: Iterable[Consult]) -> list[Consult]:
    return [c for c in consults if c.urgency is Urgency.UNKNOWN]


def sort_for_display(consults: Iterable[Consult]) -> list[Consult]:
    # sorted() is stable, so equal urgencies keep their queue order.
    return sorted(consults, key=lambda c: urgency_rank(c.urgency))
