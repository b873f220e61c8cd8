"""Sample APS census used as the initial, read-only data source."""

from __future__ import annotations

from apsai.schemas import Consult, Patient, TeamMember, Urgency, Vital


def _vitals(*rows: tuple[str, int, int, int]) -> list[Vital]:
    return [
        Vital(time=time, pain_score=pain, sedation_score=sedation, respiratory_rate=rr)
        for time, pain, sedation, rr in rows
    ]


def mock_patients() -> list[Patient]:
    return [
        Patient(
            id=101,
            name="John Doe",
            age=45,
            procedure="Total Knee Arthroplasty",
            pain_trend="down",
            vitals=_vitals(("4h ago", 7, 1, 16), ("2h ago", 5, 1, 18), ("Now", 4, 0, 18)),
            analgesia_plan="Femoral Nerve Block + PCA Morphine",
            is_block_candidate=False,
        ),
        Patient(
            id=102,
            name="Jane Smith",
            age=62,
            procedure="Laparoscopic Cholecystectomy",
            pain_trend="up",
            vitals=_vitals(("4h ago", 4, 0, 18), ("2h ago", 6, 1, 16), ("Now", 8, 2, 14)),
            analgesia_plan="IV Acetaminophen + PO Oxycodone",
            is_block_candidate=True,
        ),
        Patient(
            id=103,
            name="Peter Jones",
            age=78,
            procedure="Exploratory Laparotomy",
            pain_trend="stable",
            vitals=_vitals(("4h ago", 6, 2, 12), ("2h ago", 6, 2, 12), ("Now", 5, 1, 14)),
            analgesia_plan="Epidural Analgesia",
            is_block_candidate=False,
        ),
    ]


def mock_consults() -> list[Consult]:
    return [
        Consult(
            id=1,
            patient_id=102,
            patient_name="Jane Smith",
            reason="Uncontrolled post-op pain, high sedation.",
            time="15m ago",
            urgency=Urgency.UNKNOWN,
        ),
        Consult(
            id=2,
            patient_id=101,
            patient_name="John Doe",
            reason="PCA setting adjustment inquiry.",
            time="45m ago",
            urgency=Urgency.UNKNOWN,
        ),
        Consult(
            id=3,
            patient_id=103,
            patient_name="Peter Jones",
            reason="Epidural check, mild hypotension.",
            time="1h ago",
            urgency=Urgency.UNKNOWN,
        ),
    ]


def mock_team_members() -> list[TeamMember]:
    return [
        TeamMember(id=1, name="Dr. Anya Sharma", location="Floor 3 East"),
        TeamMember(id=2, name="Dr. Ben Carter", location="Floor 5 West"),
        TeamMember(id=3, name="NP Chloe Davis", location="Floor 3 West"),
    ]
