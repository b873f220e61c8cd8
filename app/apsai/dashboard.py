"""Application state container and the AI triage / analysis workflows."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from apsai.alerts import dashboard_alerts
from apsai.gemini import GeminiGateway
from apsai.merge import merge_analysis, merge_triage, pending_triage, sort_for_display
from apsai.mock_data import mock_consults, mock_patients, mock_team_members
from apsai.schemas import Consult, Patient, TeamMember
from apsai.session import ConversationSession
from apsai.utils import elapsed_ms, now_ms


@dataclass
class TriageOutcome:
    skipped: bool = False
    rejected: bool = False
    failed: bool = False
    updated_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "skipped": self.skipped,
            "rejected": self.rejected,
            "failed": self.failed,
            "updated_ids": list(self.updated_ids),
        }


class AnalysisInFlightError(RuntimeError):
    """Raised when an analysis is requested for a patient that is already being analysed."""


class DashboardState:
    """Authoritative in-memory APS census for one running app.

    ``patients`` and ``consults`` are tuples that are replaced wholesale after
    each merge, so a reader sees either the old or the new collection.
    """

    def __init__(
        self,
        gateway: GeminiGateway,
        *,
        patients: Iterable[Patient] = (),
        consults: Iterable[Consult] = (),
        team_members: Iterable[TeamMember] = (),
        session: ConversationSession | None = None,
    ):
        self._gateway = gateway
        self.patients: tuple[Patient, ...] = tuple(patients)
        self.consults: tuple[Consult, ...] = tuple(consults)
        self.team_members: tuple[TeamMember, ...] = tuple(team_members)
        self.session = session or ConversationSession(gateway)
        self._triage_in_flight = False
        self._analyzing: set[int] = set()

    @classmethod
    def from_mock_data(cls, gateway: GeminiGateway) -> "DashboardState":
        return cls(
            gateway,
            patients=mock_patients(),
            consults=mock_consults(),
            team_members=mock_team_members(),
        )

    @property
    def is_triage_loading(self) -> bool:
        return self._triage_in_flight

    @property
    def analyzing_patient_ids(self) -> frozenset[int]:
        return frozenset(self._analyzing)

    def find_patient(self, patient_id: int) -> Patient | None:
        return next((p for p in self.patients if p.id == patient_id), None)

    async def run_triage(self) -> TriageOutcome:
        if self._triage_in_flight:
            return TriageOutcome(rejected=True)

        pending = pending_triage(self.consults)
        if not pending:
            return TriageOutcome(skipped=True)

        self._triage_in_flight = True
        started = now_ms()
        try:
            results = await self._gateway.triage_consults(pending)
        finally:
            self._triage_in_flight = False

        if results is None:
            return TriageOutcome(failed=True)

        # Merge against the collection as it is now, not the snapshot taken before the await.
        self.consults = merge_triage(self.consults, results)
        updated = sorted({r.id for r in results})
        print(f"[apsai] triage_merged: ids={updated} latency_ms={elapsed_ms(started)}")
        return TriageOutcome(updated_ids=updated)

    async def run_patient_analysis(self, patient_id: int) -> Patient | None:
        """Analyse one patient and merge the result.

        Returns the patient as stored after the call (unchanged on failure), or
        ``None`` for an unknown id. A second request for a patient whose
        analysis is still running raises ``AnalysisInFlightError``.
        """
        patient = self.find_patient(patient_id)
        if patient is None:
            return None
        if patient_id in self._analyzing:
            raise AnalysisInFlightError(f"analysis already running for patient {patient_id}")

        self._analyzing.add(patient_id)
        started = now_ms()
        try:
            result = await self._gateway.analyze_patient(patient)
        finally:
            self._analyzing.discard(patient_id)

        if result is not None:
            self.patients = merge_analysis(self.patients, patient_id, result)
            print(f"[apsai] analysis_merged: patient={patient_id} latency_ms={elapsed_ms(started)}")
        return self.find_patient(patient_id)

    def snapshot(self) -> dict[str, Any]:
        return {
            "patients": [p.to_wire() for p in self.patients],
            "consults": [c.to_wire() for c in sort_for_display(self.consults)],
            "team_members": [t.to_wire() for t in self.team_members],
            "alerts": dashboard_alerts(self.patients, self.consults),
            "triage_loading": self._triage_in_flight,
            "analyzing_patient_ids": sorted(self._analyzing),
        }
