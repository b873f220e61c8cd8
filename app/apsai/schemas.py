"""Pydantic schemas for the APS dashboard records and Gemini contracts."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from apsai.utils import derive_pain_trend


PainTrend = Literal["up", "down", "stable"]
ReboundPainRisk = Literal["High", "Medium", "Low"]
ChatRole = Literal["user", "model"]


class Urgency(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    UNKNOWN = "Unknown"


class _Record(BaseModel):
    # Wire payloads use camelCase keys (patientId, aiRationale, ...).
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _normalize_level(value: Any) -> Any:
    if isinstance(value, Urgency):
        return value.value
    if isinstance(value, str):
        return value.strip().capitalize()
    return value


class Vital(_Record):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    time: str
    pain_score: int = Field(ge=0, le=10)
    sedation_score: int = Field(ge=0, le=3)
    respiratory_rate: int = Field(gt=0, le=60)


class Patient(_Record):
    id: int
    name: str
    age: int = Field(ge=0, le=130)
    procedure: str
    vitals: list[Vital] = Field(default_factory=list)
    pain_trend: PainTrend | None = None
    analgesia_plan: str = ""
    is_block_candidate: bool = False
    ai_recommendation: str | None = None
    rebound_pain_risk: ReboundPainRisk | None = None

    @model_validator(mode="after")
    def _fill_pain_trend(self) -> "Patient":
        if self.pain_trend is None:
            self.pain_trend = derive_pain_trend([v.pain_score for v in self.vitals])
        return self

    @property
    def latest_vital(self) -> Vital | None:
        return self.vitals[-1] if self.vitals else None


class Consult(_Record):
    id: int
    patient_id: int
    patient_name: str
    reason: str
    time: str
    urgency: Urgency = Urgency.UNKNOWN
    ai_rationale: str | None = None


class TeamMember(_Record):
    id: int
    name: str
    location: str


class ChatMessage(_Record):
    id: str
    role: ChatRole
    text: str = ""
    thinking: bool = False
    sealed: bool = False


class ChatTurn(BaseModel):
    role: ChatRole
    text: str

    def to_content(self) -> dict[str, Any]:
        return {"role": self.role, "parts": [{"text": self.text}]}


class TriageItem(BaseModel):
    id: int
    reason: str


class TriageResult(BaseModel):
    id: int
    urgency: Urgency
    rationale: str = ""

    @field_validator("urgency", mode="before")
    @classmethod
    def _normalize_urgency(cls, value: Any) -> Any:
        return _normalize_level(value)

    @field_validator("urgency")
    @classmethod
    def _reject_unknown(cls, value: Urgency) -> Urgency:
        # A triage judgement must be a known tier; Unknown is never assigned by a merge.
        if value is Urgency.UNKNOWN:
            raise ValueError("triage urgency must be High, Medium or Low")
        return value


class PatientAnalysis(_Record):
    recommendation: str = Field(min_length=1)
    rebound_pain_risk: ReboundPainRisk

    @field_validator("rebound_pain_risk", mode="before")
    @classmethod
    def _normalize_risk(cls, value: Any) -> Any:
        return _normalize_level(value)
