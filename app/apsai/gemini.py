"""Gemini client for chat streaming, consult triage and patient analysis."""

from __future__ import annotations

import json
import re
from typing import Any, AsyncIterator, Sequence

import httpx
from pydantic import TypeAdapter, ValidationError

from apsai.config import Settings
from apsai.schemas import ChatTurn, Consult, Patient, PatientAnalysis, TriageItem, TriageResult


class GatewayError(RuntimeError):
    """Raised when a Gemini call fails or returns a payload outside its contract."""


_TRIAGE_RESULTS = TypeAdapter(list[TriageResult])

TRIAGE_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "id": {"type": "NUMBER"},
            "urgency": {"type": "STRING"},
            "rationale": {"type": "STRING"},
        },
        "required": ["id", "urgency", "rationale"],
    },
}

ANALYSIS_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "recommendation": {"type": "STRING"},
        "reboundPainRisk": {"type": "STRING"},
    },
    "required": ["recommendation", "reboundPainRisk"],
}


class GeminiGateway:
    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    @property
    def chat_model(self) -> str:
        return self._settings.chat_model

    @property
    def thinking_model(self) -> str:
        return self._settings.thinking_model

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._settings.request_timeout_sec, transport=self._transport)

    def _url(self, model_name: str, method: str) -> str:
        return f"{self._settings.gemini_base_url.rstrip('/')}/models/{model_name}:{method}"

    def _require_key(self) -> str:
        if not self._settings.gemini_api_key:
            raise GatewayError("gemini_api_key_missing")
        return self._settings.gemini_api_key

    @staticmethod
    def _build_contents(history: Sequence[ChatTurn], new_message: str) -> list[dict[str, Any]]:
        turns = list(history)
        # The outgoing message is sent once, even when the caller's history already ends with it.
        if turns and turns[-1].role == "user" and turns[-1].text == new_message:
            turns = turns[:-1]
        # Gemini rejects empty text parts, e.g. a prior reply that was blocked or thought-only.
        contents = [turn.to_content() for turn in turns if turn.text.strip()]
        contents.append({"role": "user", "parts": [{"text": new_message}]})
        return contents

    @staticmethod
    def _candidate_texts(data: dict[str, Any]) -> list[str]:
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise GatewayError(f"gemini_error: {message}")
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        parts = (((candidates[0] or {}).get("content") or {}).get("parts")) or []
        texts: list[str] = []
        for part in parts:
            if not isinstance(part, dict) or part.get("thought"):
                continue
            text = str(part.get("text") or "")
            if text:
                texts.append(text)
        return texts

    @classmethod
    def _parse_sse_line(cls, line: str) -> list[str]:
        if not line.startswith("data:"):
            return []
        data = line[len("data:") :].strip()
        if not data or data == "[DONE]":
            return []
        payload = json.loads(data)
        if not isinstance(payload, dict):
            return []
        return cls._candidate_texts(payload)

    @staticmethod
    def _strip_fences(text: str) -> str:
        cleaned = text.strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r"^```[a-zA-Z]*\n?", "", cleaned)
            cleaned = re.sub(r"\n?```$", "", cleaned).strip()
        return cleaned

    async def stream_chat(
        self,
        history: Sequence[ChatTurn],
        new_message: str,
        thinking_mode: bool = False,
    ) -> AsyncIterator[str]:
        api_key = self._require_key()
        model_name = self._settings.thinking_model if thinking_mode else self._settings.chat_model
        body: dict[str, Any] = {"contents": self._build_contents(history, new_message)}
        if thinking_mode:
            body["generationConfig"] = {
                "thinkingConfig": {"thinkingBudget": self._settings.thinking_budget},
            }

        url = self._url(model_name, "streamGenerateContent")
        try:
            async with self._client() as client:
                async with client.stream("POST", url, params={"alt": "sse", "key": api_key}, json=body) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        for fragment in self._parse_sse_line(line):
                            yield fragment
        except httpx.HTTPStatusError as exc:
            raise GatewayError(f"chat_stream_failed: status={exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayError(f"chat_stream_failed: {type(exc).__name__}: {exc}") from exc

    async def _generate_json(self, model_name: str, prompt: str, schema: dict[str, Any]) -> str:
        api_key = self._require_key()
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }
        try:
            async with self._client() as client:
                response = await client.post(self._url(model_name, "generateContent"), params={"key": api_key}, json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise GatewayError(f"generate_failed: status={exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayError(f"generate_failed: {type(exc).__name__}: {exc}") from exc

        if not isinstance(data, dict):
            raise GatewayError("generate_failed: unexpected response shape")
        text = "".join(self._candidate_texts(data)).strip()
        if not text:
            raise GatewayError("generate_failed: empty response")
        return self._strip_fences(text)

    @staticmethod
    def _build_triage_prompt(items: list[TriageItem]) -> str:
        payload = [item.model_dump() for item in items]
        return (
            "You are an expert Acute Pain Service physician triaging new consult requests. "
            "For each consult return an `urgency` of 'High', 'Medium' or 'Low' and a brief "
            "`rationale` of at most 15 words. Judge from the stated reason: high sedation and "
            "uncontrolled pain are high urgency, routine checks are lower.\n"
            f"Consults:\n{json.dumps(payload, ensure_ascii=True, indent=2)}"
        )

    @staticmethod
    def _build_analysis_prompt(patient: Patient) -> str:
        return (
            "As an expert Acute Pain Service physician, review this patient and return JSON with:\n"
            "1. `recommendation`: one key optimization of the analgesia plan given the vitals, "
            "procedure and current plan (e.g. 'Consider adding a regional block for opioid-sparing effect.').\n"
            "2. `reboundPainRisk`: 'High', 'Medium' or 'Low' risk of rebound pain once the current "
            "primary analgesia (block, epidural) wears off.\n"
            f"Patient:\n{json.dumps(patient.to_wire(), ensure_ascii=True, indent=2)}"
        )

    async def classify_triage(self, consults: Sequence[Consult]) -> list[TriageResult]:
        items = [TriageItem(id=c.id, reason=c.reason) for c in consults]
        if not items:
            return []

        text = await self._generate_json(
            self._settings.triage_model,
            self._build_triage_prompt(items),
            TRIAGE_RESPONSE_SCHEMA,
        )
        try:
            results = _TRIAGE_RESULTS.validate_json(text)
        except ValidationError as exc:
            raise GatewayError(f"triage_payload_invalid: {exc.error_count()} error(s)") from exc

        requested = {item.id for item in items}
        kept = [r for r in results if r.id in requested]
        if len(kept) != len(results):
            dropped = sorted({r.id for r in results} - requested)
            print(f"[apsai] gemini_triage_dropped_ids: {dropped}")
        return kept

    async def classify_patient(self, patient: Patient) -> PatientAnalysis:
        text = await self._generate_json(
            self._settings.analysis_model,
            self._build_analysis_prompt(patient),
            ANALYSIS_RESPONSE_SCHEMA,
        )
        try:
            return PatientAnalysis.model_validate_json(text)
        except ValidationError as exc:
            raise GatewayError(f"analysis_payload_invalid: {exc.error_count()} error(s)") from exc

    async def triage_consults(self, consults: Sequence[Consult]) -> list[TriageResult] | None:
        try:
            return await self.classify_triage(consults)
        except Exception as exc:
            print(f"[apsai] gemini_triage_failed: {type(exc).__name__}: {exc}")
            return None

    async def analyze_patient(self, patient: Patient) -> PatientAnalysis | None:
        try:
            return await self.classify_patient(patient)
        except Exception as exc:
            print(f"[apsai] gemini_analysis_failed: patient={patient.id} {type(exc).__name__}: {exc}")
            return None
