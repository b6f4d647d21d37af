"""Gemini triage analysis client with a deterministic safety fallback."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

import httpx
from pydantic import ValidationError

from pajr.config import Settings
from pajr.schemas import VITAL_TYPES, AnalysisPayload, ClinicalInsight, ExtractedVital, RiskLevel, VitalReading
from pajr.utils import elapsed_ms, now_ms, utc_now

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "We have received your message. A care coordinator will review it shortly."

ANALYSIS_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING", "description": "A concise clinical summary of the patient input."},
        "riskLevel": {
            "type": "STRING",
            "enum": [level.value for level in RiskLevel],
            "description": "Triage risk level.",
        },
        "confidenceScore": {"type": "NUMBER", "description": "Confidence in the extraction (0.0 to 1.0)."},
        "themes": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "Thematic tags for the core issues, e.g. 'Medication Non-Adherence'.",
        },
        "reasoning": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "Reasons why this risk level was assigned.",
        },
        "missingData": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "Ambiguities or missing info preventing a conclusion.",
        },
        "extractedVitals": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "type": {"type": "STRING", "enum": sorted(VITAL_TYPES)},
                    "value": {"type": "NUMBER"},
                    "unit": {"type": "STRING"},
                },
            },
        },
        "clinicalActionSuggestion": {
            "type": "STRING",
            "description": "Suggested workflow action for the care coordinator.",
        },
        "suggestedResponse": {
            "type": "STRING",
            "description": "A short, empathetic, non-diagnostic reply to the patient confirming receipt of data.",
        },
    },
    "required": [
        "summary",
        "riskLevel",
        "confidenceScore",
        "themes",
        "reasoning",
        "extractedVitals",
        "suggestedResponse",
    ],
}

SYSTEM_INSTRUCTION = (
    "You are a healthcare triage assistant. You extract structured data from informal "
    "patient text and act as a communication bridge."
)


def fallback_insight() -> ClinicalInsight:
    return ClinicalInsight(
        summary="Error analyzing input. Manual review required.",
        risk_level=RiskLevel.MEDIUM,
        confidence_score=0.0,
        themes=["System Error"],
        reasoning=["Analysis failed — fallback"],
        missing_data=["Complete analysis unavailable"],
        clinical_action_suggestion="Manual Review",
        suggested_response=FALLBACK_REPLY,
    )


class AnalysisError(Exception):
    """Raised inside the invoker when the collaborator response is unusable."""


class AnalysisInvoker:
    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    @property
    def model_name(self) -> str:
        return self._settings.gemini_model

    @staticmethod
    def _build_prompt(message_text: str, history_context: str) -> str:
        return (
            "ROLE: Expert Clinical Safety AI Triage System.\n"
            "TASK: Analyze the incoming patient message. Extract vitals, identify symptoms, "
            "assess risk, and generate a patient reply.\n"
            f"CONTEXT: Patient History Summary: {history_context.strip()}\n\n"
            "GUARDRAILS for ANALYSIS:\n"
            "1. DO NOT DIAGNOSE.\n"
            "2. Prioritize safety. If symptoms suggest cardiac distress, hypoglycemia, or sepsis, flag HIGH/CRITICAL.\n"
            "3. Be skeptical of outliers but record them.\n"
            "4. Identify core themes (e.g. \"Anxiety\", \"Medication Adherence\").\n\n"
            "GUARDRAILS for SUGGESTED RESPONSE:\n"
            "1. Tone: empathetic, calm, professional, chat style.\n"
            "2. Confirm data receipt (e.g. \"Noted your reading of 150\").\n"
            "3. If HIGH risk, say a clinician will review shortly. Never give medical advice.\n"
            "4. Maximum 2 sentences.\n\n"
            f"PATIENT MESSAGE: {json.dumps(message_text, ensure_ascii=True)}"
        )

    async def _call_model(self, model_name: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"https://generativelanguage.googleapis.com/v1beta/models/{model_name}:generateContent"
        async with httpx.AsyncClient(
            timeout=self._settings.request_timeout_sec,
            transport=self._transport,
        ) as client:
            response = await client.post(url, params={"key": self._settings.gemini_api_key}, json=body)
            response.raise_for_status()
            return response.json()

    async def _call_gemini_json(self, prompt: str) -> dict[str, Any]:
        body = {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.2,
                "responseMimeType": "application/json",
                "responseSchema": ANALYSIS_SCHEMA,
            },
        }

        model_name = self._settings.gemini_model
        fallback_model = self._settings.gemini_fallback_model
        try:
            data = await self._call_model(model_name, body)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in {401, 403, 404} and fallback_model and model_name != fallback_model:
                logger.warning(
                    "[pajr] gemini_model_retry: %s returned %s; retrying %s", model_name, status, fallback_model
                )
                data = await self._call_model(fallback_model, body)
            else:
                raise

        candidates = data.get("candidates") or []
        if not candidates:
            raise AnalysisError("response has no candidates")

        parts = (((candidates[0] or {}).get("content") or {}).get("parts")) or []
        text = "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict)).strip()
        if not text:
            raise AnalysisError("response text is empty")

        parsed = self._extract_json(text)
        if parsed is None:
            raise AnalysisError("response is not a JSON object")
        return parsed

    @staticmethod
    def _extract_json(text: str) -> dict[str, Any] | None:
        cleaned = text.strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r"^```[a-zA-Z]*\n?", "", cleaned)
            cleaned = re.sub(r"\n?```$", "", cleaned).strip()

        try:
            parsed = json.loads(cleaned)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end != -1 and end > start:
            try:
                parsed = json.loads(cleaned[start : end + 1])
                if isinstance(parsed, dict):
                    return parsed
            except json.JSONDecodeError:
                return None
        return None

    @staticmethod
    def _known_vitals(raw: Any) -> list[dict[str, Any]]:
        if not isinstance(raw, list):
            return []
        kept: list[dict[str, Any]] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            vital_type = str(item.get("type") or "").strip().upper()
            if vital_type not in VITAL_TYPES:
                continue
            if not isinstance(item.get("value"), (int, float)) or isinstance(item.get("value"), bool):
                continue
            unit = item.get("unit")
            try:
                vital = ExtractedVital(
                    type=vital_type,
                    value=item["value"],
                    unit="" if unit is None else str(unit).strip(),
                )
            except ValidationError:
                continue
            kept.append(vital.model_dump(mode="json"))
        return kept

    def _to_domain(self, data: dict[str, Any]) -> tuple[ClinicalInsight, list[VitalReading]]:
        raw = dict(data)
        raw_vitals = raw.get("extractedVitals", raw.get("extracted_vitals"))
        if raw_vitals is not None:
            raw.pop("extracted_vitals", None)
            raw["extractedVitals"] = self._known_vitals(raw_vitals)
        if isinstance(raw.get("riskLevel"), str):
            raw["riskLevel"] = raw["riskLevel"].strip().upper()

        try:
            payload = AnalysisPayload.model_validate(raw)
        except ValidationError as exc:
            raise AnalysisError(f"invalid analysis payload ({exc.error_count()} errors)") from exc

        insight = ClinicalInsight(
            summary=payload.summary,
            risk_level=payload.risk_level,
            confidence_score=payload.confidence_score,
            reasoning=payload.reasoning,
            themes=payload.themes,
            missing_data=payload.missing_data,
            clinical_action_suggestion=payload.clinical_action_suggestion or "Monitor",
            suggested_response=payload.suggested_response.strip() or "Received. Updating your care log.",
        )
        completed_at = utc_now()
        vitals = [
            VitalReading(type=v.type, value=v.value, unit=v.unit, timestamp=completed_at)
            for v in payload.extracted_vitals
        ]
        return insight, vitals

    async def analyze(
        self,
        message_text: str,
        history_context: str,
    ) -> tuple[ClinicalInsight, list[VitalReading]]:
        insight, vitals, _meta = await self.analyze_with_meta(message_text, history_context)
        return insight, vitals

    async def analyze_with_meta(
        self,
        message_text: str,
        history_context: str,
    ) -> tuple[ClinicalInsight, list[VitalReading], dict[str, Any]]:
        started = now_ms()
        if not self._settings.gemini_api_key:
            logger.warning("[pajr] gemini_api_key_missing; using fallback insight")
            return self._fallback(started, "gemini_api_key_missing")

        prompt = self._build_prompt(message_text, history_context)
        try:
            data = await asyncio.wait_for(
                self._call_gemini_json(prompt),
                timeout=self._settings.analysis_timeout_sec,
            )
            insight, vitals = self._to_domain(data)
        except asyncio.TimeoutError:
            logger.warning("[pajr] analysis_fallback: timed out after %.1fs", self._settings.analysis_timeout_sec)
            return self._fallback(started, "timeout")
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code if exc.response is not None else "unknown"
            logger.warning("[pajr] analysis_fallback: HTTPStatusError status=%s", status)
            return self._fallback(started, f"HTTPStatusError status={status}")
        except Exception as exc:
            logger.warning("[pajr] analysis_fallback: %s: %s", type(exc).__name__, exc)
            return self._fallback(started, f"{type(exc).__name__}: {exc}")

        return (
            insight,
            vitals,
            {
                "engine": f"gemini:{self.model_name}",
                "fallback_used": False,
                "latency_ms": elapsed_ms(started),
            },
        )

    def _fallback(
        self, started: float, error: str
    ) -> tuple[ClinicalInsight, list[VitalReading], dict[str, Any]]:
        return (
            fallback_insight(),
            [],
            {
                "engine": "fallback",
                "fallback_used": True,
                "error": error,
                "latency_ms": elapsed_ms(started),
            },
        )
