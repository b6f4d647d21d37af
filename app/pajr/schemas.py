"""Pydantic schemas for the care pipeline and its external contracts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, model_validator

from pajr.utils import new_id, risk_rank, utc_now


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return risk_rank(self)

    @property
    def is_flagged(self) -> bool:
        return self in {RiskLevel.HIGH, RiskLevel.CRITICAL}


class SenderRole(str, Enum):
    PATIENT = "PATIENT"
    SYSTEM = "SYSTEM"
    DOCTOR = "DOCTOR"


class ContentKind(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    DOCUMENT = "DOCUMENT"


class VitalType(str, Enum):
    GLUCOSE = "GLUCOSE"
    HEART_RATE = "HEART_RATE"
    BP_SYSTOLIC = "BP_SYSTOLIC"
    BP_DIASTOLIC = "BP_DIASTOLIC"
    TEMP = "TEMP"
    SPO2 = "SPO2"
    WEIGHT = "WEIGHT"
    URINE_OUTPUT = "URINE_OUTPUT"


VITAL_TYPES = frozenset(v.value for v in VitalType)


class VitalReading(BaseModel):
    model_config = {"frozen": True}

    type: VitalType
    value: float
    unit: str = ""
    timestamp: datetime = Field(default_factory=utc_now)

    def to_row(self, patient_id: str) -> dict[str, Any]:
        return {
            "patient_id": patient_id,
            "type": self.type.value,
            "value": self.value,
            "unit": self.unit,
            "timestamp": self.timestamp.isoformat(),
        }


class Message(BaseModel):
    model_config = {"frozen": True, "populate_by_name": True}

    id: str = Field(default_factory=new_id)
    sender: SenderRole
    content: str
    type: ContentKind = ContentKind.TEXT
    file_name: str | None = Field(default=None, validation_alias=AliasChoices("file_name", "fileName"))
    timestamp: datetime = Field(default_factory=utc_now)

    def to_row(self, patient_id: str) -> dict[str, Any]:
        return {
            "id": self.id,
            "patient_id": patient_id,
            "sender": self.sender.value,
            "content": self.content,
            "type": self.type.value,
            "file_name": self.file_name,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Message":
        return cls.model_validate(
            {
                "id": str(row["id"]),
                "sender": row["sender"],
                "content": row.get("content") or "",
                "type": row.get("type") or ContentKind.TEXT,
                "file_name": row.get("file_name"),
                "timestamp": row.get("timestamp") or utc_now(),
            }
        )


class ClinicalInsight(BaseModel):
    model_config = {"frozen": True}

    summary: str
    risk_level: RiskLevel
    confidence_score: float = Field(ge=0.0, le=1.0)
    reasoning: list[str] = Field(default_factory=list)
    themes: list[str] = Field(default_factory=list)
    missing_data: list[str] = Field(default_factory=list)
    clinical_action_suggestion: str = "Monitor"
    suggested_response: str


class ExtractedVital(BaseModel):
    type: VitalType
    value: float
    unit: str = ""


class AnalysisPayload(BaseModel):
    """Structured response returned by the triage analysis collaborator."""

    summary: str
    risk_level: RiskLevel = Field(validation_alias=AliasChoices("riskLevel", "risk_level"))
    confidence_score: float = Field(
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("confidenceScore", "confidence_score"),
    )
    themes: list[str]
    reasoning: list[str]
    missing_data: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("missingData", "missing_data"),
    )
    extracted_vitals: list[ExtractedVital] = Field(
        validation_alias=AliasChoices("extractedVitals", "extracted_vitals"),
    )
    clinical_action_suggestion: str = Field(
        default="Monitor",
        validation_alias=AliasChoices("clinicalActionSuggestion", "clinical_action_suggestion"),
    )
    suggested_response: str = Field(
        validation_alias=AliasChoices("suggestedResponse", "suggested_response"),
    )


class PatientRecord(BaseModel):
    """Immutable snapshot of one patient. Writers replace it through the registry."""

    model_config = {"frozen": True}

    id: str
    name: str
    age: int | None = Field(default=None, ge=0, le=130)
    assigned_doctor_id: str | None = None
    conditions: tuple[str, ...] = ()
    last_interaction: datetime = Field(default_factory=utc_now)
    risk_status: RiskLevel = RiskLevel.LOW
    flagged: bool = False
    vitals_history: tuple[VitalReading, ...] = ()
    messages: tuple[Message, ...] = ()
    latest_insight: ClinicalInsight | None = None
    insight_source_message_id: str | None = None
    last_patient_text_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_flag(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = {**data, "flagged": RiskLevel(data.get("risk_status") or RiskLevel.LOW).is_flagged}
        return data


class SubmitMessageRequest(BaseModel):
    sender: SenderRole
    content: str = ""
    type: ContentKind = ContentKind.TEXT
    file_name: str | None = Field(default=None, validation_alias=AliasChoices("file_name", "fileName"))


class ActivePatientRequest(BaseModel):
    patient_id: str = Field(validation_alias=AliasChoices("patient_id", "patientId"))
