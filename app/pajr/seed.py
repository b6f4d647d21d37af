"""Demo patient provisioning for local runs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pajr.schemas import (
    ClinicalInsight,
    ContentKind,
    Message,
    PatientRecord,
    RiskLevel,
    SenderRole,
    VitalReading,
    VitalType,
)
from pajr.utils import utc_now


def _at(day: int) -> datetime:
    return datetime(2023, 10, day, 8, 0, tzinfo=timezone.utc)


def demo_patients() -> list[PatientRecord]:
    now = utc_now()
    sarah_vitals = [
        (VitalType.GLUCOSE, 140, "mg/dL", 22),
        (VitalType.GLUCOSE, 142, "mg/dL", 23),
        (VitalType.GLUCOSE, 140, "mg/dL", 24),
        (VitalType.BP_SYSTOLIC, 125, "mmHg", 24),
        (VitalType.BP_DIASTOLIC, 82, "mmHg", 24),
        (VitalType.HEART_RATE, 78, "bpm", 24),
        (VitalType.TEMP, 98.4, "°F", 24),
        (VitalType.URINE_OUTPUT, 1200, "ml", 24),
        (VitalType.GLUCOSE, 145, "mg/dL", 25),
        (VitalType.BP_SYSTOLIC, 128, "mmHg", 25),
        (VitalType.HEART_RATE, 80, "bpm", 25),
        (VitalType.GLUCOSE, 160, "mg/dL", 26),
        (VitalType.BP_SYSTOLIC, 130, "mmHg", 26),
        (VitalType.HEART_RATE, 82, "bpm", 26),
        (VitalType.GLUCOSE, 155, "mg/dL", 27),
    ]
    sarah = PatientRecord(
        id="P-1024",
        name="Sarah Devi",
        age=58,
        assigned_doctor_id="D-001",
        conditions=["Type 2 Diabetes"],
        last_interaction=now,
        risk_status=RiskLevel.MEDIUM,
        vitals_history=[
            VitalReading(type=t, value=v, unit=u, timestamp=_at(day)) for t, v, u, day in sarah_vitals
        ],
        messages=[
            Message(
                id="m1",
                sender=SenderRole.SYSTEM,
                type=ContentKind.TEXT,
                content="Welcome back, Sarah. Please share your morning readings.",
                timestamp=now - timedelta(days=1),
            ),
            Message(
                id="m2",
                sender=SenderRole.PATIENT,
                type=ContentKind.TEXT,
                content="Yesterday sugar was 155.",
                timestamp=now - timedelta(hours=22),
            ),
        ],
        latest_insight=ClinicalInsight(
            summary=(
                "Patient showing consistently elevated glucose levels (140-160 range). "
                "Compliance with medication needs verification."
            ),
            risk_level=RiskLevel.MEDIUM,
            confidence_score=0.92,
            themes=["Glycemic Instability", "Routine Check"],
            reasoning=["3-day trend of fasting glucose > 140 mg/dL", "BP stable but borderline"],
            missing_data=["Post-prandial readings", "Dietary log"],
            clinical_action_suggestion="Request post-prandial readings for next 2 days.",
            suggested_response="Thanks Sarah, your readings are logged.",
        ),
    )
    rajiv = PatientRecord(
        id="P-1099",
        name="Rajiv Kumar",
        age=64,
        assigned_doctor_id="D-002",
        conditions=["Hypertension", "Post-Cardiac Rehab"],
        last_interaction=now,
        risk_status=RiskLevel.LOW,
        vitals_history=[
            VitalReading(type=VitalType.BP_SYSTOLIC, value=130, unit="mmHg", timestamp=_at(25)),
            VitalReading(type=VitalType.GLUCOSE, value=100, unit="mg/dL", timestamp=_at(25)),
        ],
        latest_insight=ClinicalInsight(
            summary="Stable recovery. Vitals within target range.",
            risk_level=RiskLevel.LOW,
            confidence_score=0.98,
            themes=["Recovery", "Stable"],
            reasoning=["BP controlled under 135/85", "No reported symptoms"],
            missing_data=[],
            clinical_action_suggestion="Continue standard monitoring.",
            suggested_response="Thanks Rajiv, everything looks on track.",
        ),
    )
    return [sarah, rajiv]
