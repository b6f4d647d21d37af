"""Applies a triage insight to a patient record."""

from __future__ import annotations

from pajr.events import EventBus
from pajr.gateway import IngestionGateway
from pajr.registry import PatientRegistry
from pajr.schemas import ClinicalInsight, PatientRecord, VitalReading
from pajr.vitals import VitalsMerger


class RiskStateReducer:
    def __init__(
        self,
        registry: PatientRegistry,
        gateway: IngestionGateway,
        vitals: VitalsMerger,
        bus: EventBus,
    ):
        self._registry = registry
        self._gateway = gateway
        self._vitals = vitals
        self._bus = bus

    def apply(
        self,
        patient_id: str,
        insight: ClinicalInsight,
        extracted_vitals: list[VitalReading],
        *,
        source_message_id: str | None = None,
    ) -> PatientRecord:
        """Replace the stored insight and risk, record vitals and append the reply.

        Risk is overwritten, never ratcheted: a LOW insight can downgrade HIGH.
        When ``source_message_id`` is older than the patient's latest text message,
        only the vitals and the reply are recorded.
        """
        with self._registry.locked(patient_id):
            current = self._registry.get(patient_id)
            is_latest = source_message_id is None or source_message_id == current.last_patient_text_id
            if is_latest:
                self._registry.mutate(
                    patient_id,
                    lambda record: record.model_copy(
                        update={
                            "latest_insight": insight,
                            "insight_source_message_id": source_message_id,
                            "risk_status": insight.risk_level,
                            "flagged": insight.risk_level.is_flagged,
                        }
                    ),
                )
            self._vitals.merge(patient_id, extracted_vitals)
            reply = self._gateway.append_system_message(patient_id, insight.suggested_response)
            record = self._registry.get(patient_id)

        self._bus.emit(
            "insight.applied",
            {
                "patient_id": patient_id,
                "source_message_id": source_message_id,
                "reply_message_id": reply.id,
                "risk_level": record.risk_status.value,
                "flagged": record.flagged,
                "superseded": not is_latest,
                "insight": insight.model_dump(mode="json"),
            },
        )
        return record
