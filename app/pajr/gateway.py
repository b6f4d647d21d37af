"""Ingestion gateway: the single append path for chat messages."""

from __future__ import annotations

import asyncio

from pajr.events import EventBus
from pajr.registry import PatientRegistry
from pajr.schemas import ContentKind, Message, PatientRecord, SenderRole
from pajr.utils import utc_now


def build_history_context(record: PatientRecord, *, vitals_window: int = 3) -> str:
    conditions = ", ".join(record.conditions) if record.conditions else "None recorded"
    recent = record.vitals_history[-vitals_window:] if vitals_window > 0 else []
    vitals_text = ", ".join(f"{v.type.value}: {v.value:g}" for v in recent) or "None recorded"
    age = record.age if record.age is not None else "unknown"
    return f"Age: {age}, Conditions: {conditions}. Recent Vitals: {vitals_text}."


class IngestionGateway:
    def __init__(self, registry: PatientRegistry, bus: EventBus, *, vitals_window: int = 3):
        self._registry = registry
        self._bus = bus
        self._vitals_window = vitals_window

    def submit(
        self,
        patient_id: str,
        sender: SenderRole | str,
        content: str,
        kind: ContentKind | str = ContentKind.TEXT,
        file_name: str | None = None,
    ) -> Message:
        """Stamp, append and announce a new chat message.

        Returns once the message is visible in the patient record. Analysis and
        persistence run later as reactions to the emitted events.

        Must be called with an event loop running, since those reactions are
        scheduled on it; otherwise nothing is appended.
        """
        self._registry.get(patient_id)
        sender = SenderRole(sender)
        kind = ContentKind(kind)
        if kind is ContentKind.TEXT and not (content or "").strip():
            raise ValueError("Text messages require non-empty content")
        try:
            asyncio.get_running_loop()
        except RuntimeError as exc:
            raise RuntimeError("submit requires a running event loop") from exc

        message = Message(sender=sender, content=content or "", type=kind, file_name=file_name)
        history_context = None
        with self._registry.locked(patient_id):
            self.append_message(patient_id, message)
            if sender is SenderRole.PATIENT and kind is ContentKind.TEXT:
                record = self._registry.mutate(
                    patient_id,
                    lambda r: r.model_copy(update={"last_patient_text_id": message.id}),
                )
                history_context = build_history_context(record, vitals_window=self._vitals_window)

        if sender is SenderRole.PATIENT:
            if history_context is not None:
                self._bus.emit(
                    "analysis.requested",
                    {
                        "patient_id": patient_id,
                        "message_id": message.id,
                        "text": message.content,
                        "history_context": history_context,
                    },
                )
            else:
                self._bus.emit(
                    "media.received",
                    {"patient_id": patient_id, "message_id": message.id, "kind": kind.value},
                )
        return message

    def append_message(self, patient_id: str, message: Message) -> bool:
        """Idempotent append shared by submissions, triage replies and acknowledgments."""
        with self._registry.locked(patient_id):
            if not self._registry.append_message(patient_id, message):
                return False
            self._registry.mutate(
                patient_id,
                lambda r: r.model_copy(update={"last_interaction": utc_now()}),
            )
        self._bus.emit(
            "message.appended",
            {"patient_id": patient_id, "message": message.model_dump(mode="json")},
        )
        return True

    def append_system_message(self, patient_id: str, text: str) -> Message:
        message = Message(sender=SenderRole.SYSTEM, content=text, type=ContentKind.TEXT)
        self.append_message(patient_id, message)
        return message
