"""Best-effort write-through of the in-memory record to the durable store."""

from __future__ import annotations

import logging
from typing import Any

from pajr.schemas import ContentKind, Message, VitalReading
from pajr.storage import AttachmentArchive, RecordStore

logger = logging.getLogger(__name__)


class PersistenceSynchronizer:
    """Writes messages and vitals to the store without ever raising.

    The in-memory record stays the session's source of truth: a failed write is
    logged and dropped, never retried or escalated.
    """

    def __init__(self, store: RecordStore, archive: AttachmentArchive | None = None):
        self._store = store
        self._archive = archive

    async def persist_message(self, patient_id: str, message: Message) -> None:
        try:
            row = message.to_row(patient_id)
            if (
                self._archive is not None
                and message.type is not ContentKind.TEXT
                and AttachmentArchive.is_inline(message.content)
            ):
                row["content"] = await self._archive.store_inline(
                    patient_id, message.id, message.content, file_name=message.file_name
                )
            await self._store.insert_message(row)
        except Exception as exc:
            logger.warning(
                "[pajr] persist_message_failed: patient=%s message=%s %s: %s",
                patient_id,
                message.id,
                type(exc).__name__,
                exc,
            )

    async def persist_vitals(self, patient_id: str, readings: list[VitalReading]) -> None:
        if not readings:
            return
        try:
            await self._store.insert_vitals([r.to_row(patient_id) for r in readings])
        except Exception as exc:
            logger.warning(
                "[pajr] persist_vitals_failed: patient=%s count=%d %s: %s",
                patient_id,
                len(readings),
                type(exc).__name__,
                exc,
            )

    async def on_message_appended(self, event_name: str, payload: dict[str, Any]) -> None:
        await self.persist_message(payload["patient_id"], Message.model_validate(payload["message"]))

    async def on_vitals_merged(self, event_name: str, payload: dict[str, Any]) -> None:
        readings = [VitalReading.model_validate(r) for r in payload.get("readings", [])]
        await self.persist_vitals(payload["patient_id"], readings)
