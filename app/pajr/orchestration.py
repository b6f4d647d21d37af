"""Wiring of the clinical interaction pipeline.

``submit`` appends and emits; analysis, acknowledgments and persistence are
separate reactions to the emitted events, so a failure in one never blocks
or undoes another.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

from pajr.analysis import AnalysisInvoker, fallback_insight
from pajr.config import Settings
from pajr.events import EventBus
from pajr.gateway import IngestionGateway
from pajr.persistence import PersistenceSynchronizer
from pajr.realtime import ChangeFeed, InMemoryChangeFeed, RealtimeDeduplicator, SupabaseChangeFeed
from pajr.reducer import RiskStateReducer
from pajr.registry import PatientRegistry
from pajr.schemas import ContentKind, Message, PatientRecord, SenderRole
from pajr.storage import AttachmentArchive, LocalRecordStore, RecordStore, SupabaseRecordStore
from pajr.vitals import VitalsMerger

logger = logging.getLogger(__name__)

MEDIA_ACKNOWLEDGMENTS = {
    ContentKind.DOCUMENT: "Document received and filed in Clinical Records.",
    ContentKind.IMAGE: "Image received. Adding to clinical record.",
    ContentKind.AUDIO: "Voice note received. Adding to clinical record.",
}


class CarePipeline:
    def __init__(
        self,
        *,
        registry: PatientRegistry,
        analyzer: Any,
        store: RecordStore,
        feed: ChangeFeed,
        settings: Settings,
        archive: AttachmentArchive | None = None,
        bus: EventBus | None = None,
    ):
        self.settings = settings
        self.store = store
        self.registry = registry
        self.bus = bus or EventBus()
        self.analyzer = analyzer
        self.gateway = IngestionGateway(registry, self.bus, vitals_window=settings.history_vitals_window)
        self.vitals = VitalsMerger(registry, self.bus)
        self.reducer = RiskStateReducer(registry, self.gateway, self.vitals, self.bus)
        self.persistence = PersistenceSynchronizer(store, archive)
        self.realtime = RealtimeDeduplicator(registry, feed, self.bus)

        self.bus.on("message.appended", self.persistence.on_message_appended)
        self.bus.on("vitals.merged", self.persistence.on_vitals_merged)
        self.bus.on("analysis.requested", self._run_analysis)
        self.bus.on("media.received", self._acknowledge_media)

    def submit(
        self,
        patient_id: str,
        sender: SenderRole | str,
        content: str,
        kind: ContentKind | str = ContentKind.TEXT,
        file_name: str | None = None,
    ) -> Message:
        return self.gateway.submit(patient_id, sender, content, kind, file_name)

    def record(self, patient_id: str) -> PatientRecord:
        return self.registry.get(patient_id)

    async def _run_analysis(self, event_name: str, payload: dict[str, Any]) -> None:
        patient_id = payload["patient_id"]
        self.bus.emit("analysis.started", {"patient_id": patient_id, "message_id": payload["message_id"]})
        try:
            if hasattr(self.analyzer, "analyze_with_meta"):
                insight, vitals, meta = await self.analyzer.analyze_with_meta(
                    payload["text"], payload["history_context"]
                )
            else:
                meta = {"engine": "unknown", "fallback_used": None}
                insight, vitals = await self.analyzer.analyze(payload["text"], payload["history_context"])
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "[pajr] analysis_fallback: patient=%s %s: %s", patient_id, type(exc).__name__, exc
            )
            insight, vitals = fallback_insight(), []
            meta = {"engine": "fallback", "fallback_used": True, "error": f"{type(exc).__name__}: {exc}"}
        self.bus.emit(
            "analysis.completed",
            {
                "patient_id": patient_id,
                "message_id": payload["message_id"],
                "risk_level": insight.risk_level.value,
                "vitals_extracted": len(vitals),
                **meta,
            },
        )
        self.reducer.apply(patient_id, insight, vitals, source_message_id=payload["message_id"])

    async def _acknowledge_media(self, event_name: str, payload: dict[str, Any]) -> None:
        await asyncio.sleep(self.settings.media_ack_delay_sec)
        kind = ContentKind(payload["kind"])
        text = MEDIA_ACKNOWLEDGMENTS.get(kind, "File received. Adding to clinical record.")
        self.gateway.append_system_message(payload["patient_id"], text)

    async def bootstrap_doctor(self, doctor_id: str, store: RecordStore | None = None) -> int:
        """Register the doctor's patients from the durable store. Returns how many were loaded."""
        rows = await (store or self.store).fetch_doctor_patients(doctor_id)
        loaded = 0
        for row in rows:
            try:
                self.registry.register(record_from_row(row))
                loaded += 1
            except Exception as exc:
                logger.warning("[pajr] patient_load_failed: id=%s %s: %s", row.get("id"), type(exc).__name__, exc)
        return loaded

    async def drain(self) -> None:
        await self.bus.drain()


def record_from_row(row: dict[str, Any]) -> PatientRecord:
    messages = sorted(row.get("messages") or [], key=lambda m: str(m.get("timestamp") or ""))
    vitals = row.get("vitals") or row.get("vitals_history") or []
    data: dict[str, Any] = {
        "id": str(row["id"]),
        "name": row.get("name") or "",
        "age": row.get("age"),
        "assigned_doctor_id": row.get("assigned_doctor_id"),
        "conditions": row.get("conditions") or row.get("condition") or [],
        "risk_status": row.get("risk_status") or "LOW",
        "vitals_history": [{k: v[k] for k in ("type", "value", "unit", "timestamp") if k in v} for v in vitals],
        "messages": [Message.from_row(m) for m in messages],
        "latest_insight": row.get("latest_insight"),
    }
    if row.get("last_interaction"):
        data["last_interaction"] = row["last_interaction"]
    return PatientRecord.model_validate(data)


class CareSession:
    """One connected client: the active patient, its realtime feed and its UI event stream."""

    def __init__(self, pipeline: CarePipeline):
        self._pipeline = pipeline
        self._queues: set[asyncio.Queue[dict[str, Any]]] = set()
        pipeline.bus.listen(self._fan_out)

    @property
    def active_patient_id(self) -> str | None:
        return self._pipeline.realtime.active_patient_id

    async def select_patient(self, patient_id: str) -> bool:
        return await self._pipeline.realtime.subscribe(patient_id)

    async def clear_patient(self) -> None:
        await self._pipeline.realtime.unsubscribe()

    async def _fan_out(self, event_name: str, envelope: dict[str, Any]) -> None:
        # Results for a patient that is no longer active are not shown.
        if envelope.get("patient_id") != self.active_patient_id:
            return
        for queue in list(self._queues):
            queue.put_nowait(envelope)

    def open_stream(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._queues.add(queue)
        return queue

    def close_stream(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        self._queues.discard(queue)

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        queue = self.open_stream()
        try:
            while True:
                yield await queue.get()
        finally:
            self.close_stream(queue)

    def close(self) -> None:
        self._pipeline.bus.unlisten(self._fan_out)


def build_pipeline(settings: Settings, *, analyzer: Any | None = None) -> tuple[CarePipeline, RecordStore]:
    registry = PatientRegistry()
    if settings.seed_demo_patients:
        from pajr.seed import demo_patients

        for record in demo_patients():
            registry.register(record)

    store: RecordStore
    feed: ChangeFeed
    if settings.store_backend == "supabase":
        store = SupabaseRecordStore(settings)
        feed = SupabaseChangeFeed(settings)
    else:
        local_store = LocalRecordStore(settings)
        in_memory_feed = InMemoryChangeFeed()
        local_store.add_insert_listener(in_memory_feed.publish)
        store, feed = local_store, in_memory_feed

    pipeline = CarePipeline(
        registry=registry,
        analyzer=analyzer or AnalysisInvoker(settings),
        store=store,
        feed=feed,
        settings=settings,
        archive=AttachmentArchive(settings),
    )
    return pipeline, store
