"""Realtime change-feed reconciliation for the active patient.

A feed delivers newly inserted ``messages`` rows, including rows written by this
process. Each subscription is a cancellable async iterator scoped to one patient,
and merges are idempotent on message id.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from pydantic import ValidationError

from pajr.config import Settings
from pajr.events import EventBus
from pajr.registry import InvalidPatient, PatientRegistry
from pajr.schemas import Message

logger = logging.getLogger(__name__)

_CLOSED = object()


class FeedSubscription:
    def __init__(self, patient_id: str, on_close: Callable[[], Awaitable[None]] | None = None):
        self.patient_id = patient_id
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, row: dict[str, Any]) -> None:
        if not self._closed:
            self._queue.put_nowait(row)

    async def rows(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            row = await self._queue.get()
            if row is _CLOSED:
                return
            yield row

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            await self._on_close()


class ChangeFeed(Protocol):
    async def open(self, patient_id: str) -> FeedSubscription: ...


class InMemoryChangeFeed:
    """Process-local feed; the local store publishes every inserted message row here."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[FeedSubscription]] = {}

    async def open(self, patient_id: str) -> FeedSubscription:
        async def _detach() -> None:
            subs = self._subscriptions.get(patient_id, [])
            if subscription in subs:
                subs.remove(subscription)

        subscription = FeedSubscription(patient_id, on_close=_detach)
        self._subscriptions.setdefault(patient_id, []).append(subscription)
        return subscription

    def publish(self, row: dict[str, Any]) -> None:
        for subscription in list(self._subscriptions.get(str(row.get("patient_id")), [])):
            subscription.push(row)

    def subscriber_count(self, patient_id: str) -> int:
        return len(self._subscriptions.get(patient_id, []))


def _record_from_payload(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    for key in ("record", "new"):
        record = data.get(key)
        if isinstance(record, dict):
            return record
    return None


class SupabaseChangeFeed:
    """INSERT events on ``public.messages`` through Supabase realtime."""

    def __init__(self, settings: Settings, client: Any | None = None):
        self._settings = settings
        self._client = client

    async def _get_client(self) -> Any:
        if self._client is None:
            from supabase import acreate_client

            if not self._settings.supabase_configured:
                raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be set for the realtime feed")
            self._client = await acreate_client(self._settings.supabase_url, self._settings.supabase_key)
        return self._client

    async def open(self, patient_id: str) -> FeedSubscription:
        client = await self._get_client()
        loop = asyncio.get_running_loop()
        channel = client.channel(f"public:messages:patient_id=eq.{patient_id}")

        async def _remove() -> None:
            await client.remove_channel(channel)

        subscription = FeedSubscription(patient_id, on_close=_remove)

        def _on_insert(payload: Any) -> None:
            record = _record_from_payload(payload)
            if record is not None:
                loop.call_soon_threadsafe(subscription.push, record)

        channel.on_postgres_changes(
            "INSERT",
            schema="public",
            table="messages",
            filter=f"patient_id=eq.{patient_id}",
            callback=_on_insert,
        )
        await channel.subscribe()
        return subscription


class RealtimeDeduplicator:
    def __init__(self, registry: PatientRegistry, feed: ChangeFeed, bus: EventBus):
        self._registry = registry
        self._feed = feed
        self._bus = bus
        self._subscription: FeedSubscription | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._active_patient_id: str | None = None

    @property
    def active_patient_id(self) -> str | None:
        return self._active_patient_id

    def on_insert(self, patient_id: str, message: Message) -> bool:
        """Merge a feed row into the record. A message id already present is a no-op."""
        merged = self._registry.append_message(patient_id, message)
        if merged:
            self._bus.emit(
                "realtime.merged",
                {"patient_id": patient_id, "message": message.model_dump(mode="json")},
            )
        return merged

    async def subscribe(self, patient_id: str) -> bool:
        self._registry.get(patient_id)
        await self.unsubscribe()
        self._active_patient_id = patient_id
        try:
            subscription = await self._feed.open(patient_id)
        except Exception as exc:
            logger.warning(
                "[pajr] realtime_subscribe_failed: patient=%s %s: %s", patient_id, type(exc).__name__, exc
            )
            return False
        self._subscription = subscription
        self._consumer = asyncio.get_running_loop().create_task(self._consume(subscription))
        logger.info("[pajr] realtime_subscribed: patient=%s", patient_id)
        return True

    async def unsubscribe(self) -> None:
        subscription, consumer = self._subscription, self._consumer
        self._subscription = None
        self._consumer = None
        self._active_patient_id = None
        if consumer is not None:
            consumer.cancel()
            with suppress(asyncio.CancelledError):
                await consumer
        if subscription is not None:
            try:
                await subscription.close()
            except Exception as exc:
                logger.warning("[pajr] realtime_teardown_failed: %s: %s", type(exc).__name__, exc)
            logger.info("[pajr] realtime_unsubscribed: patient=%s", subscription.patient_id)

    async def _consume(self, subscription: FeedSubscription) -> None:
        async for row in subscription.rows():
            if str(row.get("patient_id")) != subscription.patient_id:
                logger.warning(
                    "[pajr] realtime_row_dropped: expected patient=%s got=%s",
                    subscription.patient_id,
                    row.get("patient_id"),
                )
                continue
            try:
                message = Message.from_row(row)
            except (KeyError, ValidationError) as exc:
                logger.warning("[pajr] realtime_row_invalid: %s: %s", type(exc).__name__, exc)
                continue
            try:
                self.on_insert(subscription.patient_id, message)
            except InvalidPatient:
                logger.warning("[pajr] realtime_row_dropped: unknown patient=%s", subscription.patient_id)
