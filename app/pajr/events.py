"""In-process event bus.

``emit`` never suspends: handlers are scheduled as independent tasks on the
running loop, so the caller's optimistic state update is already visible when
it returns and one failing reaction cannot affect another.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pajr.utils import utc_now

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any]], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._listeners: list[Handler] = []
        self._tasks: set[asyncio.Task[None]] = set()

    def on(self, event_name: str, handler: Handler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    def listen(self, handler: Handler) -> None:
        self._listeners.append(handler)

    def unlisten(self, handler: Handler) -> None:
        if handler in self._listeners:
            self._listeners.remove(handler)

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        envelope = {"event": event_name, "timestamp": utc_now().isoformat(), **payload}
        targets = [*self._handlers.get(event_name, []), *self._listeners]
        if not targets:
            return
        loop = asyncio.get_running_loop()
        for handler in targets:
            task = loop.create_task(self._run(handler, event_name, envelope))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, handler: Handler, event_name: str, envelope: dict[str, Any]) -> None:
        try:
            await handler(event_name, envelope)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            name = getattr(handler, "__qualname__", repr(handler))
            logger.warning("[pajr] reaction_failed: event=%s handler=%s %s: %s", event_name, name, type(exc).__name__, exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every scheduled reaction, including ones they schedule, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
