"""Server-sent event framing for the session event stream."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Callable

KEEP_ALIVE = ": keep-alive\n\n"


def format_sse(event: str, payload: dict[str, Any], *, event_id: str | int | None = None) -> str:
    data = json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)
    head = f"id: {event_id}\n" if event_id is not None else ""
    return f"{head}event: {event}\ndata: {data}\n\n"


async def stream_envelopes(
    queue: asyncio.Queue[dict[str, Any]],
    on_close: Callable[[], None],
    *,
    keep_alive_sec: float = 0.75,
) -> AsyncIterator[str]:
    """Frame bus envelopes as SSE, numbering them, with comment frames while idle."""
    sequence = 0
    try:
        while True:
            try:
                envelope = await asyncio.wait_for(queue.get(), timeout=keep_alive_sec)
            except asyncio.TimeoutError:
                yield KEEP_ALIVE
                continue
            sequence += 1
            yield format_sse(str(envelope.get("event", "message")), envelope, event_id=sequence)
    finally:
        on_close()
