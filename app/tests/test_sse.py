import asyncio
import json

from pajr.sse import KEEP_ALIVE, format_sse, stream_envelopes


def test_format_sse_frames_json_payload():
    frame = format_sse("insight.applied", {"patient_id": "P-1", "risk": "HIGH"}, event_id=7)
    assert frame == 'id: 7\nevent: insight.applied\ndata: {"patient_id":"P-1","risk":"HIGH"}\n\n'
    assert format_sse("ping", {}).startswith("event: ping\n")


def test_stream_numbers_events_and_keeps_alive():
    closed: list[bool] = []

    async def scenario():
        queue: asyncio.Queue = asyncio.Queue()
        stream = stream_envelopes(queue, lambda: closed.append(True), keep_alive_sec=0.01)
        idle = await stream.__anext__()
        queue.put_nowait({"event": "message.appended", "patient_id": "P-1"})
        queue.put_nowait({"event": "insight.applied", "patient_id": "P-1"})
        frames = [await stream.__anext__(), await stream.__anext__()]
        await stream.aclose()
        return idle, frames

    idle, frames = asyncio.run(scenario())
    assert idle == KEEP_ALIVE
    assert frames[0].startswith("id: 1\nevent: message.appended\n")
    assert frames[1].startswith("id: 2\nevent: insight.applied\n")
    assert json.loads(frames[1].split("data: ", 1)[1])["patient_id"] == "P-1"
    assert closed == [True]
