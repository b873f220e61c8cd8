"""Server-sent event helpers for relaying chat events to the browser."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

KEEP_ALIVE = ": keep-alive\n\n"


def format_sse(event: str, payload: dict[str, Any]) -> str:
    data = json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)
    return f"event: {event}\ndata: {data}\n\n"


async def relay_events(
    queue: asyncio.Queue[tuple[str, dict[str, Any]]],
    done: asyncio.Event,
    *,
    keep_alive_sec: float = 0.75,
) -> AsyncIterator[str]:
    """Yield queued events as SSE frames until ``done`` is set and the queue is drained."""
    while True:
        if done.is_set() and queue.empty():
            break
        try:
            event_name, envelope = await asyncio.wait_for(queue.get(), timeout=keep_alive_sec)
        except asyncio.TimeoutError:
            yield KEEP_ALIVE
            continue
        yield format_sse(event_name, envelope)
