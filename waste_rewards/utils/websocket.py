import asyncio
import logging
from typing import Any, AsyncIterator, Callable

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


async def stream_to_websocket(websocket: WebSocket, stream: AsyncIterator[Any], encode: Callable[[Any], Any]) -> None:
    """Send every item of ``stream`` as JSON until either side stops.

    The stream is always closed on exit so its store subscription is released
    as soon as the client disconnects.
    """

    async def send() -> None:
        async for item in stream:
            await websocket.send_json(encode(item))

    async def receive() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass

    sender = asyncio.create_task(send())
    receiver = asyncio.create_task(receive())
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        if sender in done and sender.exception() is not None:
            logger.error(f"WebSocket stream error: {sender.exception()}")
    finally:
        for task in (sender, receiver):
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        await stream.aclose()

    if receiver not in done:
        # Stream finished on its own; tell the client nothing more is coming
        await websocket.close()
