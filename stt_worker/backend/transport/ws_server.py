"""WebSocket bridge exposing one worker channel per connection."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from stt_worker.backend.runtime import WorkerRuntime

LOGGER = logging.getLogger("stt_worker.ws_server")

# RFC 6455 "Try Again Later"
WS_CLOSE_TRY_AGAIN_LATER = 1013
CHANNEL_CLOSE_TIMEOUT_SEC = 5.0


class _WorkerSlots:
    """Counts live channels against ``max_workers``."""

    def __init__(self, limit: int) -> None:
        self.limit = max(1, int(limit))
        self._active = 0
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    def try_acquire(self) -> bool:
        with self._lock:
            if self._active >= self.limit:
                return False
            self._active += 1
            return True

    def release(self) -> None:
        with self._lock:
            self._active = max(0, self._active - 1)


def build_ws_app(runtime: WorkerRuntime, max_workers: Optional[int] = None) -> FastAPI:
    app = FastAPI()
    slots = _WorkerSlots(
        max_workers if max_workers is not None else runtime.config.max_workers
    )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "active_workers": slots.active,
            "max_workers": slots.limit,
        }

    @app.websocket("/ws/worker")
    async def websocket_worker(websocket: WebSocket) -> None:
        await websocket.accept()
        if not slots.try_acquire():
            LOGGER.warning("Rejecting worker connection; %d in use", slots.limit)
            await websocket.close(code=WS_CLOSE_TRY_AGAIN_LATER)
            return

        loop = asyncio.get_running_loop()
        outbound: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue()

        def post(message: Dict[str, Any]) -> None:
            loop.call_soon_threadsafe(outbound.put_nowait, message)

        channel = runtime.create_channel(post, name=f"ws-{uuid.uuid4().hex[:8]}")
        channel.start()
        channel.announce()
        LOGGER.info("Worker channel '%s' connected", channel.name)

        async def recv_commands() -> None:
            try:
                while True:
                    message = await websocket.receive()
                    if message.get("type") == "websocket.disconnect":
                        break
                    text = message.get("text")
                    if not text:
                        continue
                    try:
                        data = json.loads(text)
                    except json.JSONDecodeError:
                        LOGGER.warning("Ignoring non-JSON frame on '%s'", channel.name)
                        continue
                    channel.post_message(data)
            except WebSocketDisconnect:
                pass
            finally:
                outbound.put_nowait(None)

        async def send_events() -> None:
            while True:
                event = await outbound.get()
                if event is None:
                    break
                try:
                    await websocket.send_json(event)
                except (WebSocketDisconnect, RuntimeError):
                    break

        try:
            await asyncio.gather(recv_commands(), send_events())
        finally:
            await asyncio.to_thread(channel.close, CHANNEL_CLOSE_TIMEOUT_SEC)
            slots.release()
            LOGGER.info("Worker channel '%s' disconnected", channel.name)
        try:
            await websocket.close()
        except RuntimeError:
            pass

    return app


@dataclass
class WebSocketServerHandle:
    """Handle for the background WebSocket server."""

    server: uvicorn.Server
    thread: threading.Thread

    def stop(self, timeout: Optional[float] = None) -> None:
        if self.thread.is_alive():
            self.server.should_exit = True
            self.thread.join(timeout=timeout)


def start_ws_server(
    runtime: WorkerRuntime,
    host: str,
    port: int,
    max_workers: Optional[int] = None,
) -> WebSocketServerHandle:
    """Start the worker WebSocket app in a background thread."""
    app = build_ws_app(runtime, max_workers=max_workers)
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    return WebSocketServerHandle(server=server, thread=thread)


__all__ = [
    "WS_CLOSE_TRY_AGAIN_LATER",
    "WebSocketServerHandle",
    "build_ws_app",
    "start_ws_server",
]
