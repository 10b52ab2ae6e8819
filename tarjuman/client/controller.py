# coding=utf-8
"""
Client side of a recording session: capture -> transport, and inbound
transcription updates -> TranscriptBuffer.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import suppress
from typing import Any, Callable, Dict, List, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from tarjuman.client.capture import CaptureSource
from tarjuman.streaming.errors import CaptureError, TransportError
from tarjuman.streaming.pipeline import TranscriptUpdate
from tarjuman.streaming.session_state import SessionState, SessionStateMachine
from tarjuman.streaming.transcript_buffer import TranscriptBuffer

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please restart the session and try again."
StatusSink = Callable[[str, str], None]


class Transport(Protocol):
    async def send_event(self, event_type: str) -> None:
        ...

    async def send_fragment(self, fragment: bytes) -> None:
        ...

    async def receive(self) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...


class WebSocketTransport:
    def __init__(self, url: str, max_size: int = 16 * 1024 * 1024) -> None:
        self.url = str(url)
        self.max_size = int(max_size)
        self._ws: Any = None

    async def connect(self) -> Dict[str, Any]:
        try:
            self._ws = await websockets.connect(self.url, max_size=self.max_size)
        except (OSError, InvalidHandshake) as e:
            raise TransportError(f"cannot connect to {self.url}: {e}") from e
        ready = await self.receive()
        if str(ready.get("type", "")).lower() != "ready":
            raise TransportError(f"unexpected first message: {ready}")
        return ready

    def _require(self) -> Any:
        if self._ws is None:
            raise TransportError("transport is not connected")
        return self._ws

    async def send_event(self, event_type: str) -> None:
        ws = self._require()
        try:
            await ws.send(json.dumps({"type": event_type}))
        except ConnectionClosed as e:
            raise TransportError(f"connection closed: {e}") from e

    async def send_fragment(self, fragment: bytes) -> None:
        ws = self._require()
        try:
            await ws.send(bytes(fragment))
        except ConnectionClosed as e:
            raise TransportError(f"connection closed: {e}") from e

    async def receive(self) -> Dict[str, Any]:
        ws = self._require()
        while True:
            try:
                raw = await ws.recv()
            except ConnectionClosed as e:
                raise TransportError(f"connection closed: {e}") from e
            if isinstance(raw, bytes):
                continue
            msg = json.loads(raw)
            if isinstance(msg, dict):
                return msg

    async def close(self) -> None:
        if self._ws is not None:
            with suppress(Exception):
                await self._ws.close()
            self._ws = None


class SessionController:
    """
    One recording session at a time per connection. start() while a session
    is active and stop() while idle are ignored and return False.
    """

    def __init__(
        self,
        transport: Transport,
        capture_factory: Callable[[], CaptureSource],
        buffer: Optional[TranscriptBuffer] = None,
    ) -> None:
        self.transport = transport
        self.capture_factory = capture_factory
        self.buffer = buffer or TranscriptBuffer()
        self.state = SessionStateMachine()
        self.events: List[Dict[str, Any]] = []
        self.last_message_at = time.monotonic()
        self._capture: Optional[CaptureSource] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._status_sinks: List[StatusSink] = []

    def add_status_sink(self, sink: StatusSink) -> None:
        if sink not in self._status_sinks:
            self._status_sinks.append(sink)

    def remove_status_sink(self, sink: StatusSink) -> None:
        with suppress(ValueError):
            self._status_sinks.remove(sink)

    def _status(self, level: str, message: str) -> None:
        log = logger.warning if level == "error" else logger.info
        log("status level=%s message=%s", level, message)
        for sink in list(self._status_sinks):
            sink(level, message)

    @property
    def is_recording(self) -> bool:
        return self.state.is_recording

    async def start(self) -> bool:
        if not self.state.can_transition(SessionState.RECORDING):
            logger.info("start ignored state=%s", self.state.state.value)
            return False

        capture = self.capture_factory()
        try:
            capture.open()
        except CaptureError as e:
            self._status("error", f"Failed to access audio source: {e}")
            return False

        self.buffer.reset()
        self.state.transition(SessionState.RECORDING)
        self._capture = capture
        try:
            await self.transport.send_event("start-recording")
        except TransportError as e:
            self._abort()
            self._status("error", f"Disconnected from transcription service: {e}")
            return False
        self._pump_task = asyncio.create_task(self._pump(capture))
        self._status("success", "Recording... speak into your microphone")
        return True

    async def _pump(self, capture: CaptureSource) -> None:
        try:
            async for fragment in capture.fragments():
                if not fragment:
                    continue
                await self.transport.send_fragment(fragment)
        except TransportError as e:
            self._abort(from_pump=True)
            self._status("error", f"Disconnected from transcription service: {e}")
        except Exception:
            logger.exception("capture pump failed")
            self._abort(from_pump=True)
            self._status("error", UNEXPECTED_ERROR_MESSAGE)

    async def stop(self) -> bool:
        if not self.state.can_transition(SessionState.STOPPING):
            logger.info("stop ignored state=%s", self.state.state.value)
            return False
        self.state.transition(SessionState.STOPPING)
        capture, self._capture = self._capture, None
        pump, self._pump_task = self._pump_task, None
        connected = True
        try:
            await self.transport.send_event("stop-recording")
        except TransportError as e:
            connected = False
            self._status("error", f"Disconnected from transcription service: {e}")
        try:
            trailing = capture.stop() if capture is not None else b""
            if pump is not None:
                with suppress(asyncio.CancelledError):
                    await pump
            if trailing and connected:
                try:
                    await self.transport.send_fragment(trailing)
                except TransportError as e:
                    self._status("error", f"Disconnected from transcription service: {e}")
        finally:
            if self.state.state == SessionState.STOPPING:
                self.state.transition(SessionState.IDLE)
        self._status("info", "Recording stopped")
        return True

    def _abort(self, from_pump: bool = False) -> None:
        if self.state.state != SessionState.RECORDING:
            return
        self.state.transition(SessionState.STOPPING)
        capture, self._capture = self._capture, None
        if capture is not None:
            capture.stop()
        pump, self._pump_task = self._pump_task, None
        if pump is not None and not from_pump and not pump.done():
            pump.cancel()
        self.state.transition(SessionState.IDLE)

    async def wait_capture_done(self) -> None:
        """Block until the capture source is exhausted or stopped."""
        pump = self._pump_task
        if pump is not None:
            with suppress(asyncio.CancelledError):
                await pump

    def handle_message(self, msg: Dict[str, Any]) -> None:
        self.events.append(msg)
        self.last_message_at = time.monotonic()
        msg_type = str(msg.get("type", "")).lower()
        if msg_type == "transcription-update":
            self.buffer.apply(TranscriptUpdate.from_message(msg))
            return
        if msg_type == "error":
            self._status("error", f"Server error: {msg.get('message', '')}")
            return
        logger.debug("server event type=%s", msg_type)

    async def run_receiver(self) -> None:
        try:
            while True:
                msg = await self.transport.receive()
                self.handle_message(msg)
        except asyncio.CancelledError:
            raise
        except TransportError as e:
            self._abort()
            self._status("error", f"Disconnected from transcription service: {e}")
        except Exception:
            logger.exception("receiver failed")
            self._abort()
            self._status("error", UNEXPECTED_ERROR_MESSAGE)

    async def settle(self, quiet_sec: float = 2.0, timeout_sec: float = 30.0) -> None:
        """Wait until no server message has arrived for `quiet_sec`."""
        deadline = time.monotonic() + max(0.0, float(timeout_sec))
        quiet = max(0.05, float(quiet_sec))
        while time.monotonic() < deadline:
            if time.monotonic() - self.last_message_at >= quiet:
                return
            await asyncio.sleep(min(0.1, quiet))
