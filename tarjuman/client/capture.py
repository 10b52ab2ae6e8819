# coding=utf-8
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional, Protocol

from tarjuman.streaming.errors import CaptureError


class CaptureSource(Protocol):
    def open(self) -> None:
        ...

    def fragments(self) -> AsyncIterator[bytes]:
        ...

    def stop(self) -> bytes:
        ...


class FileCaptureSource:
    """
    Replays an already-encoded audio file the way a timesliced recorder
    delivers it: data is read in small pieces every `read_interval_sec` and
    a fragment is emitted whenever `fragment_bytes` have accumulated.

    `stop()` ends capture and returns the partial timeslice collected so far.
    """

    def __init__(
        self,
        path: str,
        fragment_bytes: int = 8000,
        reads_per_fragment: int = 5,
        timeslice_sec: float = 0.5,
    ) -> None:
        self.path = Path(path).expanduser()
        self.fragment_bytes = max(1, int(fragment_bytes))
        self.reads_per_fragment = max(1, int(reads_per_fragment))
        self.read_size = max(1, self.fragment_bytes // self.reads_per_fragment)
        self.read_interval_sec = max(0.0, float(timeslice_sec)) / self.reads_per_fragment
        self._handle: Optional[BinaryIO] = None
        self._pending = bytearray()
        self._stopped = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def open(self) -> None:
        try:
            self._handle = self.path.open("rb")
        except OSError as e:
            raise CaptureError(f"audio source unavailable: {self.path}", details={"path": str(self.path)}) from e
        self._pending = bytearray()
        self._stopped = asyncio.Event()

    async def fragments(self) -> AsyncIterator[bytes]:
        if self._handle is None:
            raise CaptureError("capture source is not open")
        while not self._stopped.is_set():
            piece = self._handle.read(self.read_size)
            if not piece:
                break
            self._pending.extend(piece)
            if len(self._pending) >= self.fragment_bytes:
                out = bytes(self._pending[: self.fragment_bytes])
                del self._pending[: self.fragment_bytes]
                yield out
            if self.read_interval_sec > 0:
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self.read_interval_sec)
                except asyncio.TimeoutError:
                    pass

    def stop(self) -> bytes:
        self._stopped.set()
        trailing = bytes(self._pending)
        self._pending = bytearray()
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        return trailing
