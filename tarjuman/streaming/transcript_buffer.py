# coding=utf-8
"""
Display buffers for the transcript/translation pair.

Two text accumulators (source and target language) are driven by the same
stream of updates. The policy decides how new text is joined and how the
accumulated text is bounded:

- compact: pause-aware; a gap of at least `pause_threshold_ms` starts a new
  paragraph, otherwise text is joined with a space. Truncated to a suffix,
  preferring a paragraph boundary as the cut point.
- cumulative: always joined with a space; once over `max_length` only the
  trailing `keep_chars` are kept.
- latest: shows only the most recent update.
"""
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .pipeline import TranscriptUpdate

ELLIPSIS = "..."
PARAGRAPH_BREAK = "\n\n"


class BufferPolicy(str, Enum):
    COMPACT = "compact"
    CUMULATIVE = "cumulative"
    LATEST = "latest"

    @classmethod
    def parse(cls, raw: object) -> "BufferPolicy":
        text = str(raw or "").strip().lower()
        for item in cls:
            if item.value == text:
                return item
        raise ValueError(f"unknown buffer policy: {raw!r}")


@dataclass(frozen=True)
class BufferConfig:
    policy: BufferPolicy = BufferPolicy.COMPACT
    pause_threshold_ms: float = 2000.0
    compact_max_length: int = 300
    # The target accumulator is allowed this share of the source ceiling.
    compact_target_ratio: float = 0.8
    compact_trim_margin: int = 100
    cumulative_max_length: int = 2000
    cumulative_keep_chars: int = 1500


@dataclass(frozen=True)
class TranscriptSnapshot:
    source_text: str
    target_text: str
    policy: BufferPolicy


DisplaySink = Callable[[TranscriptSnapshot], None]


class TextAccumulator(ABC):
    """
    One language's accumulated text plus the timestamp of its last update.
    """

    def __init__(self, max_length: int) -> None:
        self.max_length = max(1, int(max_length))
        self.content = ""
        self.last_update_ms: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()

    def display(self) -> str:
        return self.content.strip()

    def reset(self) -> None:
        self.content = ""
        self.last_update_ms = None

    @abstractmethod
    def append(self, text: str, now_ms: float) -> bool:
        """Add one update; return True when the content changed."""


class CompactAccumulator(TextAccumulator):
    def __init__(
        self,
        max_length: int = 300,
        pause_threshold_ms: float = 2000.0,
        boundary_floor: Optional[float] = None,
        trim_margin: int = 100,
    ) -> None:
        super().__init__(max_length)
        self.pause_threshold_ms = max(0.0, float(pause_threshold_ms))
        self.boundary_floor = float(self.max_length) / 3.0 if boundary_floor is None else float(boundary_floor)
        self.trim_margin = max(0, min(int(trim_margin), self.max_length - 1))

    def is_continuation(self, now_ms: float) -> bool:
        if self.is_empty or self.last_update_ms is None:
            return False
        return (float(now_ms) - self.last_update_ms) < self.pause_threshold_ms

    def append(self, text: str, now_ms: float) -> bool:
        piece = str(text or "").strip()
        if not piece:
            return False
        sep = " " if self.is_continuation(now_ms) else PARAGRAPH_BREAK
        self.content = self.content.strip() + sep + piece
        self._truncate()
        self.last_update_ms = float(now_ms)
        return True

    def _truncate(self) -> None:
        size = len(self.content)
        if size <= self.max_length:
            return
        cut = size - self.max_length + self.trim_margin
        boundary = self.content.rfind(PARAGRAPH_BREAK, 0, cut + len(PARAGRAPH_BREAK))
        if boundary > self.boundary_floor and size - boundary <= self.max_length:
            cut = boundary
        self.content = ELLIPSIS + self.content[cut:]


class CumulativeAccumulator(TextAccumulator):
    def __init__(self, max_length: int = 2000, keep_chars: int = 1500) -> None:
        super().__init__(max_length)
        self.keep_chars = max(1, min(int(keep_chars), self.max_length - len(ELLIPSIS)))

    def append(self, text: str, now_ms: float) -> bool:
        piece = str(text or "").strip()
        if not piece:
            return False
        if self.content and self.content[-1] not in (" ", "\n"):
            self.content += " "
        self.content += piece
        if len(self.content) > self.max_length:
            self.content = ELLIPSIS + self.content[-self.keep_chars:]
        self.last_update_ms = float(now_ms)
        return True


class LatestAccumulator(TextAccumulator):
    def append(self, text: str, now_ms: float) -> bool:
        piece = str(text or "").strip()
        if not piece or piece == self.content:
            return False
        if len(piece) > self.max_length:
            piece = ELLIPSIS + piece[-(self.max_length - len(ELLIPSIS)):]
        self.content = piece
        self.last_update_ms = float(now_ms)
        return True


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class TranscriptBuffer:
    """
    Per-session transcript display state.

    Every change is broadcast to the registered display sinks, in
    registration order. Mutations are serialized by an internal lock.
    """

    def __init__(
        self,
        config: Optional[BufferConfig] = None,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self.config = config or BufferConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._sinks: List[DisplaySink] = []
        self.source, self.target = self._build_accumulators(self.config)

    @staticmethod
    def _build_accumulators(cfg: BufferConfig):
        if cfg.policy == BufferPolicy.COMPACT:
            target_max = max(1, int(cfg.compact_max_length * cfg.compact_target_ratio))
            source = CompactAccumulator(
                max_length=cfg.compact_max_length,
                pause_threshold_ms=cfg.pause_threshold_ms,
                boundary_floor=cfg.compact_max_length / 3.0,
                trim_margin=cfg.compact_trim_margin,
            )
            target = CompactAccumulator(
                max_length=target_max,
                pause_threshold_ms=cfg.pause_threshold_ms,
                boundary_floor=target_max / 2.0,
                trim_margin=cfg.compact_trim_margin,
            )
            return source, target
        if cfg.policy == BufferPolicy.CUMULATIVE:
            return (
                CumulativeAccumulator(cfg.cumulative_max_length, cfg.cumulative_keep_chars),
                CumulativeAccumulator(cfg.cumulative_max_length, cfg.cumulative_keep_chars),
            )
        return LatestAccumulator(cfg.cumulative_max_length), LatestAccumulator(cfg.cumulative_max_length)

    @property
    def policy(self) -> BufferPolicy:
        return self.config.policy

    def add_sink(self, sink: DisplaySink) -> None:
        with self._lock:
            if sink not in self._sinks:
                self._sinks.append(sink)

    def remove_sink(self, sink: DisplaySink) -> bool:
        with self._lock:
            try:
                self._sinks.remove(sink)
            except ValueError:
                return False
            return True

    def snapshot(self) -> TranscriptSnapshot:
        return TranscriptSnapshot(
            source_text=self.source.display(),
            target_text=self.target.display(),
            policy=self.config.policy,
        )

    def reset(self) -> TranscriptSnapshot:
        with self._lock:
            self.source.reset()
            self.target.reset()
            snap = self.snapshot()
            sinks = list(self._sinks)
        self._broadcast(sinks, snap)
        return snap

    def apply(self, update: TranscriptUpdate, now_ms: Optional[float] = None) -> bool:
        ts = self._clock() if now_ms is None else float(now_ms)
        with self._lock:
            changed_source = self.source.append(update.transcript, ts)
            changed_target = self.target.append(update.translation, ts)
            if not (changed_source or changed_target):
                return False
            snap = self.snapshot()
            sinks = list(self._sinks)
        self._broadcast(sinks, snap)
        return True

    @staticmethod
    def _broadcast(sinks: List[DisplaySink], snap: TranscriptSnapshot) -> None:
        for sink in sinks:
            sink(snap)
