# coding=utf-8
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Batch:
    seq: int
    fragments: Tuple[bytes, ...]
    generation: int = 0

    @property
    def content(self) -> bytes:
        return b"".join(self.fragments)

    @property
    def fragment_count(self) -> int:
        return len(self.fragments)

    @property
    def is_empty(self) -> bool:
        return not any(self.fragments)


class ChunkBatcher:
    """
    Collect encoded audio fragments in arrival order and hand them out as a
    batch once exactly `threshold` fragments are pending.

    A partial batch is never submitted: session start and stop discard it.
    """

    def __init__(self, threshold: int = 2) -> None:
        self.threshold = max(1, int(threshold))
        self._pending: List[bytes] = []
        self._next_seq = 1
        self.generation = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def on_fragment(self, fragment: bytes) -> Optional[Batch]:
        if not isinstance(fragment, (bytes, bytearray, memoryview)):
            raise ValueError("audio fragment must be bytes")
        self._pending.append(bytes(fragment))
        if len(self._pending) < self.threshold:
            return None
        taken, self._pending = self._pending, []
        batch = Batch(seq=self._next_seq, fragments=tuple(taken), generation=self.generation)
        self._next_seq += 1
        return batch

    def on_session_start(self) -> int:
        self.generation += 1
        return self._clear()

    def on_session_stop(self) -> int:
        return self._clear()

    def _clear(self) -> int:
        dropped = len(self._pending)
        self._pending = []
        return dropped
