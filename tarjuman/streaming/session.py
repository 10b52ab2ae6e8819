# coding=utf-8
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .chunk_batcher import Batch, ChunkBatcher
from .pipeline import PipelineOutcome, RecognitionTranslationPipeline
from .session_state import SessionState, SessionStateMachine

logger = logging.getLogger(__name__)

SendJson = Callable[[Dict[str, Any]], Awaitable[None]]
TraceHook = Callable[..., None]


@dataclass
class SessionStats:
    fragments: int = 0
    fragment_bytes: int = 0
    fragments_dropped_idle: int = 0
    batches_submitted: int = 0
    pending_discarded: int = 0
    updates_sent: int = 0
    silences: int = 0
    errors_sent: int = 0
    results_dropped_after_stop: int = 0
    last_error: str = ""


class StreamSession:
    """
    Server side of one client connection.

    Owns the recording state, the chunk batcher and the set of in-flight
    pipeline tasks. Results are sent in completion order; results that land
    after a stop are delivered unless `drop_results_after_stop` is set.
    """

    def __init__(
        self,
        pipeline: RecognitionTranslationPipeline,
        send_json: SendJson,
        *,
        batch_threshold: int = 2,
        drop_results_after_stop: bool = False,
        peer: str = "unknown",
        trace: Optional[TraceHook] = None,
    ) -> None:
        self.pipeline = pipeline
        self._send_json = send_json
        self.batcher = ChunkBatcher(threshold=batch_threshold)
        self.state = SessionStateMachine()
        self.drop_results_after_stop = bool(drop_results_after_stop)
        self.peer = peer
        self.stats = SessionStats()
        self._trace = trace
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _trace_event(self, event: str, **payload: Any) -> None:
        if self._trace is not None:
            self._trace(event, **payload)

    async def start(self) -> bool:
        if not self.state.can_transition(SessionState.RECORDING):
            logger.info("start ignored peer=%s state=%s", self.peer, self.state.state.value)
            return False
        dropped = self.batcher.on_session_start()
        self.state.transition(SessionState.RECORDING)
        logger.info("recording started peer=%s generation=%d", self.peer, self.state.generation)
        self._trace_event("recording_started", generation=self.state.generation, dropped=dropped)
        await self._send_json({"type": "recording-started"})
        return True

    async def stop(self) -> bool:
        if not self.state.can_transition(SessionState.STOPPING):
            logger.info("stop ignored peer=%s state=%s", self.peer, self.state.state.value)
            return False
        self.state.transition(SessionState.STOPPING)
        dropped = self.batcher.on_session_stop()
        self.stats.pending_discarded += dropped
        logger.info(
            "recording stopped peer=%s pending_discarded=%d in_flight=%d",
            self.peer,
            dropped,
            self.in_flight,
        )
        self._trace_event("recording_stopped", dropped=dropped, in_flight=self.in_flight)
        try:
            await self._send_json({"type": "recording-stopped"})
        finally:
            self.state.transition(SessionState.IDLE)
        return True

    def on_fragment(self, fragment: bytes) -> Optional[Batch]:
        if not self.state.is_recording:
            self.stats.fragments_dropped_idle += 1
            return None
        self.stats.fragments += 1
        self.stats.fragment_bytes += len(fragment)
        batch = self.batcher.on_fragment(fragment)
        if batch is None:
            return None
        self.stats.batches_submitted += 1
        self._trace_event("batch_submitted", seq=batch.seq, bytes=len(batch.content))
        task = asyncio.create_task(self._run_batch(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return batch

    def _is_stale(self, batch: Batch) -> bool:
        return not self.state.is_recording or batch.generation != self.state.generation

    async def _run_batch(self, batch: Batch) -> None:
        outcome = await self.pipeline.process(batch)
        self._trace_event(
            "batch_done",
            seq=outcome.seq,
            outcome=outcome.kind,
            elapsed_ms=outcome.elapsed_ms,
        )
        try:
            await self._deliver(batch, outcome)
        except Exception as e:
            logger.warning("result delivery failed peer=%s seq=%d error=%s", self.peer, batch.seq, e)

    async def _deliver(self, batch: Batch, outcome: PipelineOutcome) -> None:
        message = outcome.to_message()
        if message is None:
            self.stats.silences += 1
            return
        if self.drop_results_after_stop and self._is_stale(batch):
            self.stats.results_dropped_after_stop += 1
            logger.info("late result dropped peer=%s seq=%d kind=%s", self.peer, batch.seq, outcome.kind)
            return
        if message["type"] == "error":
            self.stats.errors_sent += 1
            self.stats.last_error = outcome.message
        else:
            self.stats.updates_sent += 1
        await self._send_json(message)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
        self._tasks.clear()
        self.batcher.on_session_stop()
