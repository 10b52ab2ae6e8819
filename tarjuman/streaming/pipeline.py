# coding=utf-8
"""
Sequential recognize -> translate processing of one audio batch.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, TypeVar

from .chunk_batcher import Batch
from .errors import PipelineError, RecognitionError, TranslationError

logger = logging.getLogger(__name__)
T = TypeVar("T")

OUTCOME_UPDATE = "update"
OUTCOME_SILENCE = "silence"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"


def _safe_seq(raw: Any) -> int:
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


class Recognizer(Protocol):
    def recognize(self, audio: bytes, language_code: str) -> str:
        ...


class Translator(Protocol):
    def translate(
        self,
        text: str,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
    ) -> str:
        ...


@dataclass(frozen=True)
class TranscriptUpdate:
    transcript: str = ""
    translation: str = ""
    seq: int = 0

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "transcription-update",
            "transcript": self.transcript,
            "translation": self.translation,
            "seq": int(self.seq),
        }

    @classmethod
    def from_message(cls, payload: Dict[str, Any]) -> "TranscriptUpdate":
        return cls(
            transcript=str(payload.get("transcript") or ""),
            translation=str(payload.get("translation") or ""),
            seq=_safe_seq(payload.get("seq")),
        )


@dataclass(frozen=True)
class PipelineOutcome:
    kind: str
    seq: int
    update: Optional[TranscriptUpdate] = None
    message: str = ""
    elapsed_ms: int = 0

    @property
    def should_emit(self) -> bool:
        return self.kind in {OUTCOME_UPDATE, OUTCOME_ERROR}

    def to_message(self) -> Optional[Dict[str, Any]]:
        if self.kind == OUTCOME_UPDATE and self.update is not None:
            return self.update.to_message()
        if self.kind == OUTCOME_ERROR:
            return {"type": "error", "message": self.message}
        return None


class RecognitionTranslationPipeline:
    """
    Run recognition on the batch bytes, then translation when the transcript
    is non-empty. Exactly one outcome is produced per batch and failures are
    never raised to the caller.

    The capability objects are synchronous SDK wrappers; each call runs in a
    worker thread and is bounded by `timeout_sec` (<= 0 disables).
    """

    def __init__(
        self,
        recognizer: Recognizer,
        translator: Optional[Translator] = None,
        *,
        recognition_language: str = "ar-SA",
        source_language: str = "ar",
        target_language: str = "en",
        timeout_sec: float = 30.0,
    ) -> None:
        self.recognizer = recognizer
        self.translator = translator
        self.recognition_language = str(recognition_language or "ar-SA")
        self.source_language = str(source_language or "ar")
        self.target_language = str(target_language or "en")
        self.timeout_sec = max(0.0, float(timeout_sec or 0.0))

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        work: Awaitable[T] = asyncio.to_thread(fn, *args)
        if self.timeout_sec > 0:
            return await asyncio.wait_for(work, timeout=self.timeout_sec)
        return await work

    async def recognize(self, audio: bytes) -> str:
        try:
            out = await self._call(self.recognizer.recognize, audio, self.recognition_language)
        except asyncio.TimeoutError as e:
            raise RecognitionError(f"recognition timed out after {self.timeout_sec:g}s") from e
        except PipelineError:
            raise
        except Exception as e:
            raise RecognitionError(str(e) or e.__class__.__name__) from e
        return str(out or "").strip()

    async def translate(self, text: str) -> str:
        if self.translator is None:
            return ""
        try:
            out = await self._call(
                self.translator.translate,
                text,
                self.source_language,
                self.target_language,
            )
        except asyncio.TimeoutError as e:
            raise TranslationError(f"translation timed out after {self.timeout_sec:g}s") from e
        except PipelineError:
            raise
        except Exception as e:
            raise TranslationError(str(e) or e.__class__.__name__) from e
        return str(out or "").strip()

    async def process(self, batch: Batch) -> PipelineOutcome:
        t0 = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - t0) * 1000)

        audio = batch.content
        if not audio:
            return PipelineOutcome(kind=OUTCOME_SKIPPED, seq=batch.seq, elapsed_ms=_elapsed())

        try:
            transcript = await self.recognize(audio)
            if not transcript:
                return PipelineOutcome(kind=OUTCOME_SILENCE, seq=batch.seq, elapsed_ms=_elapsed())
            logger.debug("batch seq=%d transcript_chars=%d", batch.seq, len(transcript))
            translation = await self.translate(transcript)
        except PipelineError as e:
            logger.warning("batch seq=%d failed stage=%s error=%s", batch.seq, e.__class__.__name__, e)
            return PipelineOutcome(
                kind=OUTCOME_ERROR,
                seq=batch.seq,
                message=f"Error processing speech: {e}",
                elapsed_ms=_elapsed(),
            )

        return PipelineOutcome(
            kind=OUTCOME_UPDATE,
            seq=batch.seq,
            update=TranscriptUpdate(transcript=transcript, translation=translation, seq=batch.seq),
            elapsed_ms=_elapsed(),
        )
