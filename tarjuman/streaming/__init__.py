# coding=utf-8

from .chunk_batcher import Batch, ChunkBatcher
from .errors import (
    CaptureError,
    InvalidSessionTransition,
    PipelineError,
    RecognitionError,
    TarjumanError,
    TranslationError,
    TransportError,
)
from .pipeline import PipelineOutcome, RecognitionTranslationPipeline, TranscriptUpdate
from .session import StreamSession
from .session_state import SessionState, SessionStateMachine
from .transcript_buffer import BufferConfig, BufferPolicy, TranscriptBuffer, TranscriptSnapshot

__all__ = [
    "Batch",
    "BufferConfig",
    "BufferPolicy",
    "CaptureError",
    "ChunkBatcher",
    "InvalidSessionTransition",
    "PipelineError",
    "PipelineOutcome",
    "RecognitionError",
    "RecognitionTranslationPipeline",
    "SessionState",
    "SessionStateMachine",
    "StreamSession",
    "TarjumanError",
    "TranscriptBuffer",
    "TranscriptSnapshot",
    "TranscriptUpdate",
    "TranslationError",
    "TransportError",
]
