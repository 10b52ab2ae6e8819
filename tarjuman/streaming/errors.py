# coding=utf-8
"""
Error taxonomy for capture, transport and the recognize->translate pipeline.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class TarjumanError(Exception):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
            "details": self.details,
        }


class CaptureError(TarjumanError):
    """Audio source unavailable or denied; the session never starts."""


class TransportError(TarjumanError):
    """Message channel failed; forces the session to stop."""


class PipelineError(TarjumanError):
    pass


class RecognitionError(PipelineError):
    pass


class TranslationError(PipelineError):
    pass


class InvalidSessionTransition(TarjumanError, ValueError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"invalid session transition {current} -> {target}",
            details={"current": current, "target": target},
        )
        self.current = current
        self.target = target
