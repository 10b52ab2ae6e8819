# coding=utf-8
from __future__ import annotations

import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


def _join_results(response: Any) -> str:
    lines: List[str] = []
    for result in getattr(response, "results", None) or []:
        alternatives = getattr(result, "alternatives", None) or []
        if not alternatives:
            continue
        text = str(getattr(alternatives[0], "transcript", "") or "")
        if text:
            lines.append(text)
    return "\n".join(lines)


class GoogleSpeechRecognizer:
    """
    Google Cloud Speech-to-Text client for browser MediaRecorder batches.

    Sample rate is left unset so the service reads it from the WEBM/OPUS
    header. Credentials come from GOOGLE_APPLICATION_CREDENTIALS.
    """

    def __init__(
        self,
        encoding: str = "WEBM_OPUS",
        model: str = "default",
        use_enhanced: bool = True,
        client: Optional[Any] = None,
    ) -> None:
        from google.cloud import speech

        self._speech = speech
        self.encoding = str(encoding or "WEBM_OPUS").strip().upper()
        self.model = str(model or "default")
        self.use_enhanced = bool(use_enhanced)
        try:
            self._audio_encoding = getattr(speech.RecognitionConfig.AudioEncoding, self.encoding)
        except AttributeError as e:
            raise ValueError(f"unsupported recognition encoding: {encoding}") from e
        self.client = client if client is not None else speech.SpeechClient()

    def recognize(self, audio: bytes, language_code: str) -> str:
        config = self._speech.RecognitionConfig(
            encoding=self._audio_encoding,
            language_code=str(language_code or "ar-SA"),
            model=self.model,
            use_enhanced=self.use_enhanced,
        )
        response = self.client.recognize(
            config=config,
            audio=self._speech.RecognitionAudio(content=bytes(audio)),
        )
        text = _join_results(response)
        if text:
            logger.debug("recognized language=%s chars=%d", language_code, len(text))
        return text
