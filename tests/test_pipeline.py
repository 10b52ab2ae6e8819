import asyncio
import time

from tarjuman.streaming.chunk_batcher import Batch
from tarjuman.streaming.pipeline import (
    OUTCOME_ERROR,
    OUTCOME_SILENCE,
    OUTCOME_SKIPPED,
    OUTCOME_UPDATE,
    RecognitionTranslationPipeline,
    TranscriptUpdate,
)


class _FakeRecognizer:
    def __init__(self, text="بسم الله", error=None, delay=0.0):
        self.text = text
        self.error = error
        self.delay = delay
        self.calls = []

    def recognize(self, audio, language_code):
        self.calls.append((bytes(audio), language_code))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.text


class _FakeTranslator:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def translate(self, text, source_language=None, target_language=None):
        self.calls.append((text, source_language, target_language))
        if self.error is not None:
            raise self.error
        return f"[{source_language}->{target_language}] {text}"


def _batch(seq=1, *fragments):
    return Batch(seq=seq, fragments=tuple(fragments or (b"ab", b"cd")))


def test_recognize_then_translate_emits_update():
    rec = _FakeRecognizer(text="  بسم الله \n")
    tr = _FakeTranslator()
    p = RecognitionTranslationPipeline(rec, tr)
    out = asyncio.run(p.process(_batch(7)))

    assert out.kind == OUTCOME_UPDATE
    assert out.update == TranscriptUpdate(transcript="بسم الله", translation="[ar->en] بسم الله", seq=7)
    assert rec.calls == [(b"abcd", "ar-SA")]
    assert tr.calls == [("بسم الله", "ar", "en")]
    msg = out.to_message()
    assert msg["type"] == "transcription-update"
    assert msg["seq"] == 7


def test_whitespace_transcript_skips_translation_and_emits_nothing():
    rec = _FakeRecognizer(text=" \n ")
    tr = _FakeTranslator()
    out = asyncio.run(RecognitionTranslationPipeline(rec, tr).process(_batch()))
    assert out.kind == OUTCOME_SILENCE
    assert out.should_emit is False
    assert out.to_message() is None
    assert tr.calls == []


def test_empty_batch_skips_recognition():
    rec = _FakeRecognizer()
    out = asyncio.run(RecognitionTranslationPipeline(rec, _FakeTranslator()).process(_batch(1, b"", b"")))
    assert out.kind == OUTCOME_SKIPPED
    assert rec.calls == []


def test_recognition_failure_becomes_single_error():
    rec = _FakeRecognizer(error=RuntimeError("quota exceeded"))
    tr = _FakeTranslator()
    out = asyncio.run(RecognitionTranslationPipeline(rec, tr).process(_batch()))
    assert out.kind == OUTCOME_ERROR
    assert out.to_message() == {"type": "error", "message": "Error processing speech: quota exceeded"}
    assert tr.calls == []


def test_translation_failure_becomes_single_error():
    rec = _FakeRecognizer()
    tr = _FakeTranslator(error=ConnectionError("network down"))
    out = asyncio.run(RecognitionTranslationPipeline(rec, tr).process(_batch()))
    assert out.kind == OUTCOME_ERROR
    assert "network down" in out.message


def test_recognition_timeout_is_reported():
    rec = _FakeRecognizer(delay=0.3)
    p = RecognitionTranslationPipeline(rec, _FakeTranslator(), timeout_sec=0.05)
    out = asyncio.run(p.process(_batch()))
    assert out.kind == OUTCOME_ERROR
    assert "timed out" in out.message


def test_without_translator_emits_transcript_only():
    out = asyncio.run(RecognitionTranslationPipeline(_FakeRecognizer(), None).process(_batch()))
    assert out.kind == OUTCOME_UPDATE
    assert out.update.translation == ""


def test_update_from_message_tolerates_missing_fields():
    upd = TranscriptUpdate.from_message({"type": "transcription-update", "transcript": "x"})
    assert upd == TranscriptUpdate(transcript="x", translation="", seq=0)


def test_update_from_message_defaults_bad_seq_to_zero():
    upd = TranscriptUpdate.from_message({"transcript": "x", "translation": "y", "seq": "abc"})
    assert upd == TranscriptUpdate(transcript="x", translation="y", seq=0)
    assert TranscriptUpdate.from_message({"transcript": "x", "seq": [1]}).seq == 0
    assert TranscriptUpdate.from_message({"transcript": "x", "seq": "7"}).seq == 7
