import asyncio
import threading

from tarjuman.streaming.pipeline import RecognitionTranslationPipeline
from tarjuman.streaming.session import StreamSession
from tarjuman.streaming.session_state import SessionState


class _Recognizer:
    def __init__(self, texts=None, release=None):
        self.texts = list(texts or ["نص"])
        self.release = release
        self.calls = 0

    def recognize(self, audio, language_code):
        self.calls += 1
        if self.release is not None:
            self.release.wait(timeout=3.0)
        if len(self.texts) > 1:
            return self.texts.pop(0)
        return self.texts[0]


class _Translator:
    def translate(self, text, source_language=None, target_language=None):
        return f"EN({text})"


def _session(recognizer, **kwargs):
    sent = []

    async def _send(msg):
        sent.append(msg)

    pipeline = RecognitionTranslationPipeline(recognizer, _Translator())
    return StreamSession(pipeline, _send, **kwargs), sent


def _types(sent):
    return [m["type"] for m in sent]


def test_full_batch_produces_update():
    async def scenario():
        s, sent = _session(_Recognizer(["بسم الله"]))
        assert await s.start() is True
        assert s.on_fragment(b"a") is None
        batch = s.on_fragment(b"b")
        assert batch is not None and batch.seq == 1
        await s.drain(timeout=2.0)
        return s, sent

    s, sent = asyncio.run(scenario())
    assert _types(sent) == ["recording-started", "transcription-update"]
    assert sent[1]["transcript"] == "بسم الله"
    assert sent[1]["translation"] == "EN(بسم الله)"
    assert s.stats.updates_sent == 1


def test_start_while_recording_is_ignored():
    async def scenario():
        s, sent = _session(_Recognizer())
        await s.start()
        assert await s.start() is False
        return s, sent

    s, sent = asyncio.run(scenario())
    assert _types(sent) == ["recording-started"]
    assert s.state.state == SessionState.RECORDING


def test_stop_while_idle_is_ignored_and_fragments_dropped():
    async def scenario():
        rec = _Recognizer()
        s, sent = _session(rec)
        assert await s.stop() is False
        assert s.on_fragment(b"a") is None
        assert s.on_fragment(b"b") is None
        return s, sent, rec

    s, sent, rec = asyncio.run(scenario())
    assert sent == []
    assert s.stats.fragments_dropped_idle == 2
    assert rec.calls == 0


def test_stop_discards_partial_batch():
    async def scenario():
        rec = _Recognizer()
        s, sent = _session(rec)
        await s.start()
        s.on_fragment(b"only")
        await s.stop()
        await s.drain(timeout=1.0)
        return s, sent, rec

    s, sent, rec = asyncio.run(scenario())
    assert _types(sent) == ["recording-started", "recording-stopped"]
    assert s.stats.pending_discarded == 1
    assert s.state.state == SessionState.IDLE
    assert rec.calls == 0


def test_silence_emits_nothing():
    async def scenario():
        s, sent = _session(_Recognizer(["   "]))
        await s.start()
        s.on_fragment(b"a")
        s.on_fragment(b"b")
        await s.drain(timeout=2.0)
        return s, sent

    s, sent = asyncio.run(scenario())
    assert _types(sent) == ["recording-started"]
    assert s.stats.silences == 1


def test_result_after_stop_is_delivered_by_default():
    release = threading.Event()

    async def scenario():
        s, sent = _session(_Recognizer(["late"], release=release))
        await s.start()
        s.on_fragment(b"a")
        s.on_fragment(b"b")
        await asyncio.sleep(0.05)
        await s.stop()
        release.set()
        await s.drain(timeout=3.0)
        return sent

    sent = asyncio.run(scenario())
    assert _types(sent) == ["recording-started", "recording-stopped", "transcription-update"]


def test_result_after_stop_dropped_when_configured():
    release = threading.Event()

    async def scenario():
        s, sent = _session(_Recognizer(["late"], release=release), drop_results_after_stop=True)
        await s.start()
        s.on_fragment(b"a")
        s.on_fragment(b"b")
        await asyncio.sleep(0.05)
        await s.stop()
        release.set()
        await s.drain(timeout=3.0)
        return s, sent

    s, sent = asyncio.run(scenario())
    assert _types(sent) == ["recording-started", "recording-stopped"]
    assert s.stats.results_dropped_after_stop == 1


def test_close_cancels_in_flight_batches():
    release = threading.Event()

    async def scenario():
        s, sent = _session(_Recognizer(["x"], release=release))
        await s.start()
        s.on_fragment(b"a")
        s.on_fragment(b"b")
        await asyncio.sleep(0.05)
        assert s.in_flight == 1
        await s.close()
        in_flight = s.in_flight
        release.set()
        return in_flight, sent

    in_flight, sent = asyncio.run(scenario())
    assert in_flight == 0
    assert _types(sent) == ["recording-started"]


def test_trace_hook_receives_batch_events():
    rows = []

    async def scenario():
        s, _ = _session(_Recognizer(), trace=lambda event, **kw: rows.append((event, kw)))
        await s.start()
        s.on_fragment(b"a")
        s.on_fragment(b"b")
        await s.drain(timeout=2.0)

    asyncio.run(scenario())
    events = [e for e, _ in rows]
    assert events == ["recording_started", "batch_submitted", "batch_done"]
    assert rows[-1][1]["outcome"] == "update"


class _SlowFirstRecognizer:
    def __init__(self, release):
        self.release = release
        self.calls = 0
        self._lock = threading.Lock()

    def recognize(self, audio, language_code):
        with self._lock:
            self.calls += 1
            first = self.calls == 1
        if first:
            self.release.wait(timeout=3.0)
        return {b"ab": "first", b"cd": "second"}.get(bytes(audio), "?")


def test_overlapping_batches_are_sent_in_completion_order():
    release = threading.Event()

    async def scenario():
        s, sent = _session(_SlowFirstRecognizer(release))
        await s.start()
        s.on_fragment(b"a")
        s.on_fragment(b"b")
        await asyncio.sleep(0.05)
        s.on_fragment(b"c")
        s.on_fragment(b"d")
        in_flight = s.in_flight
        for _ in range(100):
            if len(sent) >= 2:
                break
            await asyncio.sleep(0.01)
        release.set()
        await s.drain(timeout=3.0)
        return s, sent, in_flight

    s, sent, in_flight = asyncio.run(scenario())
    assert in_flight == 2
    updates = [m for m in sent if m["type"] == "transcription-update"]
    assert [m["seq"] for m in updates] == [2, 1]
    assert [m["transcript"] for m in updates] == ["second", "first"]
    assert s.stats.updates_sent == 2
