# coding=utf-8
"""
WebSocket server relaying browser microphone batches to speech recognition
and translation, and streaming transcript/translation pairs back.
"""
import argparse
import asyncio
import json
import logging
import os
import time
from contextlib import suppress
from types import SimpleNamespace
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from tarjuman.streaming.pipeline import RecognitionTranslationPipeline
from tarjuman.streaming.session import StreamSession

logger = logging.getLogger(__name__)
DEFAULT_PORT = 8024


def _parse_json_message(text: str) -> Dict[str, Any]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid json: {e}") from e
    if not isinstance(payload, dict):
        raise ValueError("json message must be an object")
    return payload


def _default_port() -> int:
    raw = str(os.environ.get("PORT", "") or "").strip()
    if raw.isdigit():
        return int(raw)
    return DEFAULT_PORT


def _build_pipeline(args: argparse.Namespace, recognizer: Any, translator: Optional[Any]) -> RecognitionTranslationPipeline:
    return RecognitionTranslationPipeline(
        recognizer,
        translator,
        recognition_language=str(getattr(args, "recognition_language", "ar-SA") or "ar-SA"),
        source_language=str(getattr(args, "translation_source_language", "ar") or "ar"),
        target_language=str(getattr(args, "translation_target_language", "en") or "en"),
        timeout_sec=float(getattr(args, "pipeline_timeout_sec", 30.0) or 0.0),
    )


def _create_app(args: argparse.Namespace, recognizer: Any, translator: Optional[Any] = None) -> FastAPI:
    app = FastAPI(title="Tarjuman Live Transcription")
    pipeline = _build_pipeline(args, recognizer, translator)
    runtime = SimpleNamespace(active_connections=0)
    max_connections = max(1, int(getattr(args, "max_connections", 16)))
    idle_timeout_sec = max(1.0, float(getattr(args, "idle_timeout_sec", 120.0)))
    max_fragment_bytes = max(1, int(getattr(args, "max_fragment_bytes", 1024 * 1024)))
    batch_threshold = max(1, int(getattr(args, "batch_threshold", 2)))
    drop_results_after_stop = bool(getattr(args, "drop_results_after_stop", False))
    pipeline_trace_log = bool(getattr(args, "pipeline_trace_log", False))

    @app.get("/healthz")
    async def healthz() -> Dict[str, Any]:
        return {"status": "ok", "active_connections": runtime.active_connections}

    @app.websocket("/ws")
    async def ws_stream(websocket: WebSocket) -> None:
        if runtime.active_connections >= max_connections:
            await websocket.accept()
            await websocket.send_json({"type": "error", "message": "too many active connections"})
            await websocket.close(code=1013)
            return

        # Reserve the slot before the first await so concurrent accepts see it.
        runtime.active_connections += 1
        try:
            await websocket.accept()
        except Exception:
            runtime.active_connections = max(0, runtime.active_connections - 1)
            raise
        peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
        send_lock = asyncio.Lock()
        trace_seq = 0
        trace_t0 = time.monotonic()

        def _trace_event(event: str, **payload: Any) -> None:
            nonlocal trace_seq
            if not pipeline_trace_log:
                return
            trace_seq += 1
            row: Dict[str, Any] = {
                "topic": "pipeline_trace",
                "trace_seq": int(trace_seq),
                "ts_ms": int(time.time() * 1000),
                "elapsed_ms": int((time.monotonic() - trace_t0) * 1000),
                "peer": peer,
                "event": str(event or ""),
            }
            row.update(payload)
            logger.info("pipeline_trace %s", json.dumps(row, ensure_ascii=False, separators=(",", ":")))

        async def _send_json(payload: Dict[str, Any]) -> None:
            async with send_lock:
                await websocket.send_json(payload)

        session = StreamSession(
            pipeline,
            _send_json,
            batch_threshold=batch_threshold,
            drop_results_after_stop=drop_results_after_stop,
            peer=peer,
            trace=_trace_event,
        )
        logger.info(
            "ws open peer=%s active=%d batch_threshold=%d",
            peer,
            runtime.active_connections,
            batch_threshold,
        )

        try:
            await _send_json(
                {
                    "type": "ready",
                    "batch_threshold": batch_threshold,
                    "source_language": pipeline.recognition_language,
                    "target_language": pipeline.target_language,
                }
            )

            while True:
                try:
                    msg = await asyncio.wait_for(websocket.receive(), timeout=idle_timeout_sec)
                except asyncio.TimeoutError:
                    await _send_json({"type": "error", "message": "idle timeout"})
                    break

                if msg.get("type") == "websocket.disconnect":
                    break

                raw = msg.get("bytes")
                text = msg.get("text")

                if raw is not None:
                    if len(raw) > max_fragment_bytes:
                        session.stats.last_error = "audio fragment too large"
                        await _send_json({"type": "error", "message": "audio fragment too large"})
                        continue
                    session.on_fragment(raw)
                    if session.stats.fragments == 1 or session.stats.fragments % 40 == 0:
                        logger.info(
                            "ws recv peer=%s fragments=%d bytes=%d batches=%d in_flight=%d",
                            peer,
                            session.stats.fragments,
                            session.stats.fragment_bytes,
                            session.stats.batches_submitted,
                            session.in_flight,
                        )
                    continue

                if text is not None:
                    try:
                        payload = _parse_json_message(text)
                    except ValueError as e:
                        session.stats.last_error = str(e)
                        await _send_json({"type": "error", "message": str(e)})
                        continue

                    msg_type = str(payload.get("type", "")).lower()
                    if msg_type == "start-recording":
                        await session.start()
                        continue
                    if msg_type == "stop-recording":
                        await session.stop()
                        continue
                    if msg_type == "ping":
                        await _send_json({"type": "pong"})
                        continue

                    session.stats.last_error = "unknown message type"
                    await _send_json({"type": "error", "message": "unknown message type"})
                    continue

        except WebSocketDisconnect:
            pass
        except Exception as e:
            session.stats.last_error = str(e)
            logger.exception("ws handler failed peer=%s", peer)
            with suppress(Exception):
                await _send_json({"type": "error", "message": str(e)})
        finally:
            await session.close()
            runtime.active_connections = max(0, runtime.active_connections - 1)
            with suppress(Exception):
                await websocket.close(code=1000)
            stats = session.stats
            _trace_event("ws_close", batches=stats.batches_submitted, errors=stats.errors_sent)
            logger.info(
                "ws close peer=%s active=%d fragments=%d bytes=%d dropped_idle=%d batches=%d discarded=%d updates=%d silences=%d errors=%d late_dropped=%d last_error=%s",
                peer,
                runtime.active_connections,
                stats.fragments,
                stats.fragment_bytes,
                stats.fragments_dropped_idle,
                stats.batches_submitted,
                stats.pending_discarded,
                stats.updates_sent,
                stats.silences,
                stats.errors_sent,
                stats.results_dropped_after_stop,
                stats.last_error,
            )

    return app


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Tarjuman live transcription/translation server (WebSocket)")
    p.add_argument("--host", default="0.0.0.0", help="Bind host")
    p.add_argument("--port", type=int, default=_default_port(), help="Bind port (defaults to $PORT when set)")
    p.add_argument("--batch-threshold", type=int, default=2, help="Fragments per recognition request")
    p.add_argument("--recognition-language", default="ar-SA", help="Speech recognition language code")
    p.add_argument("--recognition-encoding", default="WEBM_OPUS", help="Encoding of client fragments")
    p.add_argument("--recognition-model", default="default", help="Speech recognition model")
    p.add_argument(
        "--use-enhanced",
        default=True,
        action=argparse.BooleanOptionalAction,
        help="Request the enhanced recognition model",
    )
    p.add_argument(
        "--enable-translation",
        default=True,
        action=argparse.BooleanOptionalAction,
        help="Translate each non-empty transcript",
    )
    p.add_argument(
        "--translation-backend",
        default="google",
        choices=["google", "openai_api"],
    )
    p.add_argument("--translation-source-language", default="ar")
    p.add_argument("--translation-target-language", default="en")
    p.add_argument("--translation-api-base-url", default="http://127.0.0.1:8001")
    p.add_argument("--translation-api-model", default="")
    p.add_argument("--translation-api-key", default=os.environ.get("TRANSLATION_API_KEY", ""))
    p.add_argument("--translation-max-new-tokens", type=int, default=256)
    p.add_argument(
        "--pipeline-timeout-sec",
        type=float,
        default=30.0,
        help="Per-call timeout for recognition and translation (0 disables)",
    )
    p.add_argument(
        "--drop-results-after-stop",
        default=False,
        action=argparse.BooleanOptionalAction,
        help="Discard results of batches that complete after stop-recording",
    )
    p.add_argument("--max-connections", type=int, default=16)
    p.add_argument("--idle-timeout-sec", type=float, default=120.0)
    p.add_argument("--max-fragment-bytes", type=int, default=1024 * 1024)
    p.add_argument(
        "--pipeline-trace-log",
        default=False,
        action=argparse.BooleanOptionalAction,
        help="Log one JSON pipeline_trace row per session event",
    )
    p.add_argument("--ssl-certfile", default=None, help="Path to TLS certificate file (enables HTTPS/WSS)")
    p.add_argument("--ssl-keyfile", default=None, help="Path to TLS private key file")
    p.add_argument("--log-level", default="info", choices=["critical", "error", "warning", "info", "debug"])
    return p.parse_args()


def _build_translator(args: argparse.Namespace) -> Optional[Any]:
    from tarjuman.services.translation import GoogleTranslator, OpenAIAPITranslator

    if not bool(getattr(args, "enable_translation", True)):
        return None
    backend = str(getattr(args, "translation_backend", "google") or "google").strip().lower()
    if backend == "openai_api":
        logger.info(
            "loading openai-compatible translator base_url=%s model=%s",
            args.translation_api_base_url,
            args.translation_api_model,
        )
        return OpenAIAPITranslator(
            base_url=args.translation_api_base_url,
            model=args.translation_api_model,
            source_language=args.translation_source_language,
            target_language=args.translation_target_language,
            max_new_tokens=args.translation_max_new_tokens,
            timeout_sec=max(1.0, float(args.pipeline_timeout_sec or 30.0)),
            api_key=args.translation_api_key,
        )
    return GoogleTranslator(
        source_language=args.translation_source_language,
        target_language=args.translation_target_language,
    )


def main() -> None:
    from tarjuman.services.recognition import GoogleSpeechRecognizer

    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        recognizer = GoogleSpeechRecognizer(
            encoding=args.recognition_encoding,
            model=args.recognition_model,
            use_enhanced=args.use_enhanced,
        )
        translator = _build_translator(args)
    except Exception as exc:
        logger.error("failed to initialize cloud clients: %s", exc)
        raise SystemExit(2) from exc
    logger.info(
        "cloud clients ready recognition_language=%s translation=%s",
        args.recognition_language,
        "off" if translator is None else args.translation_backend,
    )

    app = _create_app(args, recognizer, translator=translator)
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        ssl_certfile=args.ssl_certfile,
        ssl_keyfile=args.ssl_keyfile,
    )


if __name__ == "__main__":
    main()
