#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
from contextlib import suppress
from pathlib import Path
from typing import Any, Dict, List

from tarjuman.client.capture import FileCaptureSource
from tarjuman.client.controller import SessionController, WebSocketTransport
from tarjuman.debug.transcript_selfcheck import analyze_transcript_events, summarize_result
from tarjuman.streaming.transcript_buffer import BufferConfig, BufferPolicy, TranscriptBuffer, TranscriptSnapshot


def _print_snapshot(snap: TranscriptSnapshot) -> None:
    if not (snap.source_text or snap.target_text):
        return
    print("----")
    print(snap.source_text)
    print(snap.target_text)


def _print_status(level: str, message: str) -> None:
    print(f"[{level}] {message}")


async def _replay_file(
    ws_url: str,
    audio_path: Path,
    fragment_bytes: int,
    timeslice_sec: float,
    realtime_factor: float,
    policy: BufferPolicy,
    settle_sec: float,
    verbose: bool,
) -> Dict[str, Any]:
    buffer = TranscriptBuffer(BufferConfig(policy=policy))
    if verbose:
        buffer.add_sink(_print_snapshot)

    transport = WebSocketTransport(ws_url)
    ready = await transport.connect()
    controller = SessionController(
        transport,
        lambda: FileCaptureSource(
            str(audio_path),
            fragment_bytes=fragment_bytes,
            timeslice_sec=timeslice_sec / max(0.01, float(realtime_factor)),
        ),
        buffer=buffer,
    )
    controller.add_status_sink(_print_status)
    controller.events.append(ready)
    receiver = asyncio.create_task(controller.run_receiver())
    try:
        if await controller.start():
            await controller.wait_capture_done()
            await controller.stop()
            await controller.settle(quiet_sec=settle_sec, timeout_sec=max(30.0, settle_sec * 4))
    finally:
        receiver.cancel()
        with suppress(asyncio.CancelledError):
            await receiver
        await transport.close()

    snap = buffer.snapshot()
    return {"events": controller.events, "source_text": snap.source_text, "target_text": snap.target_text}


def _load_events_jsonl(path: Path) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            text = line.strip()
            if text:
                events.append(json.loads(text))
    return events


def _save_events_jsonl(path: Path, events: List[Dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for event in events:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Replay an encoded audio file through the transcription server.")
    p.add_argument("--ws-url", default="ws://127.0.0.1:8024/ws")
    p.add_argument("--audio", default="", help="encoded audio file (e.g. webm/opus) to stream")
    p.add_argument("--fragment-bytes", type=int, default=8000, help="bytes per captured fragment")
    p.add_argument("--timeslice-sec", type=float, default=0.5, help="capture timeslice per fragment")
    p.add_argument("--realtime-factor", type=float, default=1.0, help="1.0=realtime, 2.0=2x faster")
    p.add_argument("--policy", default="compact", choices=[x.value for x in BufferPolicy])
    p.add_argument("--settle-sec", type=float, default=3.0, help="wait this long without messages after stop")
    p.add_argument("--verbose", action="store_true", help="print the display after every update")
    p.add_argument("--events-jsonl", default="", help="save replayed events to jsonl; or load existing when --audio omitted")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    events_path = Path(args.events_jsonl).expanduser() if args.events_jsonl else None

    if args.audio:
        out = asyncio.run(
            _replay_file(
                ws_url=str(args.ws_url),
                audio_path=Path(args.audio).expanduser(),
                fragment_bytes=int(args.fragment_bytes),
                timeslice_sec=float(args.timeslice_sec),
                realtime_factor=float(args.realtime_factor),
                policy=BufferPolicy.parse(args.policy),
                settle_sec=float(args.settle_sec),
                verbose=bool(args.verbose),
            )
        )
        events = out["events"]
        if events_path is not None:
            _save_events_jsonl(events_path, events)
        print("== transcript")
        print(out["source_text"])
        print("== translation")
        print(out["target_text"])
    else:
        if events_path is None:
            raise SystemExit("provide --audio for replay, or --events-jsonl to load existing events")
        events = _load_events_jsonl(events_path)

    print(summarize_result(analyze_transcript_events(events)))


if __name__ == "__main__":
    main()
