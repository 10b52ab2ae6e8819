from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List


@dataclass
class TranscriptSelfcheckResult:
    update_count: int
    error_count: int
    untranslated_updates: int
    out_of_order: int
    max_transcript_chars: int
    examples: List[Dict[str, Any]]


def analyze_transcript_events(events: Iterable[Dict[str, Any]]) -> TranscriptSelfcheckResult:
    updates = 0
    errors = 0
    untranslated = 0
    out_of_order = 0
    max_chars = 0
    highest_seq = 0
    examples: List[Dict[str, Any]] = []

    for idx, msg in enumerate(events):
        msg_type = str(msg.get("type", "")).lower()
        if msg_type == "error":
            errors += 1
            if len(examples) < 8:
                examples.append({"kind": "error", "index": idx, "message": str(msg.get("message", ""))[:160]})
            continue
        if msg_type != "transcription-update":
            continue

        updates += 1
        transcript = str(msg.get("transcript", "") or "").strip()
        translation = str(msg.get("translation", "") or "").strip()
        max_chars = max(max_chars, len(transcript))
        if transcript and not translation:
            untranslated += 1

        seq = int(msg.get("seq", 0) or 0)
        if seq <= 0:
            continue
        if seq < highest_seq:
            out_of_order += 1
            if len(examples) < 8:
                examples.append(
                    {
                        "kind": "out_of_order",
                        "index": idx,
                        "seq": seq,
                        "after_seq": highest_seq,
                        "text": transcript[:160],
                    }
                )
        highest_seq = max(highest_seq, seq)

    return TranscriptSelfcheckResult(
        update_count=updates,
        error_count=errors,
        untranslated_updates=untranslated,
        out_of_order=out_of_order,
        max_transcript_chars=max_chars,
        examples=examples,
    )


def summarize_result(result: TranscriptSelfcheckResult) -> str:
    lines = [
        f"updates={result.update_count}",
        f"errors={result.error_count}",
        f"untranslated_updates={result.untranslated_updates}",
        f"out_of_order={result.out_of_order}",
        f"max_transcript_chars={result.max_transcript_chars}",
    ]
    if result.examples:
        lines.append("examples:")
        for ex in result.examples:
            lines.append(f"  - {ex.get('kind', 'event')}: {ex}")
    return "\n".join(lines)
