#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import re
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List

PIPELINE_TRACE_RE = re.compile(r"pipeline_trace\s+(\{.*\})\s*$")


def _parse_trace_rows(path: Path) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8", errors="replace") as f:
        for line in f:
            m = PIPELINE_TRACE_RE.search(line.strip())
            if not m:
                continue
            try:
                row = json.loads(m.group(1))
            except json.JSONDecodeError:
                continue
            if str(row.get("topic", "")) != "pipeline_trace":
                continue
            rows.append(row)
    return rows


def _group_rows(rows: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for row in rows:
        grouped[str(row.get("peer", "unknown"))].append(row)
    return grouped


def _summarize(grouped: Dict[str, List[Dict[str, Any]]]) -> str:
    lines: List[str] = [f"peers={len(grouped)}"]
    for peer, rows in sorted(grouped.items()):
        rows_sorted = sorted(rows, key=lambda r: int(r.get("trace_seq", 0) or 0))
        submitted = sum(1 for r in rows_sorted if r.get("event") == "batch_submitted")
        done = [r for r in rows_sorted if r.get("event") == "batch_done"]
        outcomes: Dict[str, int] = defaultdict(int)
        for r in done:
            outcomes[str(r.get("outcome", ""))] += 1
        latencies = [int(r.get("elapsed_ms", 0) or 0) for r in done if r.get("outcome") != "skipped"]
        avg_ms = int(sum(latencies) / len(latencies)) if latencies else 0
        lines.append(
            f"[{peer}] batches={submitted} updates={outcomes['update']} silence={outcomes['silence']} "
            f"errors={outcomes['error']} skipped={outcomes['skipped']} avg_ms={avg_ms}"
        )
        for row in rows_sorted[-5:]:
            lines.append(
                "  - "
                f"trace_seq={int(row.get('trace_seq', 0) or 0)} event={row.get('event', '')} "
                f"seq={row.get('seq', '')} outcome={row.get('outcome', '')}"
            )
    return "\n".join(lines)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Summarize pipeline_trace rows from a server log.")
    p.add_argument("--log", required=True, help="Path to server log file")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    rows = _parse_trace_rows(Path(args.log).expanduser())
    print(_summarize(_group_rows(rows)))


if __name__ == "__main__":
    main()
