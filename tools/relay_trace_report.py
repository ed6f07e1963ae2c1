#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import re
from collections import Counter, defaultdict
from pathlib import Path
from typing import Any, Dict, List


RELAY_TRACE_RE = re.compile(r"relay_trace\s+(\{.*\})\s*$")


def _parse_relay_rows(path: Path) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8", errors="replace") as f:
        for line in f:
            m = RELAY_TRACE_RE.search(line.strip())
            if not m:
                continue
            try:
                row = json.loads(m.group(1))
            except json.JSONDecodeError:
                continue
            if str(row.get("topic", "")) != "relay":
                continue
            rows.append(row)
    return rows


def _group_rows(rows: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for row in rows:
        grouped[str(row.get("session", "unknown"))].append(row)
    return grouped


def _summarize(grouped: Dict[str, List[Dict[str, Any]]]) -> str:
    lines: List[str] = [f"sessions={len(grouped)}"]
    for session, rows in sorted(grouped.items()):
        rows_sorted = sorted(rows, key=lambda r: int(r.get("trace_seq", 0) or 0))
        events = Counter(str(r.get("event", "")) for r in rows_sorted)
        changes = sum(1 for r in rows_sorted if r.get("event") == "segment" and r.get("speaker_change"))
        last_event = str(rows_sorted[-1].get("event", "")) if rows_sorted else ""
        lines.append(
            f"[{session}] rows={len(rows_sorted)} segments={events.get('segment', 0)} "
            f"speaker_changes={changes} commits={events.get('commit', 0)} "
            f"translation_failed={events.get('translation_failed', 0)} gloss_failed={events.get('gloss_failed', 0)} "
            f"last_event={last_event}"
        )
        for row in rows_sorted[-5:]:
            lines.append(
                "  - "
                f"seq={int(row.get('trace_seq', 0) or 0)} event={row.get('event', '')} "
                f"generation={int(row.get('generation', 0) or 0)} linked={bool(row.get('linked', False))}"
            )
    return "\n".join(lines)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Summarize relay_trace events from a server log.")
    p.add_argument("--log", required=True, help="Path to server log file")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    rows = _parse_relay_rows(Path(args.log).expanduser())
    print(_summarize(_group_rows(rows)))


if __name__ == "__main__":
    main()
