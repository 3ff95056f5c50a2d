"""
Wiretap — a local record of what went over the line.

  1. WireLog: appends one JSONL entry per gateway event
  2. live_tap(): tails the JSONL and renders it for a terminal

Separate from the debug log and from the history store: it is a
structured, per-instance trace of requests in, answers out, and
rejections. Blocked payloads are written as the redaction marker.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

# ANSI colors
C_RESET = "\033[0m"
C_BOLD = "\033[1m"
C_DIM = "\033[2m"
C_INBOUND = "\033[96m"    # cyan
C_OUTBOUND = "\033[93m"   # yellow
C_INTERNAL = "\033[91m"   # red
C_MODEL = "\033[95m"      # magenta
C_BORDER = "\033[90m"     # gray

DIR_STYLE = {
    "inbound": (C_INBOUND, "──▶"),
    "outbound": (C_OUTBOUND, "◀──"),
    "internal": (C_INTERNAL, "─●─"),
}

MAX_CONTENT = 2000


class WireLog:
    """
    Structured JSONL logger for gateway traffic.

    Format:
        {"ts": "...", "dir": "inbound|outbound|internal", "event": "...",
         "caller": "...", "mode": "...", "model": "...", "len": 123, "content": "..."}
    """

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = None

    def _ensure_open(self):
        if self._file is None:
            self._file = open(self.log_path, "a", buffering=1)  # line-buffered

    def log(
        self,
        direction: str,
        event: str,
        content: str = "",
        caller_id: str = "",
        mode: str = "",
        model: str = "",
        **fields,
    ):
        """Write a wire log entry."""
        self._ensure_open()
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "dir": direction,
            "event": event,
            "caller": caller_id,
            "mode": mode,
            "model": model,
            "len": len(content),
        }
        entry.update(fields)

        if len(content) <= MAX_CONTENT:
            entry["content"] = content
        else:
            half = MAX_CONTENT // 2
            entry["content"] = (
                content[:half]
                + f"\n\n[... {len(content) - MAX_CONTENT} chars truncated ...]\n\n"
                + content[-half:]
            )

        self._file.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def close(self):
        if self._file:
            self._file.close()
            self._file = None


def format_entry(entry: dict, raw: bool = False) -> str:
    """Format a single wire log entry for display."""
    if raw:
        return json.dumps(entry, ensure_ascii=False)

    ts = entry.get("ts", "")
    try:
        time_str = datetime.fromisoformat(ts).strftime("%H:%M:%S")
    except (ValueError, TypeError):
        time_str = ts[:8] if ts else "??:??:??"

    color, arrow = DIR_STYLE.get(entry.get("dir", ""), (C_RESET, "───"))
    header = (
        f"  {C_DIM}{time_str}{C_RESET} {color}{arrow} {C_BOLD}"
        f"{entry.get('event', '?').upper()}{C_RESET}"
    )
    if entry.get("mode"):
        header += f"  {entry['mode']}"
    if entry.get("model"):
        header += f"  {C_MODEL}[{entry['model']}]{C_RESET}"
    header += f"  {C_DIM}({entry.get('len', 0)} chars){C_RESET}"
    if entry.get("caller"):
        header += f"  {C_DIM}caller:{entry['caller'][:8]}{C_RESET}"

    lines = [header]
    content = entry.get("content", "")
    if content:
        shown = content.split("\n")
        for cline in shown[:10]:
            lines.append(f"      {cline[:200]}")
        if len(shown) > 10:
            lines.append(f"      {C_DIM}[... {len(shown) - 10} more lines]{C_RESET}")
    lines.append(f"  {C_BORDER}{'─' * 60}{C_RESET}")
    return "\n".join(lines)


def live_tap(
    log_path: str,
    follow: bool = True,
    last_n: int = 20,
    direction: str | None = None,
    raw: bool = False,
):
    """Tail the wire log, optionally following new entries (tail -f)."""
    wire_path = Path(log_path)
    if not wire_path.exists():
        print(f"  ✗  No wire log found at {wire_path}")
        return

    def _show(line: str):
        line = line.strip()
        if not line:
            return
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            return
        if direction and entry.get("dir") != direction:
            return
        print(format_entry(entry, raw=raw))

    with open(wire_path) as f:
        all_lines = f.readlines()
    for line in all_lines[max(0, len(all_lines) - last_n):]:
        _show(line)

    if not follow:
        return

    try:
        with open(wire_path) as f:
            f.seek(0, 2)
            while True:
                line = f.readline()
                if not line:
                    time.sleep(0.1)
                    continue
                _show(line)
    except KeyboardInterrupt:
        if not raw:
            print(f"\n  {C_DIM}[tap closed]{C_RESET}")
