"""Append-only JSONL logs shared by the coordinator and its observers.

Goal
- Provide a crash-safe, concurrency-tolerant way for the coordinator to append
  events while any number of views read them.

Design
- JSONL (newline-delimited JSON), one object per line.
- Best-effort atomicity: append a single line, flush, and fsync.
- Readers are tolerant: ignore malformed / partial lines.

Used for the coordinator's operational event log and for the store's change
log, which is tailed incrementally via :func:`read_events_from`.
"""

from __future__ import annotations

import json
import os
from collections import deque
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_friendly(obj: Any) -> Any:
    """Convert common Python objects into JSON-serializable structures.

    - dataclasses -> dict
    - datetime -> ISO string
    - Path -> string
    - dict/list/tuple -> recursively converted

    Unknown objects are stringified as a last resort.
    """

    if obj is None:
        return None

    if isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            return obj.replace(tzinfo=timezone.utc).isoformat()
        return obj.astimezone(timezone.utc).isoformat()

    if isinstance(obj, Path):
        return str(obj)

    if hasattr(obj, "__dataclass_fields__"):
        try:
            return json_friendly(asdict(obj))
        except Exception:
            return str(obj)

    if isinstance(obj, dict):
        return {str(k): json_friendly(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple)):
        return [json_friendly(v) for v in obj]

    return str(obj)


def append_event(path: Path, event: dict[str, Any]) -> None:
    """Append a single event to a JSONL file.

    Best-effort crash safety:
    - write a single line
    - flush
    - fsync
    """

    if "ts_utc" not in event:
        event = dict(event)
        event["ts_utc"] = _utc_now_iso()

    path.parent.mkdir(parents=True, exist_ok=True)

    line = json.dumps(json_friendly(event), ensure_ascii=False)

    with path.open("a", encoding="utf-8", newline="\n") as f:
        f.write(line)
        f.write("\n")
        f.flush()
        try:
            os.fsync(f.fileno())
        except OSError:
            # Some environments/filesystems may not support fsync; ignore.
            pass


def _parse_line(raw: str) -> dict[str, Any] | None:
    line = raw.strip()
    if not line:
        return None
    try:
        obj = json.loads(line)
    except ValueError:
        return None
    return obj if isinstance(obj, dict) else None


def read_events(path: Path, *, max_events: int | None = None) -> list[dict[str, Any]]:
    """Read events from a JSONL file.

    Tolerant reader:
    - Skips blank lines.
    - Ignores lines that aren't valid JSON objects.
    """

    if not path.exists():
        return []

    acc: deque[dict[str, Any]]
    if max_events is None:
        acc = deque()
    else:
        acc = deque(maxlen=int(max_events))

    with path.open("r", encoding="utf-8") as f:
        for raw in f:
            obj = _parse_line(raw)
            if obj is not None:
                acc.append(obj)

    return list(acc)


def log_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0


def read_events_from(path: Path, offset: int) -> tuple[list[dict[str, Any]], int, bool]:
    """Read complete lines appended after byte ``offset``.

    Returns ``(events, new_offset, reset)``. A trailing line without its
    newline is left unread so the next call picks it up once the writer
    finishes it. If the file shrank below ``offset`` (truncated), reading
    restarts at the beginning of the new content and ``reset`` is True:
    whatever was written before the truncation and not yet read is gone.
    """
    size = log_size(path)
    reset = False
    if size < offset:
        offset = 0
        reset = True
    if size == offset:
        return [], offset, reset

    with path.open("rb") as f:
        f.seek(offset)
        chunk = f.read(size - offset)

    end = chunk.rfind(b"\n")
    if end < 0:
        return [], offset, reset

    events: list[dict[str, Any]] = []
    for raw in chunk[: end + 1].decode("utf-8", errors="replace").splitlines():
        obj = _parse_line(raw)
        if obj is not None:
            events.append(obj)
    return events, offset + end + 1, reset


def truncate_log(path: Path) -> None:
    if path.exists():
        path.write_text("", encoding="utf-8")
