from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable

from pollex.config import PATHS
from pollex.event_log import append_event, log_size, truncate_log

_MISSING = object()


def now_ms() -> int:
    return int(time.time() * 1000)


def default_state_dir() -> Path:
    return Path(PATHS.state_dir)


def write_json(path: Path, obj: Any) -> None:
    """Write JSON atomically (temp file + rename) so readers never see half a file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(obj, indent=2, ensure_ascii=False))
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8") or "null")


def _safe_key(key: str) -> str:
    key = str(key)
    if not key or not all(ch.isalnum() or ch in {"-", "_"} for ch in key):
        raise ValueError(f"Invalid store key: {key!r}")
    return key


class SharedStore:
    """Persistent key/value store shared by the coordinator and the views.

    Layout under ``root``:
    - data/<key>.json   current value of each key
    - changes.jsonl     one ``{"type": "change", "key", "old", "new"}`` line per write

    Every ``set``/``remove`` appends to the change log; observers tail it
    (see :mod:`pollex.jobs.bus`) to learn about writes made by any process.
    Each key has a single writer by convention; the lock below only serializes
    writers inside one process.
    """

    UNCHANGED = _MISSING

    def __init__(self, root: Path | str | None = None) -> None:
        self.root = Path(root) if root is not None else default_state_dir()
        self._lock = threading.RLock()

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def change_log_path(self) -> Path:
        return self.root / "changes.jsonl"

    def key_path(self, key: str) -> Path:
        return self.data_dir / f"{_safe_key(key)}.json"

    # -- reads -----------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        p = self.key_path(key)
        if not p.exists():
            return default
        try:
            return read_json(p)
        except (OSError, ValueError):
            # Unreadable or half-migrated value: treat as absent.
            return default

    def keys(self) -> list[str]:
        if not self.data_dir.exists():
            return []
        return sorted(p.stem for p in self.data_dir.glob("*.json"))

    # -- writes ----------------------------------------------------------

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            old = self.get(key)
            write_json(self.key_path(key), value)
            self._record_change(key, old, value)

    def remove(self, key: str) -> None:
        with self._lock:
            p = self.key_path(key)
            if not p.exists():
                return
            old = self.get(key)
            try:
                p.unlink()
            except FileNotFoundError:
                return
            self._record_change(key, old, None)

    def update(self, key: str, fn: Callable[[Any], Any]) -> Any:
        """Read-modify-write ``key``.

        ``fn`` receives the current value (or None) and returns the new value.
        Returning the ``SharedStore.UNCHANGED`` sentinel skips the write.
        Returns the value stored afterwards.
        """
        with self._lock:
            old = self.get(key)
            new = fn(old)
            if new is self.UNCHANGED:
                return old
            if new is None:
                self.remove(key)
            else:
                self.set(key, new)
            return new

    def _record_change(self, key: str, old: Any, new: Any) -> None:
        append_event(
            self.change_log_path,
            {"type": "change", "key": key, "old": old, "new": new},
        )

    # -- maintenance -----------------------------------------------------

    @property
    def generation_path(self) -> Path:
        return self.root / "changes.gen"

    def change_log_offset(self) -> int:
        return log_size(self.change_log_path)

    def change_log_generation(self) -> int:
        """Number of compactions so far; bumped after every truncation."""
        try:
            return int(read_json(self.generation_path) or 0)
        except (OSError, TypeError, ValueError):
            return 0

    def compact_change_log(self, max_bytes: int) -> bool:
        """Truncate the change log once it exceeds ``max_bytes``.

        Subscribers see the generation change (or the shrink), re-read the
        new log from the start and re-read current values for anything they
        missed before the truncation.
        """
        with self._lock:
            if log_size(self.change_log_path) <= max_bytes:
                return False
            generation = self.change_log_generation() + 1
            truncate_log(self.change_log_path)
            write_json(self.generation_path, generation)
            return True
