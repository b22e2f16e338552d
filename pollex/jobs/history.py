from __future__ import annotations

from pollex.config import MAX_HISTORY
from pollex.jobs.store import SharedStore, now_ms
from pollex.jobs.types import HistoryEntry, JobResult, RecordKind, parse_history


def load_history(store: SharedStore) -> list[HistoryEntry]:
    """Return history newest-first ([] when missing or malformed)."""
    return parse_history(store.get(RecordKind.HISTORY.value))


def make_entry(input_text: str, result: JobResult, *, timestamp: int | None = None) -> HistoryEntry:
    ts = now_ms() if timestamp is None else int(timestamp)
    return HistoryEntry(
        id=f"h_{ts}",
        input=input_text,
        output=result.polished,
        model=result.model,
        elapsed_ms=int(result.elapsed_ms),
        timestamp=ts,
    )


def _append_history(history: list[dict], row: dict, *, max_rows: int) -> list[dict]:
    """Prepend ``row`` and keep at most ``max_rows`` (newest first)."""
    out = [row, *history]
    return out[:max_rows]


def append_history(
    store: SharedStore,
    entry: HistoryEntry,
    *,
    max_rows: int = MAX_HISTORY,
) -> list[HistoryEntry]:
    rows = [e.to_dict() for e in load_history(store)]
    rows = _append_history(rows, entry.to_dict(), max_rows=max_rows)
    store.set(RecordKind.HISTORY.value, rows)
    return parse_history(rows)
