from __future__ import annotations

from pollex.jobs.history import _append_history, append_history, load_history, make_entry
from pollex.jobs.store import SharedStore
from pollex.jobs.types import JobResult


def test_append_history_prepends_and_caps() -> None:
    hist = [{"id": str(i)} for i in range(3)]

    out = _append_history(hist, {"id": "new"}, max_rows=3)

    assert [r["id"] for r in out] == ["new", "0", "1"]


def test_make_entry_uses_timestamp_for_id() -> None:
    res = JobResult(polished="Fix this sentence.", model="m1", elapsed_ms=1200)

    e = make_entry("fix this sentance", res, timestamp=42)

    assert e.id == "h_42"
    assert e.input == "fix this sentance"
    assert e.output == "Fix this sentence."
    assert e.model == "m1"
    assert e.elapsed_ms == 1200


def test_append_history_keeps_newest_seven(store: SharedStore) -> None:
    res = JobResult(polished="out", model="m", elapsed_ms=1)
    for ts in range(10):
        append_history(store, make_entry(f"in {ts}", res, timestamp=ts))

    hist = load_history(store)
    assert len(hist) == 7
    assert hist[0].input == "in 9"
    assert hist[-1].input == "in 3"


def test_load_history_malformed_is_empty(store: SharedStore) -> None:
    store.set("history", {"not": "a list"})
    assert load_history(store) == []
