"""Change notification on top of :class:`SharedStore`.

Two paths:
- Durable changes: every store write is appended to the change log; a
  :class:`Subscription` tails it and delivers :class:`ChangeEvent` objects.
  Delivery is at-least-once and ordered per writer. A subscription only sees
  writes made after it was created; newly opened views must reconcile by
  reading the store. When the coordinator compacts the log, subscribers
  re-read it from the start and get an ``on_reset`` callback to re-read
  current values for whatever fell between their last poll and the
  truncation.
- Advisory ticks: the coordinator overwrites a small tick file once per
  second while a job runs. Readers that are not polling simply miss ticks.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from pollex.event_log import read_events_from
from pollex.jobs.store import SharedStore, now_ms, read_json, write_json
from pollex.jobs.types import RecordKind, parse_draft, parse_history, parse_job


@dataclass(frozen=True)
class ChangeEvent:
    key: str
    old: Any
    new: Any

    @classmethod
    def from_log(cls, d: dict[str, Any]) -> "ChangeEvent | None":
        if d.get("type") != "change" or not isinstance(d.get("key"), str):
            return None
        return cls(key=d["key"], old=d.get("old"), new=d.get("new"))


@dataclass(frozen=True)
class TickMessage:
    job_id: str
    seconds: int


# Per-kind decoders: the dispatcher matches on the key, never on payload shape.
DECODERS: dict[str, Callable[[Any], Any]] = {
    RecordKind.JOB.value: parse_job,
    RecordKind.HISTORY.value: parse_history,
    RecordKind.DRAFT.value: parse_draft,
}


class ChangeDispatcher:
    """Route change events to handlers registered per record kind.

    Handlers receive ``(old, new)`` already decoded with the kind's schema
    (``JobRecord | None``, ``list[HistoryEntry]``, ``str``). Keys without a
    decoder are passed through raw.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[[Any, Any], None]]] = {}

    def on(self, kind: RecordKind | str, handler: Callable[[Any, Any], None]) -> None:
        key = kind.value if isinstance(kind, RecordKind) else str(kind)
        self._handlers.setdefault(key, []).append(handler)

    def dispatch(self, event: ChangeEvent) -> bool:
        handlers = self._handlers.get(event.key)
        if not handlers:
            return False
        decode = DECODERS.get(event.key, lambda v: v)
        old, new = decode(event.old), decode(event.new)
        for h in handlers:
            h(old, new)
        return True


class Subscription:
    """Incremental reader of the change log (and the tick file).

    ``poll()`` delivers whatever arrived since the previous call; ``start()``
    runs it on a daemon thread until ``close()``.
    """

    def __init__(
        self,
        bus: "ChangeBus",
        *,
        on_change: Callable[[ChangeEvent], None] | None = None,
        on_tick: Callable[[TickMessage], None] | None = None,
        on_reset: Callable[[], None] | None = None,
    ) -> None:
        self._bus = bus
        self._on_change = on_change
        self._on_tick = on_tick
        self._on_reset = on_reset
        self._generation = bus.store.change_log_generation()
        self._offset = bus.store.change_log_offset()
        self._last_tick: tuple[str, int] | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def poll(self) -> int:
        if self.closed:
            return 0
        with self._lock:
            store = self._bus.store
            generation = store.change_log_generation()
            compacted = generation != self._generation
            if compacted:
                # Everything in the new log was written after the truncation.
                self._generation = generation
                self._offset = 0
            raw, self._offset, shrunk = read_events_from(store.change_log_path, self._offset)
            delivered = 0
            for d in raw:
                event = ChangeEvent.from_log(d)
                if event is None:
                    continue
                if self._on_change is not None:
                    self._on_change(event)
                delivered += 1
            if (compacted or shrunk) and self._on_reset is not None:
                # Writes between our last read and the truncation are lost;
                # the observer re-reads current values instead.
                self._on_reset()
            self._poll_tick()
            return delivered

    def _poll_tick(self) -> None:
        if self._on_tick is None:
            return
        tick = self._bus.read_tick()
        if tick is None:
            return
        marker = (tick.job_id, tick.seconds)
        if marker == self._last_tick:
            return
        self._last_tick = marker
        self._on_tick(tick)

    def start(self, interval_s: float = 0.2) -> "Subscription":
        if self._thread is not None:
            return self

        def _loop() -> None:
            while not self._stop.wait(interval_s):
                try:
                    self.poll()
                except Exception as exc:  # noqa: BLE001
                    # A failing observer must not stop delivery to itself later.
                    print(f"[pollex][bus] subscriber error: {exc!r}")

        self._thread = threading.Thread(target=_loop, name="pollex-bus", daemon=True)
        self._thread.start()
        return self

    def close(self) -> None:
        self._stop.set()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout=2.0)
        self._thread = None

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class ChangeBus:
    def __init__(self, store: SharedStore) -> None:
        self.store = store

    @property
    def tick_path(self) -> Path:
        return self.store.root / "tick.json"

    def subscribe(
        self,
        *,
        on_change: Callable[[ChangeEvent], None] | None = None,
        on_tick: Callable[[TickMessage], None] | None = None,
        on_reset: Callable[[], None] | None = None,
    ) -> Subscription:
        return Subscription(self, on_change=on_change, on_tick=on_tick, on_reset=on_reset)

    def publish_tick(self, job_id: str, seconds: int) -> None:
        """Fire-and-forget progress tick; failures are dropped."""
        try:
            write_json(self.tick_path, {"jobId": job_id, "seconds": int(seconds), "ts": now_ms()})
        except OSError:
            pass

    def read_tick(self) -> TickMessage | None:
        p = self.tick_path
        if not p.exists():
            return None
        try:
            d = read_json(p)
        except (OSError, ValueError):
            return None
        if not isinstance(d, dict) or not d.get("jobId"):
            return None
        return TickMessage(job_id=str(d["jobId"]), seconds=int(d.get("seconds") or 0))

    def clear_tick(self) -> None:
        try:
            self.tick_path.unlink()
        except FileNotFoundError:
            pass
