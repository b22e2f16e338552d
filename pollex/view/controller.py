"""View-side reconciliation with the coordinator's job record.

A view may be opened and closed at any point of a job's life. On ``open()``
it reads the record and decides what to show:
- no record: idle
- running and younger than the staleness threshold: resume the progress
  display seeded from ``startedAt``
- running and older: the coordinator is presumed gone; the record is
  rewritten to ``failed`` ("Request timed out.") without calling the service
- terminal: shown as-is. The record is left in place, so reopening shows the
  same outcome again without repeating any side effect.

After that, change events keep the view current. Events that belong to an
older job than the one on screen are ignored.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Literal

from pollex.config import JOBS, PROGRESS, DRAFT_DEBOUNCE_MS, JobConfig, ProgressConfig
from pollex.jobs.bus import ChangeBus, ChangeDispatcher, ChangeEvent, Subscription, TickMessage
from pollex.jobs.history import load_history
from pollex.jobs.store import SharedStore, now_ms
from pollex.jobs.types import HistoryEntry, JobRecord, JobResult, RecordKind, parse_job
from pollex.view.draft import DraftManager
from pollex.view.link import CoordinatorLink
from pollex.view.progress import Ticker, estimate_seconds, format_polishing, progress_percent

Phase = Literal["idle", "running", "completed", "failed", "cancelled"]

STALE_ERROR = "Request timed out."


@dataclass
class ViewState:
    phase: Phase = "idle"
    job_id: str | None = None
    started_at: int | None = None
    input_text: str = ""
    model_id: str = ""
    seconds: int = 0
    estimated_seconds: int = 1
    percent: int = 0
    result: JobResult | None = None
    error: str | None = None
    history: list[HistoryEntry] = field(default_factory=list)
    draft: str = ""

    @property
    def busy(self) -> bool:
        return self.phase == "running"

    @property
    def status_message(self) -> str:
        if self.phase == "running":
            return format_polishing(self.seconds)
        if self.phase == "cancelled":
            return "Cancelled."
        if self.phase == "failed":
            return self.error or "Request failed"
        return ""


class ViewController:
    def __init__(
        self,
        store: SharedStore,
        link: CoordinatorLink,
        *,
        bus: ChangeBus | None = None,
        config: JobConfig = JOBS,
        progress: ProgressConfig = PROGRESS,
        drafts: DraftManager | None = None,
        clock: Callable[[], int] = now_ms,
        ticker_factory: Callable[..., Any] = Ticker,
        on_render: Callable[[ViewState], None] | None = None,
    ) -> None:
        self.store = store
        self.link = link
        self.bus = bus or ChangeBus(store)
        self.config = config
        self.progress = progress
        self.drafts = drafts or DraftManager(store, debounce_ms=DRAFT_DEBOUNCE_MS)
        self._clock = clock
        self._ticker_factory = ticker_factory
        self._on_render = on_render

        self.state = ViewState()
        self._tracked: JobRecord | None = None
        self._ticker: Any = None
        self._subscription: Subscription | None = None
        self._lock = threading.RLock()

        self._dispatcher = ChangeDispatcher()
        self._dispatcher.on(RecordKind.JOB, self._on_job_change)
        self._dispatcher.on(RecordKind.HISTORY, self._on_history_change)

    # ------------------------------------------------------------------
    # Lifecycle

    def open(self, *, watch: bool = False, poll_interval_s: float = 0.2) -> ViewState:
        """Reconcile with the persisted state; optionally start watching for changes."""
        # Subscribe first so nothing written between the read and the
        # subscription is missed (duplicates are harmless).
        self._subscription = self.bus.subscribe(
            on_change=self.handle_change,
            on_tick=self.handle_tick,
            on_reset=self.handle_reset,
        )

        with self._lock:
            self.state.draft = self.drafts.load()
            self.state.history = load_history(self.store)
            self._reconcile(parse_job(self.store.get(RecordKind.JOB.value)))

        if watch:
            self._subscription.start(poll_interval_s)
        self._render()
        return self.state

    def poll(self) -> int:
        """Deliver pending change events synchronously (when not watching)."""
        if self._subscription is None:
            return 0
        return self._subscription.poll()

    def close(self) -> None:
        with self._lock:
            self._stop_ticker()
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self.drafts.close()

    def __enter__(self) -> "ViewController":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Commands

    def start(self, text: str, model_id: str) -> dict[str, Any]:
        # A pending edit must land before the job exists, never after the
        # coordinator has cleared the draft on completion.
        self.drafts.flush()
        resp = self.link.start(text, model_id)
        if not resp.get("ok"):
            return resp
        with self._lock:
            record = parse_job(self.store.get(RecordKind.JOB.value))
            if record is not None and self._accepts(record):
                self._apply(record, observed=True)
        self._render()
        return resp

    def cancel(self) -> dict[str, Any]:
        return self.link.cancel()

    def edit_draft(self, text: str) -> None:
        self.state.draft = text
        self.drafts.edit(text)

    # ------------------------------------------------------------------
    # Reconciliation

    def _reconcile(self, record: JobRecord | None, *, observed: bool = False) -> None:
        if record is None:
            self._set_idle()
            return
        if record.is_running:
            elapsed_ms = int(self._clock()) - int(record.started_at)
            if elapsed_ms > int(self.config.stale_timeout_ms):
                expired = self._expire(record)
                self._apply(expired or parse_job(self.store.get(RecordKind.JOB.value)) or record, observed=observed)
                return
        self._apply(record, observed=observed)

    def _expire(self, record: JobRecord) -> JobRecord | None:
        """Force-terminate a running record the coordinator never reported on."""
        written: list[JobRecord] = []

        def _fn(old: Any) -> Any:
            current = parse_job(old)
            if current is None or not current.same_job(record) or not current.is_running:
                return SharedStore.UNCHANGED
            new = replace(current, status="failed", error=STALE_ERROR)
            written.append(new)
            return new.to_dict()

        self.store.update(RecordKind.JOB.value, _fn)
        if written:
            print(f"[pollex][view] Job {record.job_id} presumed abandoned; marked failed.")
        return written[0] if written else None

    def _accepts(self, record: JobRecord) -> bool:
        tracked = self._tracked
        if tracked is None:
            return True
        if record.same_job(tracked):
            # Nothing follows a terminal state for the same job.
            return not tracked.is_terminal or record.status == tracked.status
        return int(record.started_at) > int(tracked.started_at)

    def _apply(self, record: JobRecord, *, observed: bool = True) -> None:
        """Show ``record``.

        ``observed`` is False when the record is only being read back on open;
        a completion seen that way has already had its effects.
        """
        previous = self._tracked
        self._tracked = record
        s = self.state
        s.job_id = record.job_id
        s.started_at = record.started_at
        s.input_text = record.input_text
        s.model_id = record.model_id
        s.estimated_seconds = estimate_seconds(
            len(record.input_text),
            per_char_ms=self.progress.per_char_ms,
            safety_factor=self.progress.safety_factor,
        )

        if record.is_running:
            if previous is not None and previous.same_job(record) and previous.is_running:
                return
            s.phase = "running"
            s.result = None
            s.error = None
            elapsed_ms = max(0, int(self._clock()) - int(record.started_at))
            s.seconds = elapsed_ms // 1000
            s.percent = self._percent(s.seconds)
            self._start_ticker(s.seconds)
            return

        self._stop_ticker()
        already_shown = previous is not None and previous.same_job(record) and previous.is_terminal
        if record.status == "completed" and observed and not already_shown:
            # The coordinator removed the draft together with this completion.
            self.drafts.cancel()
            s.draft = ""
        s.phase = record.status
        s.result = record.result if record.status == "completed" else None
        s.error = record.error if record.status == "failed" else None
        s.percent = 100 if record.status == "completed" else s.percent

    def _set_idle(self) -> None:
        self._stop_ticker()
        self._tracked = None
        self.state.phase = "idle"
        self.state.job_id = None
        self.state.started_at = None
        self.state.seconds = 0
        self.state.percent = 0
        self.state.result = None
        self.state.error = None

    def _percent(self, seconds: int) -> int:
        return progress_percent(seconds, self.state.estimated_seconds, cap=self.progress.max_percent)

    # ------------------------------------------------------------------
    # Local progress timer

    def _start_ticker(self, start_at: int) -> None:
        self._stop_ticker()
        job_id = self.state.job_id
        self._ticker = self._ticker_factory(
            lambda seconds: self._on_local_tick(job_id, seconds),
            interval_s=self.config.tick_interval_s,
            start_at=start_at,
        )
        self._ticker.start()

    def _stop_ticker(self) -> None:
        t, self._ticker = self._ticker, None
        if t is not None:
            t.cancel()

    def _on_local_tick(self, job_id: str | None, seconds: int) -> None:
        with self._lock:
            if self.state.phase != "running" or self.state.job_id != job_id:
                return
            self.state.seconds = max(self.state.seconds, int(seconds))
            self.state.percent = self._percent(self.state.seconds)
        self._render()

    # ------------------------------------------------------------------
    # Change bus

    def handle_change(self, event: ChangeEvent) -> None:
        self._dispatcher.dispatch(event)

    def handle_tick(self, tick: TickMessage) -> None:
        with self._lock:
            if self.state.phase != "running" or tick.job_id != self.state.job_id:
                return
            self.state.seconds = max(self.state.seconds, int(tick.seconds))
            self.state.percent = self._percent(self.state.seconds)
        self._render()

    def handle_reset(self) -> None:
        """The change log was compacted under us: re-read current values."""
        with self._lock:
            self.state.history = load_history(self.store)
            self._reconcile(parse_job(self.store.get(RecordKind.JOB.value)), observed=True)
        self._render()

    def _on_job_change(self, old: JobRecord | None, new: JobRecord | None) -> None:
        with self._lock:
            if new is None:
                # Record removed: only meaningful if we were idle anyway.
                return
            if not self._accepts(new):
                return
            self._apply(new)
        self._render()

    def _on_history_change(self, old: list[HistoryEntry], new: list[HistoryEntry]) -> None:
        with self._lock:
            self.state.history = list(new)
        self._render()

    def _render(self) -> None:
        if self._on_render is not None:
            self._on_render(self.state)
