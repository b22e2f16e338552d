from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable

from pollex.config import JOBS, JobConfig
from pollex.event_log import append_event
from pollex.jobs.bus import ChangeBus
from pollex.jobs.errors import (
    CancellationError,
    ConflictError,
    PollexError,
    TransportError,
    ValidationError,
    truncate_error,
)
from pollex.jobs.history import append_history, make_entry
from pollex.jobs.store import SharedStore, now_ms
from pollex.jobs.types import JobRecord, JobResult, RecordKind, new_job_id, parse_job

RewriteFn = Callable[[str, str], JobResult]

RESTART_ERROR = "Interrupted by coordinator restart."
TIMEOUT_ERROR = "Request timed out."

JOB_KEY = RecordKind.JOB.value


def coordinator_log_path(store: SharedStore) -> Path:
    return store.root / "logs" / "coordinator.jsonl"


@dataclass
class JobContext:
    """In-memory handle for the job this process is running.

    Lives exactly as long as the supervising thread; never survives a
    coordinator restart (the durable ``cancelRequested`` flag does).
    """

    record: JobRecord
    cancel_event: threading.Event = field(default_factory=threading.Event)
    wakeup: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None

    def request_cancel(self) -> None:
        self.cancel_event.set()
        self.wakeup.set()


class JobCoordinator:
    """Owns the job state machine: idle -> running -> completed | failed | cancelled.

    ``start`` validates, writes the running record and returns at acceptance;
    the outcome is written later by a supervising thread and observed through
    the change bus. Terminal writes are compare-and-set against the job they
    belong to, so a late or superseded outcome never touches the store.
    """

    def __init__(
        self,
        store: SharedStore,
        *,
        bus: ChangeBus | None = None,
        rewrite: RewriteFn | None = None,
        config: JobConfig = JOBS,
        clock: Callable[[], int] = now_ms,
        log_path: Path | None = None,
    ) -> None:
        self.store = store
        self.bus = bus or ChangeBus(store)
        self.config = config
        self._rewrite = rewrite or self._remote_rewrite
        self._clock = clock
        self._log_path = log_path if log_path is not None else coordinator_log_path(store)
        self._lock = threading.RLock()
        self._active: JobContext | None = None

    # ------------------------------------------------------------------
    # Logging

    def _log(self, event: dict[str, Any]) -> None:
        try:
            append_event(self._log_path, event)
        except OSError:
            # Logging must never crash the job loop.
            pass

    def _remote_rewrite(self, text: str, model_id: str) -> JobResult:
        from pollex.remote import fetch_rewrite

        return fetch_rewrite(text, model_id, store=self.store, timeout_s=self.config.request_timeout_s)

    # ------------------------------------------------------------------
    # Queries

    def current(self) -> JobRecord | None:
        return parse_job(self.store.get(JOB_KEY))

    @property
    def active(self) -> JobContext | None:
        return self._active

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the job running in this process (if any) is finished."""
        ctx = self._active
        if ctx is None:
            return True
        return ctx.done.wait(timeout)

    # ------------------------------------------------------------------
    # Startup recovery

    def recover(self) -> JobRecord | None:
        """Reconcile with whatever survived the previous coordinator instance.

        A ``running`` record with no live context here cannot be reattached
        (the remote call has no request id), so it is closed out: cancelled if
        a cancel was already requested, failed otherwise.
        """
        if self.store.compact_change_log(self.config.change_log_max_bytes):
            print("[pollex][coordinator] Compacted change log.")
        self.bus.clear_tick()

        current = self.current()
        if current is None or not current.is_running:
            return current

        with self._lock:
            if self._active is not None and self._active.record.same_job(current):
                return current

        if current.cancel_requested:
            applied = self._finish(current, "cancelled")
        else:
            applied = self._finish(current, "failed", error=RESTART_ERROR)

        if applied is not None:
            print(f"[pollex][coordinator] Closed orphaned job {current.job_id} as {applied.status}.")
            self._log({"type": "job_recovered", "job_id": current.job_id, "status": applied.status})
        return self.current()

    # ------------------------------------------------------------------
    # Commands

    def _validate(self, text: Any, model_id: Any) -> None:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Text is required")
        if not isinstance(model_id, str) or not model_id.strip():
            raise ValidationError("Model is required")
        if len(text) > int(self.config.max_text_length):
            raise ValidationError("Text too long")

    def start(self, text: str, model_id: str) -> JobRecord:
        """Accept a new job or raise ``ValidationError`` / ``ConflictError``.

        Returns the running record once it is persisted; does not wait for
        the remote call.
        """
        self._validate(text, model_id)

        with self._lock:
            current = self.current()
            if current is not None and current.is_running:
                raise ConflictError("Already running")

            # A previous context whose record was force-terminated elsewhere
            # (staleness) is abandoned rather than awaited.
            if self._active is not None:
                self._active.request_cancel()

            record = JobRecord(
                status="running",
                input_text=text,
                model_id=model_id,
                started_at=int(self._clock()),
                job_id=new_job_id(),
            )
            self.store.set(JOB_KEY, record.to_dict())

            ctx = JobContext(record=record)
            ctx.thread = threading.Thread(
                target=self._supervise,
                args=(ctx,),
                name=f"pollex-job-{record.job_id[:8]}",
                daemon=True,
            )
            self._active = ctx
            ctx.thread.start()

        print(f"[pollex][coordinator] Started job {record.job_id} (model={model_id}, chars={len(text)}).")
        self._log(
            {
                "type": "job_start",
                "job_id": record.job_id,
                "model_id": model_id,
                "chars": len(text),
                "started_at": record.started_at,
            }
        )
        return record

    def cancel(self, *, wait_s: float = 1.0) -> JobRecord | None:
        """Request cancellation of the running job.

        With a live context the intent is persisted (``cancelRequested``) and
        the supervising thread is woken; it writes ``cancelled``. Without one
        (this process was restarted) the record is marked ``cancelled``
        directly; the abandoned remote call may still finish server-side.
        """
        current = self.current()
        if current is None or not current.is_running:
            return current

        self._mark_cancel_requested(current)
        self._log({"type": "cancel_requested", "job_id": current.job_id})

        with self._lock:
            ctx = self._active
        if ctx is not None and ctx.record.same_job(current):
            ctx.request_cancel()
            ctx.done.wait(wait_s)
        else:
            if self._finish(current, "cancelled") is not None:
                self._log({"type": "job_cancelled", "job_id": current.job_id, "live": False})
        return self.current()

    def handle_message(self, msg: dict[str, Any]) -> dict[str, Any]:
        """Serve one request of the view <-> coordinator message protocol.

        START{text, modelId} -> {ok: true} | {ok: false, error}
        CANCEL{}             -> {ok: true}
        """
        kind = str(msg.get("type") or "").upper()
        payload = msg.get("payload") if isinstance(msg.get("payload"), dict) else msg
        if kind == "START":
            try:
                self.start(payload.get("text"), payload.get("modelId"))
            except PollexError as exc:
                return {"ok": False, "error": str(exc)}
            return {"ok": True}
        if kind == "CANCEL":
            self.cancel()
            return {"ok": True}
        return {"ok": False, "error": f"Unknown message type: {kind or '?'}"}

    def shutdown(self, timeout: float = 2.0) -> None:
        """Close out the live job before the process exits.

        The job is recorded as failed (not cancelled): nobody asked for it to stop.
        """
        ctx = self._active
        if ctx is None:
            return
        self._fail(ctx.record, RESTART_ERROR)
        ctx.request_cancel()
        ctx.done.wait(timeout)

    # ------------------------------------------------------------------
    # Supervising loop

    def _call_in_thread(self, ctx: JobContext) -> Future:
        fut: Future = Future()
        rec = ctx.record

        def _target() -> None:
            try:
                fut.set_result(self._rewrite(rec.input_text, rec.model_id))
            except BaseException as exc:  # noqa: BLE001
                fut.set_exception(exc)

        fut.add_done_callback(lambda _f: ctx.wakeup.set())
        threading.Thread(target=_target, name=f"pollex-rewrite-{rec.job_id[:8]}", daemon=True).start()
        return fut

    def _cancel_requested(self, ctx: JobContext) -> bool:
        if ctx.cancel_event.is_set():
            return True
        current = self.current()
        if current is None or not current.same_job(ctx.record):
            # Record superseded or removed: nobody is waiting for this outcome.
            return True
        return current.cancel_requested or not current.is_running

    def _await_remote(self, ctx: JobContext) -> JobResult:
        interval = float(self.config.tick_interval_s)
        started = time.monotonic()
        deadline = started + float(self.config.request_timeout_s)
        next_tick = started + interval
        seconds = 0

        fut = self._call_in_thread(ctx)
        while True:
            now = time.monotonic()
            ctx.wakeup.wait(max(0.0, min(next_tick, deadline) - now))
            ctx.wakeup.clear()

            if self._cancel_requested(ctx):
                raise CancellationError("Cancelled.")
            if fut.done():
                return fut.result()

            now = time.monotonic()
            if now >= deadline:
                raise TransportError(TIMEOUT_ERROR)
            while now >= next_tick:
                seconds += 1
                next_tick += interval
                self.bus.publish_tick(ctx.record.job_id, seconds)

    def _supervise(self, ctx: JobContext) -> None:
        rec = ctx.record
        try:
            try:
                result = self._await_remote(ctx)
            except CancellationError:
                if self._finish(rec, "cancelled") is not None:
                    print(f"[pollex][coordinator] Job {rec.job_id} cancelled.")
                    self._log({"type": "job_cancelled", "job_id": rec.job_id, "live": True})
            except TransportError as exc:
                self._fail(rec, str(exc))
            except Exception as exc:  # noqa: BLE001
                self._fail(rec, f"Request failed: {exc}")
            else:
                if self._finish(rec, "completed", result=result) is not None:
                    append_history(
                        self.store,
                        make_entry(rec.input_text, result, timestamp=self._clock()),
                        max_rows=self.config.max_history,
                    )
                    self.store.remove(RecordKind.DRAFT.value)
                    print(f"[pollex][coordinator] Job {rec.job_id} completed in {result.elapsed_ms} ms.")
                    self._log(
                        {
                            "type": "job_completed",
                            "job_id": rec.job_id,
                            "model": result.model,
                            "elapsed_ms": result.elapsed_ms,
                        }
                    )
        finally:
            self.bus.clear_tick()
            with self._lock:
                if self._active is ctx:
                    self._active = None
            ctx.done.set()

    # ------------------------------------------------------------------
    # Record transitions

    def _fail(self, rec: JobRecord, message: str) -> None:
        message = truncate_error(message, self.config.error_max_length)
        if self._finish(rec, "failed", error=message) is not None:
            print(f"[pollex][coordinator] Job {rec.job_id} failed: {message}")
            self._log({"type": "job_failed", "job_id": rec.job_id, "error": message})

    def _mark_cancel_requested(self, rec: JobRecord) -> None:
        def _fn(old: Any) -> Any:
            current = parse_job(old)
            if current is None or not current.same_job(rec) or not current.is_running:
                return SharedStore.UNCHANGED
            if current.cancel_requested:
                return SharedStore.UNCHANGED
            return replace(current, cancel_requested=True).to_dict()

        self.store.update(JOB_KEY, _fn)

    def _finish(
        self,
        rec: JobRecord,
        status: str,
        *,
        result: JobResult | None = None,
        error: str | None = None,
    ) -> JobRecord | None:
        """Move ``rec`` from running to a terminal state.

        Returns the written record, or None when the stored record is no
        longer this job's running record (already terminal or superseded).
        """
        written: list[JobRecord] = []

        def _fn(old: Any) -> Any:
            current = parse_job(old)
            if current is None or not current.same_job(rec) or not current.is_running:
                return SharedStore.UNCHANGED
            new = replace(current, status=status, result=result, error=error)
            written.append(new)
            return new.to_dict()

        with self._lock:
            self.store.update(JOB_KEY, _fn)
        return written[0] if written else None
