from __future__ import annotations

import threading
from typing import Any, Callable

from pollex.config import DRAFT_DEBOUNCE_MS
from pollex.jobs.store import SharedStore
from pollex.jobs.types import RecordKind, parse_draft

DRAFT_KEY = RecordKind.DRAFT.value


class DraftManager:
    """Debounced persistence of the text the user has not sent yet.

    Only the open view writes the draft; the coordinator removes it after a
    completed job. Failed and cancelled jobs leave it in place.
    """

    def __init__(
        self,
        store: SharedStore,
        *,
        debounce_ms: int = DRAFT_DEBOUNCE_MS,
        timer_factory: Callable[[float, Callable[[], None]], Any] = threading.Timer,
    ) -> None:
        self.store = store
        self.debounce_s = max(0, int(debounce_ms)) / 1000.0
        self._timer_factory = timer_factory
        self._timer: Any = None
        self._pending: str | None = None
        self._lock = threading.Lock()

    def load(self) -> str:
        return parse_draft(self.store.get(DRAFT_KEY))

    @property
    def pending(self) -> str | None:
        return self._pending

    def edit(self, text: str) -> None:
        """Record an edit; it is persisted after the quiet period."""
        with self._lock:
            self._pending = str(text)
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self.debounce_s, self.flush)
            if hasattr(timer, "daemon"):
                timer.daemon = True
            self._timer = timer
            timer.start()

    def flush(self) -> None:
        with self._lock:
            text, self._pending = self._pending, None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if text is not None:
            self.store.set(DRAFT_KEY, text)

    def cancel(self) -> None:
        with self._lock:
            self._pending = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def close(self) -> None:
        # Persist the last edit rather than dropping it on teardown.
        self.flush()
