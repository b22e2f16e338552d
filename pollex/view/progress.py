"""Progress display helpers.

The estimate is a display heuristic only; completion is always signalled by
the job record, never by the estimate running out.
"""

from __future__ import annotations

import math
import threading
from typing import Callable

from pollex.config import PROGRESS, TICK_INTERVAL_S


def estimate_seconds(
    text_length: int,
    *,
    per_char_ms: float = PROGRESS.per_char_ms,
    safety_factor: float = PROGRESS.safety_factor,
) -> int:
    raw = max(0, int(text_length)) * float(per_char_ms) * float(safety_factor) / 1000.0
    # Half-up rounding.
    return max(1, int(math.floor(raw + 0.5)))


def progress_percent(elapsed_s: float, estimated_s: float, *, cap: int = PROGRESS.max_percent) -> int:
    if estimated_s <= 0:
        return cap
    pct = int(100 * max(0.0, float(elapsed_s)) / float(estimated_s))
    return min(cap, pct)


def format_elapsed_ms(elapsed_ms: int | float) -> str:
    return f"{float(elapsed_ms) / 1000:.1f}s"


def format_polishing(seconds: int) -> str:
    return f"Polishing... {int(seconds)}s"


class Ticker:
    """Repeating timer calling ``fn(seconds)`` every ``interval_s``.

    ``seconds`` starts at ``start_at`` and increases by one per tick.
    ``cancel()`` is idempotent and does not block; a tick already in progress
    on the timer thread may still complete, so callbacks should check that
    they are still wanted.
    """

    def __init__(
        self,
        fn: Callable[[int], None],
        *,
        interval_s: float = TICK_INTERVAL_S,
        start_at: int = 0,
    ) -> None:
        self._fn = fn
        self._interval = float(interval_s)
        self.seconds = int(start_at)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def start(self) -> "Ticker":
        if self._thread is not None:
            return self

        def _loop() -> None:
            while not self._stop.wait(self._interval):
                self.seconds += 1
                self._fn(self.seconds)

        self._thread = threading.Thread(target=_loop, name="pollex-ticker", daemon=True)
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._stop.set()
