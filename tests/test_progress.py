from __future__ import annotations

import threading

import pytest

from pollex.view.progress import Ticker, estimate_seconds, format_elapsed_ms, format_polishing, progress_percent


@pytest.mark.parametrize(
    "length,expected",
    [
        (0, 1),
        (5, 1),
        (25, 2),  # 1.5 rounds half-up
        (100, 6),
        (1500, 90),
    ],
)
def test_estimate_seconds(length: int, expected: int) -> None:
    assert estimate_seconds(length, per_char_ms=40, safety_factor=1.5) == expected


def test_progress_percent_is_capped_below_100() -> None:
    assert progress_percent(0, 10) == 0
    assert progress_percent(5, 10) == 50
    assert progress_percent(10, 10) == 99
    assert progress_percent(500, 10) == 99
    assert progress_percent(3, 0) == 99


def test_formatting() -> None:
    assert format_elapsed_ms(1200) == "1.2s"
    assert format_elapsed_ms(0) == "0.0s"
    assert format_polishing(7) == "Polishing... 7s"


def test_ticker_counts_from_start_value() -> None:
    seen: list[int] = []
    third = threading.Event()

    def _fn(seconds: int) -> None:
        seen.append(seconds)
        if len(seen) == 3:
            third.set()

    t = Ticker(_fn, interval_s=0.01, start_at=12).start()
    try:
        assert third.wait(2.0)
    finally:
        t.cancel()

    assert seen[:3] == [13, 14, 15]
    assert t.running is False
