from __future__ import annotations

from dataclasses import replace

from conftest import FAST_JOBS, FakeRewrite
from pollex import cli
from pollex.jobs.coordinator import JobCoordinator
from pollex.jobs.history import append_history, make_entry
from pollex.jobs.store import SharedStore
from pollex.jobs.types import JobRecord, JobResult
from pollex.view.link import LocalLink

RESULT = JobResult(polished="Fix this sentence.", model="m1", elapsed_ms=1200)


def _run(store: SharedStore, *argv: str) -> int:
    return cli.main(["--state-dir", str(store.root), *argv])


def test_config_saves_and_shows_connection(store: SharedStore, capsys) -> None:  # noqa: ANN001
    assert _run(store, "config", "--endpoint-url", "http://svc:9000/api/", "--api-key", "k") == 0

    out = capsys.readouterr().out
    assert "endpointUrl: http://svc:9000/api" in out
    assert "apiKey: (set)" in out
    assert store.get("apiKey") == "k"


def test_status_idle_and_completed(store: SharedStore, capsys) -> None:  # noqa: ANN001
    assert _run(store, "status") == 0
    assert capsys.readouterr().out.strip() == "idle"

    rec = JobRecord(status="running", input_text="hi", model_id="m1", started_at=1, job_id="j")
    store.set("job", replace(rec, status="completed", result=RESULT).to_dict())
    store.set("draft", "abc")

    assert _run(store, "status") == 0
    out = capsys.readouterr().out
    assert "Fix this sentence." in out
    assert "[m1, 1.2s]" in out
    assert "(draft: 3 chars)" in out


def test_history_lists_newest_first(store: SharedStore, capsys) -> None:  # noqa: ANN001
    assert _run(store, "history") == 0
    assert "(no history)" in capsys.readouterr().out

    append_history(store, make_entry("one", RESULT, timestamp=1))
    append_history(store, make_entry("two", RESULT, timestamp=2))

    _run(store, "history")
    lines = capsys.readouterr().out.strip().splitlines()
    assert "'two'" in lines[0]
    assert "'one'" in lines[1]


def test_start_wait_prints_result(store: SharedStore, capsys, monkeypatch) -> None:  # noqa: ANN001
    coordinator = JobCoordinator(store, rewrite=FakeRewrite(RESULT, released=True), config=FAST_JOBS)
    monkeypatch.setattr(cli, "HttpLink", lambda url=None: LocalLink(coordinator))

    code = _run(store, "start", "fix this sentance", "--model", "m1", "--wait")

    assert code == 0
    assert "Fix this sentence." in capsys.readouterr().out


def test_start_rejected(store: SharedStore, capsys, monkeypatch) -> None:  # noqa: ANN001
    coordinator = JobCoordinator(store, rewrite=FakeRewrite(RESULT, released=True), config=FAST_JOBS)
    monkeypatch.setattr(cli, "HttpLink", lambda url=None: LocalLink(coordinator))

    assert _run(store, "start", "   ", "--model", "m1") == 2
    assert "Rejected: Text is required" in capsys.readouterr().err


def test_logs_shows_coordinator_events(store: SharedStore, capsys) -> None:  # noqa: ANN001
    coordinator = JobCoordinator(store, rewrite=FakeRewrite(RESULT, released=True), config=FAST_JOBS)
    coordinator.start("hello", "m1")
    assert coordinator.wait(3.0)
    capsys.readouterr()

    assert _run(store, "logs", "--limit", "1") == 0
    out = capsys.readouterr().out.strip().splitlines()
    assert len(out) == 1
    assert "job_completed" in out[0]
