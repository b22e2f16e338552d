from __future__ import annotations

import argparse
from pathlib import Path

from pollex.config import COORDINATOR, PATHS
from pollex.event_log import append_event
from pollex.jobs.coordinator import JobCoordinator, coordinator_log_path
from pollex.jobs.store import SharedStore


def build_coordinator(state_dir: str | Path | None = None) -> JobCoordinator:
    """Create the coordinator and reconcile with state left by a previous run."""
    store = SharedStore(state_dir or PATHS.state_dir)
    coordinator = JobCoordinator(store)
    recovered = coordinator.recover()
    try:
        append_event(
            coordinator_log_path(store),
            {
                "type": "coordinator_start",
                "state_dir": str(store.root),
                "job_status": recovered.status if recovered is not None else "idle",
            },
        )
    except OSError:
        pass
    return coordinator


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(description="Run the pollex job coordinator (long-lived process).")
    p.add_argument("--host", default=COORDINATOR.host, type=str)
    p.add_argument("--port", default=COORDINATOR.port, type=int)
    p.add_argument(
        "--state-dir",
        default=PATHS.state_dir,
        type=str,
        help="Shared store directory (must be the same for the views).",
    )
    args = p.parse_args(argv)

    # Lazy import: the server stack is only needed in the coordinator process.
    import uvicorn

    from api.main import app, set_coordinator

    coordinator = build_coordinator(args.state_dir)
    set_coordinator(coordinator)

    print(f"[pollex][coordinator] Listening on http://{args.host}:{args.port} (state: {coordinator.store.root})")
    try:
        uvicorn.run(app, host=args.host, port=int(args.port), log_level="warning")
    finally:
        coordinator.shutdown()


if __name__ == "__main__":  # pragma: no cover
    main()
