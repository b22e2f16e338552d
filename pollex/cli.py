"""Command-line front end.

Every command except ``coordinator`` behaves like a short-lived view: it opens,
reconciles with the shared store, does one thing and exits.

Examples:
    python -m pollex.cli coordinator --port 8091
    python -m pollex.cli start "fix this sentance" --model m1 --wait
    python -m pollex.cli status
    python -m pollex.cli config --endpoint-url http://localhost:8090/api
"""

from __future__ import annotations

import argparse
import sys
import time

from pollex.config import PATHS
from pollex.event_log import read_events
from pollex.jobs.coordinator import coordinator_log_path
from pollex.jobs.errors import TransportError
from pollex.jobs.store import SharedStore
from pollex.remote import fetch_health, fetch_models, get_connection, group_models_by_provider, save_connection
from pollex.view.controller import ViewController, ViewState
from pollex.view.link import HttpLink
from pollex.view.progress import format_elapsed_ms


def format_state(state: ViewState) -> str:
    if state.phase == "idle":
        return "idle"
    if state.phase == "running":
        return f"{state.status_message} (~{state.percent}%)"
    if state.phase == "completed" and state.result is not None:
        return f"{state.result.polished}\n[{state.result.model}, {format_elapsed_ms(state.result.elapsed_ms)}]"
    return state.status_message


def _open_view(args: argparse.Namespace, **kwargs) -> ViewController:  # noqa: ANN003
    store = SharedStore(args.state_dir)
    view = ViewController(store, HttpLink(args.coordinator_url), **kwargs)
    view.open()
    return view


def cmd_coordinator(args: argparse.Namespace) -> int:
    from pollex.jobs import run

    argv = ["--state-dir", args.state_dir]
    if args.host:
        argv += ["--host", args.host]
    if args.port:
        argv += ["--port", str(args.port)]
    run.main(argv)
    return 0


def cmd_start(args: argparse.Namespace) -> int:
    view = _open_view(args)
    try:
        resp = view.start(args.text, args.model)
        if not resp.get("ok"):
            print(f"Rejected: {resp.get('error')}", file=sys.stderr)
            return 2
        if not args.wait:
            print("Accepted.")
            return 0
        last = None
        while view.state.phase == "running":
            view.poll()
            line = format_state(view.state)
            if line != last:
                print(line)
                last = line
            time.sleep(0.2)
        print(format_state(view.state))
        return 0 if view.state.phase == "completed" else 1
    except KeyboardInterrupt:
        view.cancel()
        print("Cancelled.")
        return 130
    finally:
        view.close()


def cmd_cancel(args: argparse.Namespace) -> int:
    resp = HttpLink(args.coordinator_url).cancel()
    print("ok" if resp.get("ok") else f"error: {resp.get('error')}")
    return 0 if resp.get("ok") else 1


def cmd_status(args: argparse.Namespace) -> int:
    view = _open_view(args)
    try:
        print(format_state(view.state))
        if view.state.draft:
            print(f"(draft: {len(view.state.draft)} chars)")
    finally:
        view.close()
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    view = _open_view(args)
    try:
        for e in view.state.history:
            print(f"- [{e.model}, {format_elapsed_ms(e.elapsed_ms)}] {e.input!r} -> {e.output!r}")
        if not view.state.history:
            print("(no history)")
    finally:
        view.close()
    return 0


def cmd_models(args: argparse.Namespace) -> int:
    store = SharedStore(args.state_dir)
    try:
        models = fetch_models(store)
    except TransportError as exc:
        print(f"Cannot reach API: {exc}", file=sys.stderr)
        return 1
    for label, group in group_models_by_provider(models).items():
        print(f"{label}:")
        for m in group:
            print(f"  {m['id']}  {m['name']}")
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    store = SharedStore(args.state_dir)
    try:
        data = fetch_health(store)
    except TransportError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    ok = data.get("status") == "ok"
    print("Connected." if ok else f"Unexpected response: {data}")
    return 0 if ok else 1


def cmd_config(args: argparse.Namespace) -> int:
    store = SharedStore(args.state_dir)
    if args.endpoint_url is not None or args.api_key is not None:
        save_connection(store, endpoint_url=args.endpoint_url, api_key=args.api_key)
    url, key = get_connection(store)
    print(f"endpointUrl: {url}")
    print(f"apiKey: {'(set)' if key else '(none)'}")
    return 0


def cmd_logs(args: argparse.Namespace) -> int:
    store = SharedStore(args.state_dir)
    for e in read_events(coordinator_log_path(store), max_events=args.limit):
        details = {k: v for k, v in e.items() if k not in {"type", "ts_utc"}}
        print(f"{e.get('ts_utc', '?')} {e.get('type')} {details}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pollex", description="Polish text through a background coordinator.")
    p.add_argument("--state-dir", default=PATHS.state_dir, type=str)
    p.add_argument("--coordinator-url", default=None, type=str)
    sub = p.add_subparsers(dest="command", required=True)

    c = sub.add_parser("coordinator", help="Run the long-lived coordinator process.")
    c.add_argument("--host", default=None, type=str)
    c.add_argument("--port", default=None, type=int)
    c.set_defaults(func=cmd_coordinator)

    s = sub.add_parser("start", help="Submit text for polishing.")
    s.add_argument("text", type=str)
    s.add_argument("--model", required=True, type=str)
    s.add_argument("--wait", action="store_true", help="Stay open and show progress until the job ends.")
    s.set_defaults(func=cmd_start)

    sub.add_parser("cancel", help="Cancel the running job.").set_defaults(func=cmd_cancel)
    sub.add_parser("status", help="Show the current or last job.").set_defaults(func=cmd_status)
    sub.add_parser("history", help="Show recent results.").set_defaults(func=cmd_history)
    sub.add_parser("models", help="List models offered by the service.").set_defaults(func=cmd_models)
    sub.add_parser("health", help="Check the polishing service.").set_defaults(func=cmd_health)

    cfg = sub.add_parser("config", help="Show or change connection settings.")
    cfg.add_argument("--endpoint-url", default=None, type=str)
    cfg.add_argument("--api-key", default=None, type=str)
    cfg.set_defaults(func=cmd_config)

    lg = sub.add_parser("logs", help="Show recent coordinator events.")
    lg.add_argument("--limit", default=20, type=int)
    lg.set_defaults(func=cmd_logs)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
