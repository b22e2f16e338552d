"""Streamlit UI entrypoint.

Every Streamlit rerun behaves like a freshly opened view: it builds a
ViewController, reconciles with the shared store, renders, and tears the
controller down again. Nothing about the job lives in session state.

Run with:
    streamlit run pollex/ui/app.py
"""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Any, MutableMapping

# Ensure repo root is on sys.path for imports.
repo_root = Path(__file__).resolve().parents[2]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import pandas as pd
import streamlit as st

from pollex.config import MAX_TEXT_LENGTH, PATHS
from pollex.jobs.errors import TransportError
from pollex.jobs.store import SharedStore
from pollex.jobs.types import HistoryEntry
from pollex.remote import fetch_models, group_models_by_provider
from pollex.view.controller import ViewController, ViewState
from pollex.view.link import HttpLink
from pollex.view.progress import format_elapsed_ms

WARN_THRESHOLD = 0.9

INPUT_KEY = "pollex_input"
INPUT_EDITED_KEY = "pollex_input_edited"


def char_count_label(text: str, *, max_chars: int = MAX_TEXT_LENGTH) -> tuple[str, str | None]:
    """Return ``(label, level)`` where level is None, "warning" or "error"."""
    n = len(text or "")
    label = f"{n:,} / {max_chars:,}"
    if n > max_chars:
        return label, "error"
    if n > max_chars * WARN_THRESHOLD:
        return label, "warning"
    return label, None


def model_options(models: list[dict[str, str]]) -> list[tuple[str, str]]:
    """Flatten grouped models into ``(id, label)`` options; group names prefix labels
    only when there is more than one group."""
    groups = group_models_by_provider(models)
    out: list[tuple[str, str]] = []
    for group, items in groups.items():
        for m in items:
            label = m["name"] if len(groups) == 1 else f"{group} / {m['name']}"
            out.append((m["id"], label))
    return out


def history_frame(history: list[HistoryEntry]) -> pd.DataFrame:
    rows = [
        {
            "input": e.input,
            "output": e.output,
            "model": e.model,
            "elapsed": format_elapsed_ms(e.elapsed_ms),
        }
        for e in history
    ]
    return pd.DataFrame(rows, columns=["input", "output", "model", "elapsed"])


def mark_input_edited() -> None:
    st.session_state[INPUT_EDITED_KEY] = True


def persist_input_edit(session: MutableMapping[str, Any], view: ViewController) -> bool:
    """Forward the text box to the draft only when the user changed it.

    The box keeps the submitted text across reruns; writing it back on every
    rerun would restore a draft the coordinator cleared on completion.
    """
    if not session.pop(INPUT_EDITED_KEY, False):
        return False
    view.edit_draft(str(session.get(INPUT_KEY) or ""))
    return True


def _render_state(state: ViewState) -> None:
    if state.phase == "running":
        st.progress(state.percent / 100.0, text=state.status_message)
    elif state.phase == "completed" and state.result is not None:
        st.text_area("Result", state.result.polished, height=200)
        st.caption(f"{state.result.model} · {format_elapsed_ms(state.result.elapsed_ms)}")
    elif state.phase == "cancelled":
        st.info(state.status_message)
    elif state.phase == "failed":
        st.error(state.status_message)


def render() -> None:
    st.set_page_config(page_title="Pollex", layout="centered")
    st.title("Pollex")

    store = SharedStore(PATHS.state_dir)
    view = ViewController(store, HttpLink())
    state = view.open()
    try:
        try:
            options = model_options(fetch_models(store))
        except TransportError:
            options = []
            st.error("Cannot reach API. Check the connection settings.")

        text = st.text_area(
            "Text",
            value=state.draft,
            height=200,
            key=INPUT_KEY,
            on_change=mark_input_edited,
        )
        persist_input_edit(st.session_state, view)
        label, level = char_count_label(text)
        st.caption(label if level is None else f"{label} ({level})")

        model_id = st.selectbox(
            "Model",
            options=[o[0] for o in options],
            format_func=dict(options).get,
            disabled=not options,
        )

        col1, col2 = st.columns(2)
        with col1:
            if st.button("Polish", disabled=state.busy or not options or not text.strip()):
                resp = view.start(text.strip(), model_id)
                if not resp.get("ok"):
                    st.error(resp.get("error") or "Request failed")
        with col2:
            if st.button("Cancel", disabled=not state.busy):
                view.cancel()

        _render_state(view.state)

        if view.state.history:
            st.markdown("### History")
            st.dataframe(history_frame(view.state.history), use_container_width=True, hide_index=True)
    finally:
        view.close()

    if view.state.busy:
        time.sleep(1.0)
        st.rerun()


if __name__ == "__main__":
    render()
