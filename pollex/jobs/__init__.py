"""Filesystem-backed job coordination.

Purpose:
- Run the slow remote rewrite call outside the (ephemeral) view.
- Persist job status, history and draft under the shared state dir.

This keeps closing or rerunning the view from interrupting work, and lets a
freshly opened view recover whatever the coordinator last recorded.
"""
