"""Thin UI layer.

This package contains the Streamlit page that:
- opens a ViewController on every rerun
- sends START / CANCEL to the coordinator
- renders progress, result and history

Business logic should live in pollex.jobs or pollex.view.
"""
