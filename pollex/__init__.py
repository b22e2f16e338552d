"""pollex: background text polishing with a restart-tolerant job coordinator.

Layers:
- pollex.jobs: shared store, change bus, coordinator (long-lived process)
- pollex.view: view controller, drafts, progress (short-lived process)
- pollex.ui: Streamlit rendering on top of pollex.view

Nothing here should trigger long-running side effects at import time.
"""

__version__ = "0.3.0"
