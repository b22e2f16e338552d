"""View-side layer (short-lived process).

- controller: reconcile with the job record, follow changes, send commands
- draft: debounced draft persistence
- progress: duration estimate and the local 1 s display timer
- link: START / CANCEL channel to the coordinator

It should not import Streamlit.
"""
