"""Request/response channel from a view to the coordinator.

Messages: START{text, modelId} -> {ok, error?}; CANCEL{} -> {ok}.
"""

from __future__ import annotations

from typing import Any, Protocol

import requests

from pollex.config import COORDINATOR


class CoordinatorLink(Protocol):
    def start(self, text: str, model_id: str) -> dict[str, Any]: ...

    def cancel(self) -> dict[str, Any]: ...


class LocalLink:
    """In-process link, used when the view and coordinator share a process."""

    def __init__(self, coordinator) -> None:  # noqa: ANN001
        self.coordinator = coordinator

    def start(self, text: str, model_id: str) -> dict[str, Any]:
        return self.coordinator.handle_message({"type": "START", "payload": {"text": text, "modelId": model_id}})

    def cancel(self) -> dict[str, Any]:
        return self.coordinator.handle_message({"type": "CANCEL"})


class HttpLink:
    """Link to a coordinator process serving ``api.main:app``."""

    def __init__(self, base_url: str | None = None, *, timeout_s: float = COORDINATOR.request_timeout_s) -> None:
        self.base_url = (base_url or COORDINATOR.base_url()).rstrip("/")
        self.timeout_s = timeout_s

    def _send(self, message: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = requests.post(f"{self.base_url}/messages", json=message, timeout=self.timeout_s)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as exc:
            return {"ok": False, "error": f"Coordinator unavailable: {exc}"}
        except ValueError:
            return {"ok": False, "error": "Malformed coordinator response"}
        if not isinstance(data, dict) or "ok" not in data:
            return {"ok": False, "error": "Malformed coordinator response"}
        return data

    def start(self, text: str, model_id: str) -> dict[str, Any]:
        return self._send({"type": "START", "payload": {"text": text, "modelId": model_id}})

    def cancel(self) -> dict[str, Any]:
        return self._send({"type": "CANCEL"})
