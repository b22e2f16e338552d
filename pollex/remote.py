"""HTTP client for the remote polishing service.

Endpoints (relative to the stored ``endpointUrl``):
- GET  /health  -> {"status": "ok", "version"?, "adapters"?}
- GET  /models  -> [{"id", "name", "provider"}, ...]
- POST /rewrite -> {"polished", "model", "elapsed_ms"} or {"error"} on non-2xx

Connection settings are read from the shared store before every call so a
settings change applies to the next request without restarting anything.
"""

from __future__ import annotations

from typing import Any

import requests

from pollex.config import JOBS, SERVICE
from pollex.jobs.errors import TransportError
from pollex.jobs.store import SharedStore
from pollex.jobs.types import JobResult, RecordKind

PROVIDER_LABELS = {
    "ollama": "Local",
    "mock": "Local",
    "claude": "Cloud",
    "llama.cpp": "Local (GPU)",
}


def normalize_url(url: str) -> str:
    return str(url or "").strip().rstrip("/")


def get_connection(store: SharedStore | None) -> tuple[str, str]:
    """Return ``(endpoint_url, api_key)`` from the store, falling back to config."""
    url = key = None
    if store is not None:
        url = store.get(RecordKind.ENDPOINT_URL.value)
        key = store.get(RecordKind.API_KEY.value)
    url = normalize_url(url if isinstance(url, str) and url.strip() else SERVICE.default_endpoint_url)
    key = key.strip() if isinstance(key, str) else ""
    return url, key


def save_connection(store: SharedStore, *, endpoint_url: str | None = None, api_key: str | None = None) -> None:
    if endpoint_url is not None:
        store.set(RecordKind.ENDPOINT_URL.value, normalize_url(endpoint_url))
    if api_key is not None:
        store.set(RecordKind.API_KEY.value, api_key.strip())


def build_headers(api_key: str) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers[SERVICE.api_key_header] = api_key
    return headers


def _error_from_response(resp: requests.Response) -> TransportError:
    message = None
    try:
        body = resp.json()
        if isinstance(body, dict) and body.get("error"):
            message = str(body["error"])
    except ValueError:
        pass
    return TransportError(message or f"Request failed: {resp.status_code}", status_code=resp.status_code)


def _json_or_raise(resp: requests.Response) -> Any:
    if not resp.ok:
        raise _error_from_response(resp)
    try:
        return resp.json()
    except ValueError as exc:
        raise TransportError("Malformed response from polishing service.") from exc


def _send(method: str, url: str, **kwargs: Any) -> requests.Response:
    try:
        return requests.request(method, url, **kwargs)
    except requests.exceptions.Timeout as exc:
        raise TransportError("Request timed out.") from exc
    except requests.exceptions.ConnectionError as exc:
        raise TransportError(f"Cannot reach polishing service at {url}.") from exc
    except requests.exceptions.RequestException as exc:
        raise TransportError(f"Request failed: {exc}") from exc


def fetch_health(store: SharedStore | None = None, *, base_url: str | None = None) -> dict[str, Any]:
    url, _ = get_connection(store)
    if base_url:
        url = normalize_url(base_url)
    data = _json_or_raise(_send("GET", f"{url}/health", timeout=SERVICE.health_timeout_s))
    if not isinstance(data, dict) or "status" not in data:
        raise TransportError("Malformed response from polishing service.")
    return data


def fetch_models(store: SharedStore | None = None) -> list[dict[str, str]]:
    url, key = get_connection(store)
    data = _json_or_raise(
        _send("GET", f"{url}/models", headers=build_headers(key), timeout=SERVICE.models_timeout_s)
    )
    if not isinstance(data, list):
        raise TransportError("Malformed response from polishing service.")
    return [
        {"id": str(m.get("id", "")), "name": str(m.get("name", "")), "provider": str(m.get("provider", ""))}
        for m in data
        if isinstance(m, dict) and m.get("id")
    ]


def group_models_by_provider(models: list[dict[str, str]]) -> dict[str, list[dict[str, str]]]:
    """Group models under display labels, keeping first-seen label order."""
    groups: dict[str, list[dict[str, str]]] = {}
    for m in models:
        provider = m.get("provider", "")
        label = PROVIDER_LABELS.get(provider, provider)
        groups.setdefault(label, []).append(m)
    return groups


def fetch_rewrite(
    text: str,
    model_id: str,
    *,
    store: SharedStore | None = None,
    timeout_s: float = JOBS.request_timeout_s,
) -> JobResult:
    """POST the text for rewriting and return the parsed result.

    Blocks for as long as the service takes, bounded by ``timeout_s``.
    """
    url, key = get_connection(store)
    resp = _send(
        "POST",
        f"{url}/rewrite",
        json={"text": text, "model_id": model_id},
        headers=build_headers(key),
        timeout=timeout_s,
    )
    data = _json_or_raise(resp)
    if not isinstance(data, dict) or not isinstance(data.get("polished"), str):
        raise TransportError("Malformed response from polishing service.")
    try:
        return JobResult(
            polished=data["polished"],
            model=str(data.get("model") or model_id),
            elapsed_ms=int(data.get("elapsed_ms") or 0),
        )
    except (TypeError, ValueError) as exc:
        raise TransportError("Malformed response from polishing service.") from exc
