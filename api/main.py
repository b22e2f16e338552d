from __future__ import annotations

from typing import Any

from fastapi import Depends, FastAPI
from pydantic import BaseModel, Field

from pollex import __version__
from pollex.jobs.coordinator import JobCoordinator
from pollex.jobs.store import SharedStore

app = FastAPI(
    title="Pollex coordinator",
    description="Message endpoint of the long-lived job coordinator (START / CANCEL).",
    version=__version__,
)

_coordinator: JobCoordinator | None = None


def set_coordinator(coordinator: JobCoordinator | None) -> None:
    global _coordinator
    _coordinator = coordinator


def get_coordinator() -> JobCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = JobCoordinator(SharedStore())
        _coordinator.recover()
    return _coordinator


# Pydantic model for one request of the view <-> coordinator protocol
class Message(BaseModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


@app.post("/messages", summary="Send START or CANCEL", response_description="{ok, error?}")
def messages(message: Message, coordinator: JobCoordinator = Depends(get_coordinator)) -> dict[str, Any]:
    """
    Accepts one protocol message and answers once the request is accepted or
    rejected. Job outcomes are never returned here; they are written to the
    shared store.
    """
    return coordinator.handle_message({"type": message.type, "payload": message.payload})


@app.get("/job", summary="Current job record")
def job(coordinator: JobCoordinator = Depends(get_coordinator)) -> dict[str, Any] | None:
    record = coordinator.current()
    return record.to_dict() if record is not None else None


@app.get("/health", summary="Health check", response_description="Coordinator health status")
def health_check(coordinator: JobCoordinator = Depends(get_coordinator)) -> dict[str, Any]:
    record = coordinator.current()
    return {
        "status": "ok",
        "version": __version__,
        "job": record.status if record is not None else "idle",
    }

# To run the coordinator:
# python -m pollex.jobs.run --port 8091
