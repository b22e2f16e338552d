from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal


class RecordKind(str, Enum):
    """Keys of the shared store; each one has its own schema."""

    JOB = "job"
    HISTORY = "history"
    DRAFT = "draft"
    ENDPOINT_URL = "endpointUrl"
    API_KEY = "apiKey"


JobState = Literal["running", "completed", "failed", "cancelled"]

TERMINAL_STATES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class JobResult:
    polished: str
    model: str
    elapsed_ms: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "JobResult":
        return cls(
            polished=str(d.get("polished", "")),
            model=str(d.get("model", "")),
            elapsed_ms=int(d.get("elapsed_ms") or 0),
        )


@dataclass(frozen=True)
class JobRecord:
    """Durable state of the single active (or most recent) rewrite job.

    ``result`` is set only when completed, ``error`` only when failed.
    ``job_id``/``started_at`` identify the job across all of its states so
    observers can drop events that belong to an older job.
    """

    status: JobState
    input_text: str
    model_id: str
    started_at: int
    job_id: str = field(default_factory=new_job_id)
    result: JobResult | None = None
    error: str | None = None
    cancel_requested: bool = False

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def same_job(self, other: "JobRecord | None") -> bool:
        if other is None:
            return False
        return self.job_id == other.job_id and self.started_at == other.started_at

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "status": self.status,
            "inputText": self.input_text,
            "modelId": self.model_id,
            "startedAt": self.started_at,
            "jobId": self.job_id,
        }
        if self.cancel_requested:
            d["cancelRequested"] = True
        if self.status == "completed" and self.result is not None:
            d["result"] = self.result.to_dict()
        if self.status == "failed" and self.error is not None:
            d["error"] = self.error
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "JobRecord":
        status = d.get("status")
        if status not in {"running", *TERMINAL_STATES}:
            raise ValueError(f"Unknown job status: {status!r}")
        raw_result = d.get("result")
        return cls(
            status=status,
            input_text=str(d.get("inputText") or ""),
            model_id=str(d.get("modelId") or ""),
            started_at=int(d.get("startedAt") or 0),
            job_id=str(d.get("jobId") or ""),
            result=JobResult.from_dict(raw_result) if isinstance(raw_result, dict) else None,
            error=d.get("error"),
            cancel_requested=bool(d.get("cancelRequested", False)),
        )


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    input: str
    output: str
    model: str
    elapsed_ms: int
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=str(d.get("id", "")),
            input=str(d.get("input", "")),
            output=str(d.get("output", "")),
            model=str(d.get("model", "")),
            elapsed_ms=int(d.get("elapsed_ms") or 0),
            timestamp=int(d.get("timestamp") or 0),
        )


def parse_job(value: Any) -> JobRecord | None:
    """Decode a stored ``job`` value; malformed payloads read as idle."""
    if not isinstance(value, dict):
        return None
    try:
        return JobRecord.from_dict(value)
    except (TypeError, ValueError):
        return None


def parse_history(value: Any) -> list[HistoryEntry]:
    if not isinstance(value, list):
        return []
    return [HistoryEntry.from_dict(v) for v in value if isinstance(v, dict)]


def parse_draft(value: Any) -> str:
    return value if isinstance(value, str) else ""
