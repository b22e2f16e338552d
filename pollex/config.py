# pollex/config.py

import os
from dataclasses import dataclass, field

# --- Base paths ---
# Project root can be overridden if needed (e.g. for tests or deployment)
BASE_DIR = os.path.abspath(os.getenv("POLLEX_BASE_DIR", os.path.join(os.path.dirname(__file__), "..")))


# ---------------------------
# Structured configuration
# ---------------------------

@dataclass(frozen=True)
class PathsConfig:
    """Filesystem configuration.

    Values can be overridden via environment variables:
    - POLLEX_STATE_DIR
    """

    state_dir: str = field(
        default_factory=lambda: os.getenv(
            "POLLEX_STATE_DIR", os.path.join(BASE_DIR, "pollex_state")
        )
    )


@dataclass(frozen=True)
class JobConfig:
    """Limits and timings for the single-flight rewrite job.

    ``stale_timeout_ms`` and ``request_timeout_s`` were tuned against local
    inference backends; remote backends may need larger values.
    """

    max_text_length: int = int(os.getenv("POLLEX_MAX_TEXT_LENGTH", "1500"))
    max_history: int = 7
    stale_timeout_ms: int = int(os.getenv("POLLEX_STALE_TIMEOUT_MS", "150000"))
    request_timeout_s: float = float(os.getenv("POLLEX_REQUEST_TIMEOUT_S", "70"))
    tick_interval_s: float = 1.0
    error_max_length: int = 200
    # Change log is truncated on coordinator start once it grows past this size.
    change_log_max_bytes: int = 1_000_000


@dataclass(frozen=True)
class ProgressConfig:
    """Heuristic used only for the percentage indicator.

    estimated_seconds = max(1, round(len(text) * per_char_ms * safety_factor / 1000))
    """

    per_char_ms: float = float(os.getenv("POLLEX_PER_CHAR_MS", "40"))
    safety_factor: float = float(os.getenv("POLLEX_SAFETY_FACTOR", "1.5"))
    max_percent: int = 99


@dataclass(frozen=True)
class DraftConfig:
    debounce_ms: int = 500


@dataclass(frozen=True)
class ServiceConfig:
    """Remote polishing service defaults (overridden by the stored settings)."""

    default_endpoint_url: str = field(
        default_factory=lambda: os.getenv("POLLEX_ENDPOINT_URL", "http://localhost:8090/api")
    )
    api_key_header: str = "X-API-Key"
    health_timeout_s: float = 5.0
    models_timeout_s: float = 10.0


@dataclass(frozen=True)
class CoordinatorConfig:
    """Where the long-lived coordinator process listens for START/CANCEL."""

    host: str = field(default_factory=lambda: os.getenv("POLLEX_COORDINATOR_HOST", "127.0.0.1"))
    port: int = int(os.getenv("POLLEX_COORDINATOR_PORT", "8091"))
    request_timeout_s: float = 5.0

    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


# Instantiate structured configs
PATHS = PathsConfig()
JOBS = JobConfig()
PROGRESS = ProgressConfig()
DRAFT = DraftConfig()
SERVICE = ServiceConfig()
COORDINATOR = CoordinatorConfig()


# --- Backwards-compatible flat aliases ---
MAX_TEXT_LENGTH = JOBS.max_text_length
MAX_HISTORY = JOBS.max_history
TICK_INTERVAL_S = JOBS.tick_interval_s
ERROR_MAX_LENGTH = JOBS.error_max_length
DRAFT_DEBOUNCE_MS = DRAFT.debounce_ms
API_KEY_HEADER = SERVICE.api_key_header


def get_coordinator_url() -> str:
    return COORDINATOR.base_url()
