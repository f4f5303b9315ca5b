"""Shared nodeflow configuration utilities.

Centralises reading of ~/.nodeflow/configuration.json and the environment so
that the CLI, the run server and library callers resolve settings the same way.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MODEL = "gemini/gemini-2.0-flash"
DEFAULT_JOB_BACKEND_URL = "https://api.trigger.dev"
DEFAULT_JOB_TIMEOUT_SECONDS = 10.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NODEFLOW_CONFIG_FILE = Path.home() / ".nodeflow" / "configuration.json"


def get_config() -> dict[str, Any]:
    """Load configuration from ~/.nodeflow/configuration.json."""
    if not NODEFLOW_CONFIG_FILE.exists():
        return {}
    try:
        with open(NODEFLOW_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_default_model() -> str:
    """Return the LLM model used when a node does not choose one."""
    llm = get_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return DEFAULT_MODEL


def get_llm_api_key() -> str | None:
    """Return the LLM API key from the env var named in configuration."""
    llm = get_config().get("llm", {})
    return os.environ.get(llm.get("api_key_env_var", "GEMINI_API_KEY"))


def get_job_timeout() -> float:
    return float(get_config().get("jobs", {}).get("timeout_seconds", DEFAULT_JOB_TIMEOUT_SECONDS))


def get_poll_interval() -> float:
    jobs = get_config().get("jobs", {})
    return float(jobs.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS))


def get_job_backend_url() -> str:
    return os.environ.get("TRIGGER_API_URL") or get_config().get("jobs", {}).get(
        "backend_url", DEFAULT_JOB_BACKEND_URL
    )


# ---------------------------------------------------------------------------
# EngineConfig – shared by CLI, server and library callers
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from ~/.nodeflow/configuration.json and the environment."""

    default_model: str = field(default_factory=get_default_model)
    llm_api_key: str | None = field(default_factory=get_llm_api_key)
    job_timeout_seconds: float = field(default_factory=get_job_timeout)
    poll_interval_seconds: float = field(default_factory=get_poll_interval)
    skip_job_backend: bool = field(default_factory=lambda: _env_flag("SKIP_JOB_BACKEND"))
    job_backend_url: str = field(default_factory=get_job_backend_url)
    job_backend_key: str | None = field(
        default_factory=lambda: os.environ.get("TRIGGER_SECRET_KEY")
    )
    transloadit_key: str | None = field(
        default_factory=lambda: os.environ.get("TRANSLOADIT_AUTH_KEY")
    )
    transloadit_secret: str | None = field(
        default_factory=lambda: os.environ.get("TRANSLOADIT_AUTH_SECRET")
    )
    storage_path: Path = field(
        default_factory=lambda: Path(
            os.environ.get("NODEFLOW_STORAGE", Path.home() / ".nodeflow" / "storage")
        )
    )

    @property
    def job_backend_enabled(self) -> bool:
        """The async backend is used only when configured and not explicitly skipped."""
        return bool(self.job_backend_key) and not self.skip_job_backend
