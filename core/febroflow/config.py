"""Shared febroflow configuration.

Centralises reading of ~/.febroflow/configuration.json so that the engine,
the CLI and embedding hosts share one implementation. The file path can be
overridden with the FEBROFLOW_CONFIG environment variable.

Example file:

    {
      "engine": {"max_retries": 2, "strict_entry_resolution": true},
      "storage_path": "/var/lib/febroflow"
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FEBROFLOW_HOME = Path.home() / ".febroflow"
FEBROFLOW_CONFIG_FILE = FEBROFLOW_HOME / "configuration.json"


def get_config_path() -> Path:
    override = os.environ.get("FEBROFLOW_CONFIG")
    return Path(override) if override else FEBROFLOW_CONFIG_FILE


def get_febroflow_config() -> dict[str, Any]:
    """Load configuration from the config file (empty dict if absent or unreadable)."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _engine_setting(key: str, default: Any) -> Any:
    return get_febroflow_config().get("engine", {}).get(key, default)


def get_storage_path() -> Path:
    configured = get_febroflow_config().get("storage_path")
    return Path(configured).expanduser() if configured else FEBROFLOW_HOME / "storage"


def get_file_base_dir() -> Path:
    configured = get_febroflow_config().get("file_base_dir")
    return Path(configured).expanduser() if configured else FEBROFLOW_HOME / "files"


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Execution engine configuration loaded from the febroflow config file."""

    max_retries: int = field(default_factory=lambda: _engine_setting("max_retries", 3))
    retry_backoff_base: float = field(
        default_factory=lambda: _engine_setting("retry_backoff_base", 0.5)
    )
    retry_backoff_max: float = field(
        default_factory=lambda: _engine_setting("retry_backoff_max", 10.0)
    )
    max_steps: int = field(default_factory=lambda: _engine_setting("max_steps", 1000))
    strict_entry_resolution: bool = field(
        default_factory=lambda: _engine_setting("strict_entry_resolution", False)
    )
    http_timeout: float = field(default_factory=lambda: _engine_setting("http_timeout", 30.0))
    max_concurrent_executions: int = field(
        default_factory=lambda: _engine_setting("max_concurrent_executions", 50)
    )
    storage_path: Path = field(default_factory=get_storage_path)
    file_base_dir: Path = field(default_factory=get_file_base_dir)

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (0-based)."""
        return min(self.retry_backoff_base * (2**retry_number), self.retry_backoff_max)
