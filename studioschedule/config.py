"""Configuration loaded from environment variables.

Every setting can be overridden with a STUDIOSCHEDULE_ prefixed variable
or from a local .env file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


def default_workspace_path() -> Path:
    """
    Return the default path of the workspace file inside the package.

    A function instead of a constant so tests can point elsewhere.
    """
    base_dir = Path(__file__).resolve().parent
    return base_dir / "data" / "workspace.json"


class StudioScheduleConfig(BaseSettings):
    """Settings for the CLI and the store clients."""

    api_url: Optional[str] = Field(
        default=None,
        description="Base URL of the studio web app (e.g. http://localhost:3000)",
    )
    api_token: Optional[str] = Field(
        default=None,
        description="Value of the session_token cookie sent with every request",
    )
    workspace_path: Path = Field(
        default_factory=default_workspace_path,
        description="JSON file holding rooms, routines and both schedule snapshots",
    )
    store_path: Optional[Path] = Field(
        default=None,
        description="JSON file used as the schedule store when no api_url is set",
    )
    request_timeout: float = Field(default=10.0, description="HTTP timeout in seconds")
    max_workers: int = Field(default=8, description="Concurrent store requests per commit")

    log_json: bool = Field(default=False, description="Output logs as JSON lines")
    log_level: str = Field(default="WARNING", description="Log level name")

    model_config = {
        "env_prefix": "STUDIOSCHEDULE_",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def resolved_store_path(self) -> Path:
        if self.store_path is not None:
            return self.store_path
        return self.workspace_path.with_name("store.json")


_config: Optional[StudioScheduleConfig] = None


def get_config() -> StudioScheduleConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = StudioScheduleConfig()
    return _config


def reset_config() -> None:
    global _config
    _config = None
