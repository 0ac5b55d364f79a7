"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from conversation_sync.logging import DEFAULT_LOG_DIR


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:3001/api/v1"
    token: str = ""
    timeout_seconds: float = 10.0


@dataclass
class SyncConfig:
    local_user_id: str = ""
    # Delay before the safety-net refresh that follows a conversation:created event
    refresh_delay_seconds: float = 0.5
    # Periodic fallback refresh; 0 disables it
    refresh_interval_seconds: float = 60.0
    # Bulk refreshes an unconfirmed placeholder may be missing from before it is pruned
    placeholder_grace_cycles: int = 1


@dataclass
class Config:
    api: ApiConfig = field(default_factory=ApiConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    log_dir: Path = field(default_factory=lambda: DEFAULT_LOG_DIR)


def expand_env_var(value: object) -> str:
    """Resolve a whole-value ${VAR} reference; unset variables are left as written."""
    text = str(value)
    if len(text) > 3 and text[:2] == "${" and text[-1] == "}":
        return os.environ.get(text[2:-1], text)
    return text


def expand_path(path_str: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def config_search_paths() -> list[Path]:
    return [
        Path.cwd() / "config.yaml",
        Path.home() / ".config" / "conversation-sync" / "config.yaml",
        Path("/etc/conversation-sync/config.yaml"),
    ]


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML, falling back to defaults when no file exists.

    Without an explicit path the first existing file of config_search_paths()
    is used.
    """
    if config_path is None:
        config_path = next((p for p in config_search_paths() if p.exists()), None)

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    api_data = data.get("api", {})
    api = ApiConfig(
        base_url=expand_env_var(api_data.get("base_url", "http://localhost:3001/api/v1")),
        token=expand_env_var(api_data.get("token", "")),
        timeout_seconds=float(api_data.get("timeout_seconds", 10.0)),
    )

    sync_data = data.get("sync", {})
    sync = SyncConfig(
        local_user_id=expand_env_var(sync_data.get("local_user_id", "")),
        refresh_delay_seconds=float(sync_data.get("refresh_delay_seconds", 0.5)),
        refresh_interval_seconds=float(sync_data.get("refresh_interval_seconds", 60.0)),
        placeholder_grace_cycles=int(sync_data.get("placeholder_grace_cycles", 1)),
    )

    log_dir = data.get("log_dir")

    return Config(
        api=api,
        sync=sync,
        log_dir=expand_path(log_dir) if log_dir else DEFAULT_LOG_DIR,
    )
