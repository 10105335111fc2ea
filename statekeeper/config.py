"""Configuration loading for statekeeper."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_STATE_FILE = "maindb.json"
DEFAULT_SYNC_INTERVAL_SECONDS = 5 * 60
DEFAULT_WORKER_COMMAND = ["node", "server/init.js"]


class ConfigError(ValueError):
    """Raised when configuration is present but unusable."""


@dataclass
class SyncConfig:
    """Configuration for GitHub state synchronization."""

    token: str | None = None
    repo: str | None = None  # "owner/name"
    remote_path: str = ""  # defaults to the state file's name
    branch: str | None = None
    state_path: str = DEFAULT_STATE_FILE
    interval_seconds: int = DEFAULT_SYNC_INTERVAL_SECONDS
    api_base: str = "https://api.github.com"
    timeout_seconds: float = 30.0
    shutdown_push_timeout_seconds: float = 20.0
    commit_message_prefix: str = "statekeeper auto-backup"

    @property
    def enabled(self) -> bool:
        return bool(self.token) and bool(self.repo)

    @property
    def resolved_remote_path(self) -> str:
        return (self.remote_path or Path(self.state_path).name).lstrip("/")


@dataclass
class WorkerConfig:
    command: list[str] = field(default_factory=list)
    cwd: str | None = None


@dataclass
class LoggingConfig:
    level: str | None = None  # "warning", "info" or "debug"
    json: bool = False


@dataclass
class Config:
    sync: SyncConfig = field(default_factory=SyncConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with STATEKEEPER_ prefix."""
    value = os.environ.get(f"STATEKEEPER_{key}")
    return value if value else default


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Unprefixed names kept for existing deployments
    if token := _get_env("TOKEN", os.environ.get("GH_TOKEN")):
        config.sync.token = token
    if repo := _get_env("REPO", os.environ.get("GH_REPO")):
        config.sync.repo = repo

    if remote_path := _get_env("REMOTE_PATH"):
        config.sync.remote_path = remote_path
    if branch := _get_env("BRANCH"):
        config.sync.branch = branch
    if state_path := _get_env("STATE_PATH"):
        config.sync.state_path = state_path
    if api_base := _get_env("API_BASE"):
        config.sync.api_base = api_base

    if log_level := _get_env("LOG_LEVEL"):
        config.logging.level = log_level.lower()
    if log_json := _get_env("LOG_JSON"):
        config.logging.json = log_json.lower() in ("true", "1", "yes")

    return config


def _parse_command(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list):
        return [str(part) for part in value]
    raise ConfigError(f"worker.command must be a string or list, got {type(value).__name__}")


def _parse_sync(sync_data: Any, defaults: SyncConfig, path: Path) -> SyncConfig:
    if not isinstance(sync_data, dict):
        raise ConfigError(f"{path}: sync must be a mapping")
    try:
        return SyncConfig(
            token=sync_data.get("token", defaults.token),
            repo=sync_data.get("repo", defaults.repo),
            remote_path=sync_data.get("remote_path", defaults.remote_path),
            branch=sync_data.get("branch", defaults.branch),
            state_path=sync_data.get("state_path", defaults.state_path),
            interval_seconds=int(
                sync_data.get("interval_seconds", defaults.interval_seconds)
            ),
            api_base=sync_data.get("api_base", defaults.api_base),
            timeout_seconds=float(
                sync_data.get("timeout_seconds", defaults.timeout_seconds)
            ),
            shutdown_push_timeout_seconds=float(
                sync_data.get(
                    "shutdown_push_timeout_seconds",
                    defaults.shutdown_push_timeout_seconds,
                )
            ),
            commit_message_prefix=sync_data.get(
                "commit_message_prefix", defaults.commit_message_prefix
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{path}: invalid sync value: {e}") from e


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None or missing, defaults are used.

    Returns:
        Loaded Config object.

    Raises:
        ConfigError: If the file is not valid YAML or holds unusable values.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"{path}: invalid YAML: {e}") from e

            if not isinstance(data, dict):
                raise ConfigError(f"{path}: top level must be a mapping")

            if "sync" in data:
                config.sync = _parse_sync(data["sync"] or {}, config.sync, path)

            if "worker" in data:
                worker_data = data["worker"] or {}
                if not isinstance(worker_data, dict):
                    raise ConfigError(f"{path}: worker must be a mapping")
                config.worker = WorkerConfig(
                    command=_parse_command(worker_data.get("command")),
                    cwd=worker_data.get("cwd"),
                )

            if "logging" in data:
                log_data = data["logging"] or {}
                if not isinstance(log_data, dict):
                    raise ConfigError(f"{path}: logging must be a mapping")
                config.logging = LoggingConfig(
                    level=log_data.get("level"),
                    json=bool(log_data.get("json", False)),
                )

    config = _apply_env_overrides(config)

    if config.sync.interval_seconds <= 0:
        raise ConfigError("sync.interval_seconds must be > 0")

    return config
