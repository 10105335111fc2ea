"""statekeeper: supervise a worker process and back up its state file to GitHub."""

from .bootstrap import Bootstrapper, ShutdownContext, run
from .config import Config, ConfigError, SyncConfig, WorkerConfig, load_config
from .local_store import LocalStateStore
from .supervisor import ProcessSupervisor, WorkerSpawnError, WorkerState
from .sync import SyncController, SyncResult, SyncStatus

__version__ = "0.1.0"

__all__ = [
    "Bootstrapper",
    "Config",
    "ConfigError",
    "LocalStateStore",
    "ProcessSupervisor",
    "ShutdownContext",
    "SyncConfig",
    "SyncController",
    "SyncResult",
    "SyncStatus",
    "WorkerConfig",
    "WorkerSpawnError",
    "WorkerState",
    "load_config",
    "run",
]
