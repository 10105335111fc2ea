"""Restore and push of the local state file against the remote copy.

Every remote or disk failure is caught here and reported as a SyncResult;
nothing raised by a sync operation reaches the supervisor.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..config import SyncConfig
from ..local_store import LocalStateStore
from ..remote import GitHubContentsClient, RemoteNotFoundError, RemoteStateError

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Status of a sync operation."""

    OK = "ok"
    SKIPPED = "skipped"  # Sync disabled or nothing to push
    FAILED = "failed"


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    error: str | None = None
    sha: str | None = None
    timestamp: datetime | None = None


class SyncController:
    """Keeps the local state file and its remote copy in step.

    Supports:
    - restore: overwrite the local file with the remote copy (before the worker starts)
    - push: upload the local file, re-reading the remote sha right before the write
    - sync_loop: periodic push until a stop event is set

    Pushes are single-flight: a push requested while another is running waits
    for it to finish and then runs on its own.
    """

    def __init__(
        self,
        config: SyncConfig,
        local: LocalStateStore,
        remote: GitHubContentsClient | None = None,
    ):
        """Initialize the controller.

        Args:
            config: Sync configuration.
            local: Store for the local state file.
            remote: Remote client; built from ``config`` when sync is enabled and
                none is given.
        """
        self.config = config
        self.local = local
        if remote is None and config.enabled:
            remote = GitHubContentsClient(
                repo=config.repo,
                path=config.resolved_remote_path,
                token=config.token,
                branch=config.branch,
                api_base=config.api_base,
                timeout=config.timeout_seconds,
            )
        self.remote = remote
        self._push_lock = asyncio.Lock()
        self._last_push: SyncResult | None = None
        self._last_restore: SyncResult | None = None

    @classmethod
    def from_config(cls, config: SyncConfig) -> "SyncController":
        return cls(config, LocalStateStore(config.state_path))

    @property
    def enabled(self) -> bool:
        return self.config.enabled and self.remote is not None

    async def close(self) -> None:
        if self.remote is not None:
            await self.remote.close()

    async def restore(self) -> SyncResult:
        """Replace the local state file with the remote copy.

        Returns:
            SyncResult; FAILED means the worker starts with whatever is on disk.
        """
        if not self.enabled:
            logger.warning("Sync token or repository not set. Skipping restore.")
            self._last_restore = SyncResult(status=SyncStatus.SKIPPED)
            return self._last_restore

        logger.info(f"Restoring {self.local.path} from {self.config.repo}...")
        try:
            blob = await self.remote.fetch()
            self.local.write(blob.content)
        except RemoteNotFoundError:
            logger.info("No remote state found. Starting fresh.")
            result = SyncResult(status=SyncStatus.FAILED, error="not found")
        except (RemoteStateError, OSError) as e:
            logger.warning(f"Restore failed ({e}). Starting fresh.")
            result = SyncResult(status=SyncStatus.FAILED, error=str(e))
        else:
            logger.info(f"State restored ({len(blob.content)} bytes).")
            result = SyncResult(
                status=SyncStatus.OK,
                sha=blob.sha,
                timestamp=datetime.now(timezone.utc),
            )

        self._last_restore = result
        return result

    async def push(self) -> SyncResult:
        """Upload the local state file.

        Returns:
            SyncResult; never raises for remote or disk errors.
        """
        if not self.enabled:
            return SyncResult(status=SyncStatus.SKIPPED, error="sync disabled")
        if not self.local.exists():
            logger.debug(f"{self.local.path} does not exist, nothing to push")
            return SyncResult(status=SyncStatus.SKIPPED, error="no local state")

        async with self._push_lock:
            result = await self._push_locked()

        self._last_push = result
        return result

    async def _push_locked(self) -> SyncResult:
        try:
            content = self.local.read()
        except OSError as e:
            logger.error(f"Backup failed: cannot read {self.local.path}: {e}")
            return SyncResult(status=SyncStatus.FAILED, error=str(e))

        # Current sha is needed for an update; a missing file means create
        sha = ""
        try:
            blob = await self.remote.fetch()
        except RemoteNotFoundError:
            logger.debug("Remote state does not exist yet, creating it")
        except RemoteStateError as e:
            logger.debug(f"Could not read remote sha ({e}), attempting create")
        else:
            if blob.content == content:
                logger.debug("Remote state already up to date")
                return SyncResult(
                    status=SyncStatus.OK,
                    sha=blob.sha,
                    timestamp=datetime.now(timezone.utc),
                )
            sha = blob.sha

        now = datetime.now(timezone.utc)
        message = f"{self.config.commit_message_prefix} {now.isoformat()}"
        try:
            new_sha = await self.remote.write(content, sha, message)
        except RemoteStateError as e:
            logger.error(f"Backup failed: {e}")
            return SyncResult(status=SyncStatus.FAILED, error=str(e))

        logger.info(f"State backed up to {self.config.repo}.")
        return SyncResult(status=SyncStatus.OK, sha=new_sha, timestamp=now)

    async def sync_loop(
        self,
        interval_seconds: float | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Push every ``interval_seconds`` until ``stop_event`` is set.

        The first push happens one interval after the loop starts.

        Args:
            interval_seconds: Seconds between pushes (config value if None).
            stop_event: Event to signal loop should stop.
        """
        interval = interval_seconds or self.config.interval_seconds
        logger.info(f"Starting sync loop with {interval}s interval")

        while True:
            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(interval)

            try:
                result = await self.push()
                logger.debug(f"Periodic sync: {result.status.value}")
            except Exception as e:
                logger.error(f"Sync loop error: {e}", exc_info=True)

        logger.info("Sync loop stopped")

    @property
    def last_push(self) -> SyncResult | None:
        return self._last_push

    def get_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary describing configuration and the last results.
        """

        def _fmt(result: SyncResult | None) -> dict[str, Any] | None:
            if result is None:
                return None
            return {
                "status": result.status.value,
                "error": result.error,
                "sha": result.sha,
                "timestamp": result.timestamp.isoformat() if result.timestamp else None,
            }

        return {
            "enabled": self.enabled,
            "repo": self.config.repo,
            "remote_path": self.config.resolved_remote_path,
            "branch": self.config.branch,
            "state_path": str(self.local.path),
            "local_exists": self.local.exists(),
            "interval_seconds": self.config.interval_seconds,
            "last_restore": _fmt(self._last_restore),
            "last_push": _fmt(self._last_push),
        }
