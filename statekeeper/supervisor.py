"""Worker process lifecycle."""

import asyncio
import logging
import signal
from enum import Enum

from .config import WorkerConfig

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"


class WorkerSpawnError(RuntimeError):
    """The worker process could not be started."""


class ProcessSupervisor:
    """Starts one worker process, waits for it and relays signals to it.

    The worker inherits stdin/stdout/stderr; nothing is captured.
    """

    def __init__(self, config: WorkerConfig):
        if not config.command:
            raise ValueError("worker command is required")
        self.config = config
        self.state = WorkerState.NOT_STARTED
        self.exit_code: int | None = None
        self.signal: signal.Signals | None = None
        self._process: asyncio.subprocess.Process | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self.state == WorkerState.RUNNING

    async def start(self) -> asyncio.subprocess.Process:
        """Spawn the worker.

        Raises:
            WorkerSpawnError: If the executable cannot be started.
            RuntimeError: If a worker was already started.
        """
        if self.state != WorkerState.NOT_STARTED:
            raise RuntimeError(f"worker already started (state={self.state.value})")

        command = self.config.command
        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                cwd=self.config.cwd,
            )
        except OSError as e:
            logger.error(f"Worker error: {e}")
            raise WorkerSpawnError(f"cannot start {command[0]!r}: {e}") from e

        self.state = WorkerState.RUNNING
        logger.info(f"Worker started (pid={self._process.pid}): {' '.join(command)}")
        return self._process

    async def wait(self) -> int:
        """Wait for the worker to exit.

        Returns:
            Exit code for the host process: the worker's own code, or 0
            when the worker was killed by a signal (no exit code of its own).
        """
        if self._process is None:
            raise RuntimeError("worker not started")

        returncode = await self._process.wait()

        if returncode < 0:
            signum = -returncode
            self.state = WorkerState.KILLED
            self.exit_code = 0
            try:
                self.signal = signal.Signals(signum)
                name = self.signal.name
            except ValueError:
                name = f"signal {signum}"
            logger.warning(f"Worker killed by {name}")
        else:
            self.state = WorkerState.EXITED
            self.exit_code = returncode
            if returncode == 0:
                logger.info("Worker stopped.")
            else:
                logger.error(f"Worker exited with code {returncode}")

        return self.exit_code

    def terminate(self, sig: int = signal.SIGTERM) -> bool:
        """Send ``sig`` to the worker without waiting for it to exit.

        Returns:
            True if the signal was delivered.
        """
        if self._process is None or self._process.returncode is not None:
            logger.debug("No running worker to signal")
            return False
        try:
            self._process.send_signal(sig)
        except ProcessLookupError:
            return False
        logger.info(f"Sent {signal.Signals(sig).name} to worker (pid={self._process.pid})")
        return True
