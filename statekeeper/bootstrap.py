"""Top-level sequencing: restore, start worker, sync periodically, shut down."""

import asyncio
import logging
import signal
from dataclasses import dataclass

from .config import Config
from .supervisor import ProcessSupervisor, WorkerSpawnError
from .sync import SyncController, SyncStatus

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class ShutdownContext:
    """What a termination signal handler needs: push first, then signal the worker."""

    supervisor: ProcessSupervisor
    controller: SyncController
    push_timeout: float | None = None

    async def shutdown(self, sig: signal.Signals) -> None:
        """Make one bounded push attempt, then forward ``sig`` to the worker."""
        logger.info(f"Shutting down ({sig.name})...")
        try:
            result = await asyncio.wait_for(self.controller.push(), timeout=self.push_timeout)
            if result.status == SyncStatus.FAILED:
                logger.warning(f"Final backup failed: {result.error}")
        except asyncio.TimeoutError:
            logger.error(f"Final backup timed out after {self.push_timeout}s")
        except Exception as e:
            logger.error(f"Final backup error: {e}", exc_info=True)
        finally:
            self.supervisor.terminate(sig)


class Bootstrapper:
    """Runs the supervisor lifecycle in strict order.

    1. restore state (failure is not fatal)
    2. start the worker
    3. start the periodic push loop
    4. install SIGINT/SIGTERM handlers
    then wait for the worker and return its exit code.
    """

    def __init__(
        self,
        config: Config,
        controller: SyncController,
        supervisor: ProcessSupervisor,
    ):
        self.config = config
        self.controller = controller
        self.supervisor = supervisor
        self.context = ShutdownContext(
            supervisor=supervisor,
            controller=controller,
            push_timeout=config.sync.shutdown_push_timeout_seconds,
        )
        self._stop_event = asyncio.Event()
        self._sync_task: asyncio.Task | None = None
        self._shutdown_task: asyncio.Task | None = None
        self._installed_signals: list[signal.Signals] = []

    @property
    def accepting_signals(self) -> bool:
        return bool(self._installed_signals)

    async def run(self) -> int:
        """Run until the worker exits.

        Returns:
            Host exit code: the worker's exit code, or 1 if it could not start.
        """
        await self.controller.restore()

        try:
            await self.supervisor.start()
        except WorkerSpawnError as e:
            logger.error(f"Failed to start worker: {e}")
            await self.controller.close()
            return 1

        self._sync_task = asyncio.create_task(
            self.controller.sync_loop(
                interval_seconds=self.config.sync.interval_seconds,
                stop_event=self._stop_event,
            )
        )
        self._install_signal_handlers()

        try:
            return await self.supervisor.wait()
        finally:
            self._remove_signal_handlers()
            await self._finish()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self._handle_signal, sig)
            self._installed_signals.append(sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_task is not None:
            # Already shutting down; do not make the user wait for the push again
            logger.info(f"Received {sig.name} again, forwarding to worker")
            self.supervisor.terminate(sig)
            return
        self._shutdown_task = asyncio.create_task(self.context.shutdown(sig))

    async def _finish(self) -> None:
        if self._shutdown_task is not None:
            await self._shutdown_task

        self._stop_event.set()
        if self._sync_task is not None:
            try:
                await asyncio.wait_for(
                    self._sync_task, timeout=self.config.sync.shutdown_push_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning("Periodic backup still running at exit, abandoning it")
            self._sync_task = None

        await self.controller.close()


async def run(config: Config) -> int:
    """Build the components from ``config`` and run until the worker exits.

    Args:
        config: Loaded configuration; ``config.worker.command`` must be set.

    Returns:
        Exit code for the host process.
    """
    controller = SyncController.from_config(config.sync)
    supervisor = ProcessSupervisor(config.worker)
    return await Bootstrapper(config, controller, supervisor).run()
