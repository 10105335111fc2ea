"""Tests for startup sequencing and signal-driven shutdown."""

import asyncio
import os
import signal
import sys
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from statekeeper.bootstrap import Bootstrapper, ShutdownContext, run
from statekeeper.config import Config, SyncConfig, WorkerConfig
from statekeeper.local_store import LocalStateStore
from statekeeper.supervisor import ProcessSupervisor
from statekeeper.sync import SyncController, SyncResult, SyncStatus


def _controller_double(events: list | None = None) -> MagicMock:
    """Create a SyncController stand-in recording call order."""
    events = events if events is not None else []
    controller = MagicMock(spec=SyncController)

    async def restore():
        events.append("restore")
        return SyncResult(status=SyncStatus.SKIPPED)

    async def push():
        events.append("push")
        return SyncResult(status=SyncStatus.OK)

    async def sync_loop(interval_seconds=None, stop_event=None):
        events.append("sync_loop")
        if stop_event is not None:
            await stop_event.wait()

    controller.restore = AsyncMock(side_effect=restore)
    controller.push = AsyncMock(side_effect=push)
    controller.sync_loop = AsyncMock(side_effect=sync_loop)
    controller.close = AsyncMock()
    return controller


def _python_worker(code: str, cwd=None) -> WorkerConfig:
    return WorkerConfig(command=[sys.executable, "-c", code], cwd=str(cwd) if cwd else None)


class TestShutdownContext:
    """Tests for the push-then-signal shutdown sequence."""

    @pytest.mark.asyncio
    async def test_push_completes_before_terminate(self):
        """Test the final push finishes before the worker is signaled."""
        timeline: dict[str, float] = {}

        async def slow_push():
            await asyncio.sleep(0.05)
            timeline["push_done"] = time.monotonic()
            return SyncResult(status=SyncStatus.OK)

        controller = MagicMock()
        controller.push = AsyncMock(side_effect=slow_push)
        supervisor = MagicMock()
        supervisor.terminate = MagicMock(
            side_effect=lambda sig: timeline.setdefault("terminate", time.monotonic())
        )

        await ShutdownContext(supervisor, controller, push_timeout=5).shutdown(signal.SIGINT)

        controller.push.assert_awaited_once()
        supervisor.terminate.assert_called_once_with(signal.SIGINT)
        assert timeline["push_done"] <= timeline["terminate"]

    @pytest.mark.asyncio
    async def test_terminate_after_failed_push(self):
        """Test a FAILED push still leads to terminate."""
        controller = MagicMock()
        controller.push = AsyncMock(return_value=SyncResult(status=SyncStatus.FAILED, error="409"))
        supervisor = MagicMock()

        await ShutdownContext(supervisor, controller).shutdown(signal.SIGTERM)

        supervisor.terminate.assert_called_once_with(signal.SIGTERM)

    @pytest.mark.asyncio
    async def test_terminate_after_push_exception(self):
        """Test an unexpected exception from push still leads to terminate."""
        controller = MagicMock()
        controller.push = AsyncMock(side_effect=RuntimeError("boom"))
        supervisor = MagicMock()

        await ShutdownContext(supervisor, controller).shutdown(signal.SIGTERM)

        supervisor.terminate.assert_called_once_with(signal.SIGTERM)

    @pytest.mark.asyncio
    async def test_push_is_bounded_by_timeout(self):
        """Test a hanging push does not block the worker's termination."""

        async def hanging_push():
            await asyncio.sleep(30)

        controller = MagicMock()
        controller.push = AsyncMock(side_effect=hanging_push)
        supervisor = MagicMock()

        await asyncio.wait_for(
            ShutdownContext(supervisor, controller, push_timeout=0.05).shutdown(signal.SIGINT),
            timeout=5,
        )

        supervisor.terminate.assert_called_once_with(signal.SIGINT)


class TestBootstrapSequence:
    """Tests for Bootstrapper.run() ordering and exit codes."""

    @pytest.mark.asyncio
    async def test_restore_start_then_sync_loop(self):
        """Test steps run strictly in order and the exit code is returned."""
        events: list[str] = []
        controller = _controller_double(events)
        supervisor = MagicMock(spec=ProcessSupervisor)
        supervisor.start = AsyncMock(side_effect=lambda: events.append("start"))

        async def wait():
            await asyncio.sleep(0.05)
            events.append("exit")
            return 3

        supervisor.wait = AsyncMock(side_effect=wait)

        code = await Bootstrapper(Config(), controller, supervisor).run()

        assert code == 3
        assert events == ["restore", "start", "sync_loop", "exit"]
        controller.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_spawn_failure_exits_1_without_push(self, tmp_path):
        """Test a missing worker binary gives exit code 1 and no push."""
        controller = _controller_double()
        supervisor = ProcessSupervisor(WorkerConfig(command=[str(tmp_path / "missing")]))

        code = await Bootstrapper(Config(), controller, supervisor).run()

        assert code == 1
        controller.restore.assert_awaited_once()
        controller.push.assert_not_awaited()
        controller.sync_loop.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("worker_code", [0, 3])
    async def test_worker_exit_code_becomes_host_exit_code(self, tmp_path, worker_code):
        """Test run() returns whatever the worker exited with."""
        config = Config(
            sync=SyncConfig(state_path=str(tmp_path / "maindb.json")),
            worker=_python_worker(f"import sys; sys.exit({worker_code})"),
        )

        assert await run(config) == worker_code

    @pytest.mark.asyncio
    async def test_signal_handlers_removed_after_exit(self):
        """Test handlers are only installed while the worker runs."""
        controller = _controller_double()
        supervisor = ProcessSupervisor(_python_worker("pass"))
        boot = Bootstrapper(Config(), controller, supervisor)

        await boot.run()

        assert boot.accepting_signals is False

    @pytest.mark.asyncio
    async def test_restored_state_visible_to_worker(self, tmp_path, fake_github, make_client):
        """Test the worker starts only after the restore wrote the file."""
        fake_github.seed("maindb.json", b'{"restored": true}')
        state_path = tmp_path / "maindb.json"
        sync_config = SyncConfig(token="test-token", repo="owner/repo", state_path=str(state_path))
        check = (
            "import sys\n"
            "data = open('maindb.json', 'rb').read()\n"
            "sys.exit(0 if data == b'{\"restored\": true}' else 4)\n"
        )
        config = Config(sync=sync_config, worker=_python_worker(check, cwd=tmp_path))
        controller = SyncController(sync_config, LocalStateStore(state_path), remote=make_client())

        code = await Bootstrapper(config, controller, ProcessSupervisor(config.worker)).run()

        assert code == 0


class TestSignalHandling:
    """Tests for SIGINT/SIGTERM delivered to the host process."""

    @pytest.mark.asyncio
    async def test_sigterm_pushes_then_forwards(self):
        """Test a real SIGTERM runs the final push and then stops the worker."""
        events: list[str] = []
        controller = _controller_double(events)
        supervisor = ProcessSupervisor(_python_worker("import time; time.sleep(30)"))
        original_terminate = supervisor.terminate

        def recording_terminate(sig):
            events.append(f"terminate:{signal.Signals(sig).name}")
            return original_terminate(sig)

        supervisor.terminate = recording_terminate
        boot = Bootstrapper(Config(), controller, supervisor)

        async def send_signal():
            while not boot.accepting_signals:
                await asyncio.sleep(0.01)
            os.kill(os.getpid(), signal.SIGTERM)

        sender = asyncio.create_task(send_signal())
        code = await asyncio.wait_for(boot.run(), timeout=15)
        await sender

        assert code == 0
        assert events.index("push") < events.index("terminate:SIGTERM")
        assert events.count("push") == 1

    @pytest.mark.asyncio
    async def test_second_signal_forwards_immediately(self):
        """Test a repeated signal during shutdown goes straight to the worker."""
        release = asyncio.Event()

        async def blocked_push():
            await release.wait()
            return SyncResult(status=SyncStatus.OK)

        controller = _controller_double()
        controller.push = AsyncMock(side_effect=blocked_push)
        supervisor = MagicMock(spec=ProcessSupervisor)
        boot = Bootstrapper(Config(), controller, supervisor)

        boot._handle_signal(signal.SIGINT)
        await asyncio.sleep(0.01)
        supervisor.terminate.assert_not_called()

        boot._handle_signal(signal.SIGINT)
        supervisor.terminate.assert_called_once_with(signal.SIGINT)

        release.set()
        await boot._shutdown_task
        assert supervisor.terminate.call_count == 2
        controller.push.assert_awaited_once()
