"""CLI entry point for statekeeper."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path

from .bootstrap import run as run_supervisor
from .config import DEFAULT_WORKER_COMMAND, Config, ConfigError, load_config
from .remote import RemoteNotFoundError, RemoteStateError
from .sync import SyncController, SyncStatus


LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, tagged so it can be told apart from worker output."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "source": "statekeeper",
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging on stderr.

    The worker inherits stdout, so host log lines go to stderr only.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level = LOG_LEVELS.get(log_level.lower(), logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _worker_command(args: argparse.Namespace, config: Config) -> list[str]:
    command = list(args.worker_command or [])
    if command and command[0] == "--":
        command = command[1:]
    return command or config.worker.command or list(DEFAULT_WORKER_COMMAND)


async def cmd_run(args: argparse.Namespace, config: Config) -> int:
    """Run the worker under supervision."""
    config.worker.command = _worker_command(args, config)
    return await run_supervisor(config)


async def cmd_restore(args: argparse.Namespace, config: Config) -> int:
    """Restore the local state file once."""
    controller = SyncController.from_config(config.sync)
    try:
        result = await controller.restore()
    finally:
        await controller.close()
    return 1 if result.status == SyncStatus.FAILED else 0


async def cmd_push(args: argparse.Namespace, config: Config) -> int:
    """Push the local state file once."""
    controller = SyncController.from_config(config.sync)
    try:
        result = await controller.push()
    finally:
        await controller.close()
    if result.status == SyncStatus.SKIPPED:
        print(f"Push skipped: {result.error}")
    return 1 if result.status == SyncStatus.FAILED else 0


async def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Show sync configuration and remote state."""
    controller = SyncController.from_config(config.sync)
    status_data = controller.get_status()

    remote_status: dict = {"checked": False, "exists": None, "sha": None, "size": None, "error": None}
    if controller.enabled:
        remote_status["checked"] = True
        try:
            blob = await controller.remote.fetch()
        except RemoteNotFoundError:
            remote_status["exists"] = False
        except RemoteStateError as e:
            remote_status["error"] = str(e)
        else:
            remote_status.update(exists=True, sha=blob.sha, size=len(blob.content))
        finally:
            await controller.close()
    status_data["remote"] = remote_status

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    print("statekeeper status")
    print("==================")
    print(f"Sync: {'enabled' if status_data['enabled'] else 'disabled (token or repo not set)'}")
    print(f"Local state: {status_data['state_path']} ({'present' if status_data['local_exists'] else 'missing'})")
    if status_data["enabled"]:
        branch = status_data["branch"] or "default branch"
        print(f"Remote: {status_data['repo']}/{status_data['remote_path']} ({branch})")
        print(f"Interval: {status_data['interval_seconds']}s")
        if remote_status["error"]:
            print(f"  Status: Not reachable ({remote_status['error']})")
        elif remote_status["exists"]:
            print(f"  Status: Present ({remote_status['size']} bytes, sha {remote_status['sha']})")
        else:
            print("  Status: No remote state yet")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="statekeeper",
        description="Supervise a worker process and back up its state file to GitHub",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=list(LOG_LEVELS),
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Restore state, run the worker, back up periodically")
    run_parser.add_argument(
        "worker_command",
        nargs=argparse.REMAINDER,
        help="Worker command and arguments (default: worker.command from config)",
    )
    run_parser.set_defaults(func=cmd_run)

    restore_parser = subparsers.add_parser("restore", help="Restore the state file once")
    restore_parser.set_defaults(func=cmd_restore)

    push_parser = subparsers.add_parser("push", help="Back up the state file once")
    push_parser.set_defaults(func=cmd_push)

    status_parser = subparsers.add_parser("status", help="Show sync configuration and remote state")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    try:
        config = load_config(args.config)
    except (ConfigError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        args.verbose,
        args.log_level or config.logging.level,
        args.json_logs or config.logging.json,
    )

    return asyncio.run(args.func(args, config))


if __name__ == "__main__":
    sys.exit(main())
