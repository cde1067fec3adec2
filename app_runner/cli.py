"""
Command-Line Interface
======================

Connects to a device, performs one operation and disconnects.

Usage:
    app-runner platforms
    app-runner status --platform Xbox --target 192.168.1.100
    app-runner run --platform Adb com.example.game/.MainActivity --args "-e mode smoke"
    app-runner logs --platform PlayStation5 --type Console --max-entries 200
    app-runner screenshot --platform Switch out/screen.png

Exit codes:
    0  success
    1  error (lock timeout, provider failure, timed-out run, ...)
    N  the application's own exit code for ``run``
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Optional, Sequence

from app_runner import __version__
from app_runner.errors import AppRunnerError
from app_runner.providers.factory import get_supported_platforms
from app_runner.session import SessionManager
from app_runner.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="app-runner",
        description="Run applications and collect diagnostics on consoles, desktops and mobile devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  app-runner platforms
  app-runner status --platform Mock
  app-runner run --platform Xbox --target 192.168.1.100 Game.exe --args "--smoke-test"
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")

    device = argparse.ArgumentParser(add_help=False)
    device.add_argument("--platform", required=True, help="Platform name (see 'platforms')")
    device.add_argument("--target", help="Device address or name (default device if omitted)")
    device.add_argument(
        "--lock-timeout",
        type=float,
        help="Seconds to wait for exclusive access to the device",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("platforms", help="List supported platforms")
    commands.add_parser("status", parents=[device], help="Show device identifier and status")

    run = commands.add_parser("run", parents=[device], help="Run an application and wait for it")
    run.add_argument("executable", help="Application path or identifier")
    run.add_argument("--args", default="", help="Arguments passed to the application")
    run.add_argument("--timeout", type=float, help="Seconds to wait for the application")

    logs = commands.add_parser("logs", parents=[device], help="Print device logs")
    logs.add_argument("--type", default="All", dest="log_type", help="Log type (default: All)")
    logs.add_argument("--max-entries", type=int, default=1000, help="Maximum entries to print")

    screenshot = commands.add_parser("screenshot", parents=[device], help="Save a screenshot")
    screenshot.add_argument("output", help="Destination image file")

    return parser


async def _run_command(args: argparse.Namespace, manager: SessionManager) -> int:
    """Connect, perform the requested operation and return the exit code."""
    session = await manager.connect(args.platform, args.target, args.lock_timeout)

    if args.command == "status":
        identifier = await manager.get_device_identifier()
        status = await manager.get_device_status()
        if args.json:
            _print_json({"session": session.to_dict(), "identifier": identifier, "status": status.to_dict()})
        else:
            print(f"{session.platform} {identifier}: {status.status}")
            for key, value in status.status_data.items():
                print(f"  {key}: {value}")
        return 0

    if args.command == "run":
        result = await manager.run_application(args.executable, args.args, args.timeout)
        if args.json:
            _print_json(result.to_dict())
        else:
            for line in result.output:
                print(line)
        if result.timed_out:
            print(f"Application did not finish within the timeout ({result.duration_seconds:.0f}s)", file=sys.stderr)
            return 1
        return result.exit_code or 0

    if args.command == "logs":
        record = await manager.get_device_logs(args.log_type, args.max_entries)
        if args.json:
            _print_json(record.to_dict())
        else:
            for line in record.entries:
                print(line)
        return 0

    if args.command == "screenshot":
        path = await manager.take_screenshot(args.output)
        if path is None:
            print(f"Screenshots are not supported on {session.platform}", file=sys.stderr)
            return 1
        print(path)
        return 0

    raise ValueError(f"Unknown command: {args.command}")


async def run_cli(args: argparse.Namespace) -> int:
    """Execute parsed arguments; the session is always disconnected."""
    if args.command == "platforms":
        platforms = get_supported_platforms()
        if args.json:
            _print_json(platforms)
        else:
            for name in platforms:
                print(name)
        return 0

    async with SessionManager() as manager:
        try:
            return await _run_command(args, manager)
        except AppRunnerError as e:
            logger.error("Command failed", command=args.command, error=str(e))
            print(f"Error: {e}", file=sys.stderr)
            return 1
        except (FileNotFoundError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse ``argv`` and run the command, returning the exit code."""
    args = build_parser().parse_args(argv)
    setup_logging(level="DEBUG" if args.debug else None)
    return asyncio.run(run_cli(args))


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(1)
