"""
Command Execution
=================

Runs vendor SDK command-line tools for the console, desktop and ADB providers.

Commands run through subprocess in a worker thread so the event loop is
never blocked. Tool paths are resolved once from the SDK root, PATH, or
well-known install locations.
"""

import asyncio
import os
import re
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence, Union

from app_runner.errors import CommandTimeoutError, ProviderCommandError, ProviderConfigurationError
from app_runner.providers.base import RunResult, utcnow
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

# Default timeout for a single tool invocation (seconds)
DEFAULT_COMMAND_TIMEOUT = 120.0

_EXECUTABLE_SUFFIXES = ("", ".exe", ".cmd", ".bat")


@dataclass
class CommandResult:
    """
    Result of one tool invocation.

    Attributes:
        args: Full argument vector that was run.
        returncode: Process exit code.
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_ms: How long the command took.
    """

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr.rstrip()}"
        return self.stdout or self.stderr

    @property
    def lines(self) -> list[str]:
        """Non-empty output lines."""
        return [line.rstrip() for line in self.output.splitlines() if line.strip()]


def _decode_partial(data: Optional[Union[bytes, str]]) -> str:
    """Output captured before a timeout; TimeoutExpired carries bytes even in text mode."""
    if not data:
        return ""
    return data.decode(errors="replace") if isinstance(data, bytes) else data


async def run_command(
    args: Sequence[str],
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    platform: str = "",
) -> CommandResult:
    """
    Run a command asynchronously.

    Args:
        args: Command and arguments.
        timeout: Command timeout in seconds.
        cwd: Working directory.
        env: Extra environment variables merged over os.environ.
        platform: Platform name for error context.

    Returns:
        CommandResult (a non-zero exit code is not an error here).

    Raises:
        ProviderCommandError: If the command cannot be started or times out.
    """
    cmd = [str(a) for a in args]
    run_env = {**os.environ, **env} if env else None

    logger.debug("Running command", cmd=" ".join(cmd), timeout=timeout)
    start_time = time.monotonic()

    try:
        completed = await asyncio.to_thread(
            subprocess.run,
            cmd,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            cwd=cwd,
            env=run_env,
        )
    except subprocess.TimeoutExpired as e:
        partial = CommandResult(args=cmd, returncode=-1, stdout=_decode_partial(e.stdout), stderr=_decode_partial(e.stderr))
        raise CommandTimeoutError(
            f"Command timed out after {timeout}s: {' '.join(cmd)}",
            platform=platform,
            command=cmd,
            output=partial.output,
        ) from e
    except OSError as e:
        raise ProviderCommandError(
            f"Failed to start command {cmd[0]}: {e}",
            platform=platform,
            command=cmd,
        ) from e

    return CommandResult(
        args=cmd,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        duration_ms=int((time.monotonic() - start_time) * 1000),
    )


def find_executable(name: str, search_dirs: Iterable[Path] = ()) -> Optional[str]:
    """
    Locate an executable.

    Searches the given directories first (trying Windows suffixes), then PATH.
    """
    for directory in search_dirs:
        for suffix in _EXECUTABLE_SUFFIXES:
            candidate = Path(directory) / f"{name}{suffix}"
            if candidate.is_file():
                return str(candidate)
    return shutil.which(name)


def parse_key_value_lines(text: str, separator: str = ":") -> dict[str, str]:
    """
    Parse "Key: Value" lines into a dictionary.

    Lines without the separator are ignored; keys are stripped.
    """
    data: dict[str, str] = {}
    for line in text.splitlines():
        if separator not in line:
            continue
        key, value = line.split(separator, 1)
        key = key.strip()
        if key:
            data[key] = value.strip()
    return data


_IPV4_PATTERN = re.compile(r"\b(\d{1,3}(?:\.\d{1,3}){3})\b")


def find_ipv4_address(text: str) -> Optional[str]:
    """Return the first IPv4 address in ``text``."""
    match = _IPV4_PATTERN.search(text)
    return match.group(1) if match else None


class SdkToolRunner:
    """
    Runs the command-line tools of one vendor SDK.

    Tools are resolved from the SDK's tool directories (then PATH) when the
    runner is built. A missing SDK root is a configuration error raised
    immediately, before any device interaction.
    """

    def __init__(
        self,
        platform: str,
        sdk_root: str,
        sdk_env_var: str,
        tool_dirs: Sequence[str],
        tools: Sequence[str],
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        """
        Args:
            platform: Platform name for logs and errors.
            sdk_root: SDK root directory.
            sdk_env_var: Environment variable that normally holds the root.
            tool_dirs: Tool directories relative to the SDK root.
            tools: Tool names that must be resolvable.
            timeout: Default command timeout.
        """
        self.platform = platform
        self.timeout = timeout

        if not sdk_root:
            raise ProviderConfigurationError(
                f"{platform} SDK not configured: set the {sdk_env_var} environment variable",
                platform=platform,
            )

        self.sdk_root = Path(sdk_root)
        search_dirs = [self.sdk_root / d for d in tool_dirs]

        self.tools: dict[str, str] = {}
        missing = []
        for tool in tools:
            path = find_executable(tool, search_dirs)
            if path:
                self.tools[tool] = path
            else:
                missing.append(tool)

        if missing:
            raise ProviderConfigurationError(
                f"{platform} SDK tools not found under {self.sdk_root}: {', '.join(missing)}",
                platform=platform,
            )

    async def run(
        self,
        tool: str,
        *args: str,
        timeout: Optional[float] = None,
        check: bool = True,
    ) -> CommandResult:
        """
        Run an SDK tool.

        Args:
            tool: Tool name (must have been resolved at construction).
            *args: Tool arguments.
            timeout: Override of the default timeout.
            check: Raise ProviderCommandError on a non-zero exit code.
        """
        result = await run_command(
            [self.tools[tool], *args],
            timeout=timeout or self.timeout,
            platform=self.platform,
        )
        if check and not result.ok:
            raise ProviderCommandError(
                f"{self.platform} command '{tool} {' '.join(args)}' failed "
                f"with exit code {result.returncode}: {result.output.strip()}",
                platform=self.platform,
                command=result.args,
                exit_code=result.returncode,
                output=result.output,
            )
        return result


async def run_application_tool(
    runner: SdkToolRunner,
    tool: str,
    *args: str,
    executable_path: str,
    arguments: str,
    timeout: float,
) -> RunResult:
    """
    Run a tool that launches an application and blocks until it exits.

    The tool's output becomes the run output and its exit code the
    application's. A run still going at ``timeout`` is reported with
    ``timed_out=True``, no exit code and whatever output it produced
    before the timeout, instead of raising.
    """
    started_at = utcnow()
    try:
        result = await runner.run(tool, *args, timeout=timeout, check=False)
    except CommandTimeoutError as e:
        logger.warning(
            "Application run timed out",
            platform=runner.platform,
            executable=executable_path,
            timeout=timeout,
        )
        return RunResult(
            platform=runner.platform,
            executable_path=executable_path,
            arguments=arguments,
            started_at=started_at,
            finished_at=utcnow(),
            output=[line.rstrip() for line in e.output.splitlines() if line.strip()],
            exit_code=None,
            timed_out=True,
        )

    logger.info(
        "Application finished",
        platform=runner.platform,
        executable=executable_path,
        exit_code=result.returncode,
        duration_ms=result.duration_ms,
    )
    return RunResult(
        platform=runner.platform,
        executable_path=executable_path,
        arguments=arguments,
        started_at=started_at,
        finished_at=utcnow(),
        output=result.lines,
        exit_code=result.returncode,
    )
