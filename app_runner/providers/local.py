"""
Local Desktop Providers
=======================

Providers for the machine app-runner itself runs on (Windows, MacOS, Linux).

There is nothing to connect to: connect only validates the environment,
applications run as local subprocesses, and lifecycle control is not
applicable. A provider for a different OS than the host fails at
construction.
"""

import asyncio
import platform as host_platform
import shlex
import shutil
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional

from app_runner.config import get_settings
from app_runner.errors import ProviderCommandError, ProviderConfigurationError
from app_runner.providers.base import (
    ConnectionInfo,
    DeviceProvider,
    DeviceState,
    LogRecord,
    PathLike,
    RunResult,
    StatusRecord,
    tail,
    utcnow,
)
from app_runner.providers.commands import run_command
from app_runner.utils.files import ensure_parent_dir, require_existing, save_screenshot_image
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

LOCAL_IDENTIFIER = "localhost"


class LocalProvider(DeviceProvider):
    """
    Shared implementation for the desktop variants.

    Subclasses set ``platform``, the expected ``host_system`` (as reported by
    platform.system()) and the command used to read system logs.
    """

    host_system: str = ""
    supported_log_types = ("System",)

    def __init__(self, target: Optional[str] = None, run_timeout: Optional[float] = None) -> None:
        super().__init__(target)
        actual = host_platform.system()
        if actual != self.host_system:
            raise ProviderConfigurationError(
                f"{self.platform} provider requires a {self.host_system} host, "
                f"but this machine runs {actual or 'an unknown OS'}",
                platform=self.platform,
            )
        self.run_timeout = run_timeout or get_settings().console.run_timeout

    async def connect(self, target: Optional[str] = None) -> ConnectionInfo:
        if target and target not in (LOCAL_IDENTIFIER, socket.gethostname()):
            logger.warning(
                "Local providers always use this machine; ignoring target",
                platform=self.platform,
                target=target,
            )
        self.state = DeviceState.CONNECTED
        identifier = await self.get_device_identifier()
        logger.info("Using local machine", platform=self.platform, identifier=identifier)
        return ConnectionInfo(
            platform=self.platform,
            identifier=identifier,
            details={"system": host_platform.system(), "release": host_platform.release()},
        )

    async def disconnect(self) -> None:
        self.state = DeviceState.DISCONNECTED

    async def test_connection(self) -> bool:
        return self.is_connected

    async def get_device_identifier(self) -> str:
        try:
            return socket.gethostname() or LOCAL_IDENTIFIER
        except OSError:
            return LOCAL_IDENTIFIER

    async def get_device_status(self) -> StatusRecord:
        uname = host_platform.uname()
        status_data = {
            "system": uname.system,
            "release": uname.release,
            "version": uname.version,
            "machine": uname.machine,
            "processor": uname.processor,
            "hostname": uname.node,
            "python": sys.version.split()[0],
        }
        try:
            usage = shutil.disk_usage(Path.home())
            status_data["disk_total_gb"] = round(usage.total / 1024**3, 1)
            status_data["disk_free_gb"] = round(usage.free / 1024**3, 1)
        except OSError as e:
            logger.debug("Disk usage unavailable", error=str(e))
        return StatusRecord(platform=self.platform, status="Online", status_data=status_data)

    async def run_application(
        self,
        executable_path: str,
        arguments: str = "",
        timeout_seconds: Optional[float] = None,
    ) -> RunResult:
        executable = require_existing(executable_path, "Executable")
        timeout = timeout_seconds or self.run_timeout
        args = [str(executable), *shlex.split(arguments, posix=self.host_system != "Windows")]

        logger.info("Running local application", platform=self.platform, executable=str(executable))
        started_at = utcnow()
        start = time.monotonic()

        try:
            completed = await asyncio.to_thread(
                subprocess.run,
                args,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
                cwd=str(executable.parent),
            )
        except subprocess.TimeoutExpired as e:
            # TimeoutExpired carries bytes even in text mode
            raw = e.stdout or b""
            output = raw.decode(errors="replace") if isinstance(raw, bytes) else raw
            logger.warning("Local application timed out", platform=self.platform, timeout=timeout)
            return RunResult(
                platform=self.platform,
                executable_path=str(executable),
                arguments=arguments,
                started_at=started_at,
                finished_at=utcnow(),
                output=output.splitlines(),
                exit_code=None,
                timed_out=True,
            )
        except OSError as e:
            raise ProviderCommandError(
                f"Failed to start {executable}: {e}",
                platform=self.platform,
                command=args,
            ) from e

        output = (completed.stdout or "").splitlines() + (completed.stderr or "").splitlines()
        logger.info(
            "Local application finished",
            platform=self.platform,
            exit_code=completed.returncode,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        return RunResult(
            platform=self.platform,
            executable_path=str(executable),
            arguments=arguments,
            started_at=started_at,
            finished_at=utcnow(),
            output=output,
            exit_code=completed.returncode,
        )

    def _system_log_command(self, max_entries: int) -> list[str]:
        raise NotImplementedError

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 1000) -> LogRecord:
        if not self.supports_log_type(log_type):
            return await super().get_device_logs(log_type, max_entries)

        try:
            result = await run_command(self._system_log_command(max_entries), platform=self.platform)
        except ProviderCommandError as e:
            logger.warning("System log tool unavailable", platform=self.platform, error=str(e))
            return LogRecord(platform=self.platform, log_type=log_type)

        if not result.ok:
            logger.warning(
                "Failed to read system logs",
                platform=self.platform,
                exit_code=result.returncode,
                error=result.stderr.strip(),
            )
            return LogRecord(platform=self.platform, log_type=log_type)
        return LogRecord(platform=self.platform, log_type=log_type, entries=tail(result.lines, max_entries))

    async def take_screenshot(self, output_path: PathLike) -> Optional[Path]:
        from PIL import ImageGrab

        try:
            image = await asyncio.to_thread(ImageGrab.grab)
        except OSError as e:
            logger.warning("Screen capture unavailable", platform=self.platform, error=str(e))
            return None
        return save_screenshot_image(image, output_path)

    async def copy_device_item(self, source_path: str, destination_path: PathLike) -> Optional[Path]:
        source = require_existing(source_path, "Source")
        destination = ensure_parent_dir(destination_path)
        if source.is_dir():
            await asyncio.to_thread(shutil.copytree, source, destination, dirs_exist_ok=True)
        else:
            await asyncio.to_thread(shutil.copy2, source, destination)
        logger.debug("Copied local item", source=str(source), destination=str(destination))
        return destination


class WindowsProvider(LocalProvider):
    """Local Windows desktop."""

    platform = "Windows"
    host_system = "Windows"

    def _system_log_command(self, max_entries: int) -> list[str]:
        return ["wevtutil", "qe", "System", f"/c:{max_entries}", "/rd:true", "/f:text"]


class MacOSProvider(LocalProvider):
    """Local macOS desktop."""

    platform = "MacOS"
    host_system = "Darwin"

    def _system_log_command(self, max_entries: int) -> list[str]:
        return ["log", "show", "--last", "1h", "--style", "compact"]


class LinuxProvider(LocalProvider):
    """Local Linux desktop."""

    platform = "Linux"
    host_system = "Linux"

    def _system_log_command(self, max_entries: int) -> list[str]:
        return ["journalctl", "--no-pager", "-n", str(max_entries)]
