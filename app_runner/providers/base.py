"""
Device Provider Abstraction
===========================

Abstract base class defining the interface every device backend implements:
physical consoles, local desktops, ADB devices and cloud-hosted mobile devices.

Operations a backend cannot perform (lifecycle control on a cloud device,
unsupported log types, ...) have default implementations that log a warning
and return a neutral result, so callers never branch per platform.

Usage:
    from app_runner.providers import create_provider

    provider = create_provider("Xbox")
    await provider.connect("192.168.1.100")
    result = await provider.run_application("Game.exe", "--smoke-test")
    await provider.disconnect()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]

# Sentinel returned by get_device_identifier when the address cannot be determined
UNKNOWN_IDENTIFIER = "Unknown"


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class DeviceState(Enum):
    """State of the provider connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class ConnectionInfo:
    """
    Result of a successful provider connect.

    Attributes:
        platform: Platform identifier (e.g. "Xbox").
        identifier: Device address or name.
        details: Backend-specific connection details.
    """

    platform: str
    identifier: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusRecord:
    """
    Device status snapshot.

    Attributes:
        platform: Platform identifier.
        status: Short status word ("Online", "Offline", "Unknown", ...).
        status_data: Backend-specific status fields.
        timestamp: When the status was read.
    """

    platform: str
    status: str
    status_data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "platform": self.platform,
            "status": self.status,
            "status_data": self.status_data,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RunResult:
    """
    Outcome of running an application on a device.

    Attributes:
        platform: Platform identifier.
        executable_path: Application path or identifier that was run.
        arguments: Arguments passed to the application.
        started_at: Launch time.
        finished_at: Time the run completed or was abandoned.
        output: Output/log lines collected from the run.
        exit_code: Exit code, or None when the backend cannot report one
            or the run timed out.
        timed_out: True if the run was still going when the timeout elapsed.
    """

    platform: str
    executable_path: str
    arguments: str
    started_at: datetime
    finished_at: datetime
    output: list[str] = field(default_factory=list)
    exit_code: Optional[int] = None
    timed_out: bool = False

    @property
    def duration_seconds(self) -> float:
        """Wall-clock duration of the run."""
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "platform": self.platform,
            "executable_path": self.executable_path,
            "arguments": self.arguments,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "output": self.output,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
        }


@dataclass
class LogRecord:
    """
    Device log entries.

    Attributes:
        platform: Platform identifier.
        log_type: Requested log type.
        entries: Log lines, oldest first.
        retrieved_at: When the logs were read.
    """

    platform: str
    log_type: str
    entries: list[str] = field(default_factory=list)
    retrieved_at: datetime = field(default_factory=utcnow)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "platform": self.platform,
            "log_type": self.log_type,
            "entries": self.entries,
            "retrieved_at": self.retrieved_at.isoformat(),
        }


def not_supported(platform: str, operation: str, **context: Any) -> None:
    """Log that ``operation`` does not apply to ``platform``."""
    logger.warning(
        "Operation not supported on this platform",
        platform=platform,
        operation=operation,
        **context,
    )


def tail(lines: list[str], max_entries: int) -> list[str]:
    """Keep the last ``max_entries`` lines (all of them if max_entries <= 0)."""
    if max_entries <= 0:
        return lines
    return lines[-max_entries:]


class DeviceProvider(ABC):
    """
    Abstract base class for device providers.

    Each provider talks to one concrete backend and exposes the same
    operation surface to the SessionManager.
    """

    #: Platform identifier registered in the provider factory
    platform: str = ""

    #: Log types accepted by get_device_logs ("All" is always accepted)
    supported_log_types: tuple[str, ...] = ()

    def __init__(self, target: Optional[str] = None) -> None:
        """
        Initialize provider.

        Args:
            target: Optional address/name of the specific device to use.
        """
        self.target = target
        self.state = DeviceState.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        """Check if the provider is currently connected."""
        return self.state == DeviceState.CONNECTED

    @abstractmethod
    async def connect(self, target: Optional[str] = None) -> ConnectionInfo:
        """
        Make the device ready for use.

        Args:
            target: Optional device address/name, overriding the one
                given at construction.

        Returns:
            ConnectionInfo describing the connected device.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Tear down the connection. Idempotent."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Health check. Never raises; failures return False."""

    @abstractmethod
    async def get_device_identifier(self) -> str:
        """Best-effort device address or name; a sentinel when unknown."""

    @abstractmethod
    async def get_device_status(self) -> StatusRecord:
        """Read the current device status."""

    @abstractmethod
    async def run_application(
        self,
        executable_path: str,
        arguments: str = "",
        timeout_seconds: Optional[float] = None,
    ) -> RunResult:
        """
        Deploy/launch an application and wait for it to finish.

        Args:
            executable_path: Application path or identifier.
            arguments: Command-line arguments for the application.
            timeout_seconds: Maximum time to wait for completion.

        Returns:
            RunResult with collected output.
        """

    def supports_log_type(self, log_type: str) -> bool:
        """Check whether ``log_type`` can be retrieved from this backend."""
        if not self.supported_log_types:
            return False
        if log_type.lower() == "all":
            return True
        return log_type.lower() in (t.lower() for t in self.supported_log_types)

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 1000) -> LogRecord:
        """
        Retrieve device logs.

        Returns an empty record with a warning when the log type is not
        available on this backend.
        """
        not_supported(self.platform, "get_device_logs", log_type=log_type)
        return LogRecord(platform=self.platform, log_type=log_type)

    async def take_screenshot(self, output_path: PathLike) -> Optional[Path]:
        """Capture the screen to ``output_path``; returns the written path."""
        not_supported(self.platform, "take_screenshot")
        return None

    async def copy_device_item(self, source_path: str, destination_path: PathLike) -> Optional[Path]:
        """Copy a file or directory from the device to the local machine."""
        not_supported(self.platform, "copy_device_item")
        return None

    async def install_application(self, package_path: PathLike) -> None:
        """Install an application package without launching it."""
        not_supported(self.platform, "install_application")

    async def start_device(self) -> None:
        """Power on / wake the device."""
        not_supported(self.platform, "start_device")

    async def stop_device(self) -> None:
        """Power off the device."""
        not_supported(self.platform, "stop_device")

    async def restart_device(self) -> None:
        """Reboot the device."""
        not_supported(self.platform, "restart_device")

    async def detect_and_set_default_target(self) -> Optional[str]:
        """
        Discover a default device when no target was given.

        Returns:
            The detected target, or None if this backend has no target
            management.
        """
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(platform={self.platform!r}, target={self.target!r}, state={self.state.value})"
