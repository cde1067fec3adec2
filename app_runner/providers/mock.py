"""
Mock Device Provider
====================

In-memory provider with no hardware behind it.

Used by tests and dry runs of automation scripts. Every operation succeeds
and is recorded in ``calls`` so callers can assert on the sequence.
"""

import asyncio
import base64
import shlex
from pathlib import Path
from typing import Any, Optional

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
from app_runner.utils.files import ensure_parent_dir
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

MOCK_DEVICE_NAME = "mock-device"

# 1x1 black PNG
_MOCK_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/PchI7wAAAABJRU5ErkJggg=="
)


class MockProvider(DeviceProvider):
    """Mock provider that simulates a healthy device."""

    platform = "Mock"
    supported_log_types = ("System", "App")

    def __init__(self, target: Optional[str] = None, healthy: bool = True) -> None:
        super().__init__(target)
        self.healthy = healthy
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.powered_on = True
        self.logs: dict[str, list[str]] = {
            "System": ["[system] mock device booted"],
            "App": [],
        }

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))

    async def connect(self, target: Optional[str] = None) -> ConnectionInfo:
        self._record("connect", target)
        if target:
            self.target = target
        self.state = DeviceState.CONNECTED
        identifier = await self.get_device_identifier()
        logger.info("Connected to mock device", identifier=identifier)
        return ConnectionInfo(platform=self.platform, identifier=identifier, details={"mock": True})

    async def disconnect(self) -> None:
        self._record("disconnect")
        self.state = DeviceState.DISCONNECTED

    async def test_connection(self) -> bool:
        return self.is_connected and self.healthy

    async def get_device_identifier(self) -> str:
        return self.target or MOCK_DEVICE_NAME

    async def get_device_status(self) -> StatusRecord:
        self._record("get_device_status")
        return StatusRecord(
            platform=self.platform,
            status="Online" if self.powered_on else "Offline",
            status_data={"identifier": await self.get_device_identifier(), "powered_on": self.powered_on},
        )

    async def run_application(
        self,
        executable_path: str,
        arguments: str = "",
        timeout_seconds: Optional[float] = None,
    ) -> RunResult:
        self._record("run_application", executable_path, arguments)
        started_at = utcnow()
        await asyncio.sleep(0)
        output = [f"Running {executable_path}"]
        output.extend(f"arg: {a}" for a in shlex.split(arguments))
        self.logs["App"].extend(output)
        return RunResult(
            platform=self.platform,
            executable_path=executable_path,
            arguments=arguments,
            started_at=started_at,
            finished_at=utcnow(),
            output=output,
            exit_code=0,
        )

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 1000) -> LogRecord:
        self._record("get_device_logs", log_type, max_entries)
        if not self.supports_log_type(log_type):
            return await super().get_device_logs(log_type, max_entries)

        if log_type.lower() == "all":
            entries = [line for lines in self.logs.values() for line in lines]
        else:
            key = next(k for k in self.logs if k.lower() == log_type.lower())
            entries = list(self.logs[key])
        return LogRecord(platform=self.platform, log_type=log_type, entries=tail(entries, max_entries))

    async def take_screenshot(self, output_path: PathLike) -> Optional[Path]:
        self._record("take_screenshot", str(output_path))
        destination = ensure_parent_dir(output_path)
        destination.write_bytes(_MOCK_PNG)
        return destination

    async def copy_device_item(self, source_path: str, destination_path: PathLike) -> Optional[Path]:
        self._record("copy_device_item", source_path, str(destination_path))
        destination = ensure_parent_dir(destination_path)
        destination.write_text(f"mock copy of {source_path}\n", encoding="utf-8")
        return destination

    async def install_application(self, package_path: PathLike) -> None:
        self._record("install_application", str(package_path))

    async def start_device(self) -> None:
        self._record("start_device")
        self.powered_on = True

    async def stop_device(self) -> None:
        self._record("stop_device")
        self.powered_on = False

    async def restart_device(self) -> None:
        self._record("restart_device")
        self.powered_on = True

    async def detect_and_set_default_target(self) -> Optional[str]:
        if not self.target:
            self.target = MOCK_DEVICE_NAME
        return self.target
