"""
ADB Device Provider
===================

Android devices and emulators attached to this machine, controlled via ADB.

ADB (Android Debug Bridge) ships with the Android SDK platform-tools and
allows:
- Launching activities and waiting for the process to exit
- Logcat and crash buffer retrieval
- Screenshot capture, file pulls and APK installs

Prerequisites:
    1. Android SDK platform-tools installed (adb)
    2. Emulator running or device connected via USB / adb connect
    3. adb available in PATH, ADB_PATH or ANDROID_HOME set

Usage:
    provider = AdbProvider()          # first available device
    await provider.connect("emulator-5554")
    result = await provider.run_application("com.example.game/.MainActivity", "-e mode smoke")
"""

import asyncio
import os
import shlex
import subprocess
from pathlib import Path
from typing import Any, Optional

from app_runner.config import get_settings
from app_runner.errors import CommandTimeoutError, ProviderCommandError, ProviderConfigurationError
from app_runner.providers.base import (
    UNKNOWN_IDENTIFIER,
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
from app_runner.providers.commands import CommandResult, find_executable, run_command
from app_runner.utils.files import ensure_parent_dir, require_existing, save_screenshot_bytes
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

# Seconds between checks whether the launched app is still running
PROCESS_POLL_INTERVAL = 1.0

# logcat buffers per log type
LOG_BUFFERS = {"logcat": "main", "crash": "crash"}


class AdbProvider(DeviceProvider):
    """
    Local Android device control via ADB.

    Works with Android emulators and physical devices over USB or TCP/IP.
    No API keys or paid services required.
    """

    platform = "Adb"
    supported_log_types = ("Logcat", "Crash")

    def __init__(
        self,
        target: Optional[str] = None,
        adb_path: Optional[str] = None,
    ) -> None:
        """
        Initialize ADB provider.

        Args:
            target: Optional device serial (from 'adb devices') or host:port.
            adb_path: Optional path to adb executable.

        Raises:
            ProviderConfigurationError: If adb cannot be found.
        """
        settings = get_settings()
        super().__init__(target or settings.adb.android_serial or None)
        self.run_timeout = settings.console.run_timeout
        self.adb_path = adb_path or settings.adb.adb_path or self._find_adb()
        self.info: dict[str, Any] = {}

        if not self.adb_path:
            raise ProviderConfigurationError(
                "ADB not found. Install Android SDK platform-tools and ensure 'adb' "
                "is in PATH, or set ADB_PATH / ANDROID_HOME.",
                platform=self.platform,
            )

    def _find_adb(self) -> Optional[str]:
        """Find ADB executable in system."""
        search_dirs = []
        android_home = os.environ.get("ANDROID_HOME") or os.environ.get("ANDROID_SDK_ROOT")
        if android_home:
            search_dirs.append(Path(android_home) / "platform-tools")
        # Common installation paths
        search_dirs.extend(
            [
                Path.home() / "Android" / "Sdk" / "platform-tools",
                Path("/usr/local/android-sdk/platform-tools"),
                Path("/opt/android-sdk/platform-tools"),
            ]
        )
        return find_executable("adb", search_dirs)

    async def _run_adb(self, *args: str, timeout: float = 30.0, device: bool = True) -> CommandResult:
        """
        Run an ADB command.

        Args:
            *args: ADB command arguments.
            timeout: Command timeout in seconds.
            device: Address the selected device with -s.
        """
        cmd = [self.adb_path]
        if device and self.target:
            cmd.extend(["-s", self.target])
        cmd.extend(args)
        return await run_command(cmd, timeout=timeout, platform=self.platform)

    async def _run_adb_bytes(self, *args: str, timeout: float = 30.0) -> bytes:
        """Run ADB command and return raw stdout bytes (for screenshots)."""
        cmd = [self.adb_path]
        if self.target:
            cmd.extend(["-s", self.target])
        cmd.extend(args)

        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandTimeoutError("ADB command timed out", platform=self.platform, command=cmd) from e
        if result.returncode != 0:
            raise ProviderCommandError(
                f"ADB command failed: {result.stderr.decode(errors='replace').strip()}",
                platform=self.platform,
                command=cmd,
                exit_code=result.returncode,
            )
        return result.stdout

    async def list_devices(self) -> list[dict[str, str]]:
        """List attached devices as {"serial", "model"} dicts."""
        result = await self._run_adb("devices", "-l", device=False)
        if not result.ok:
            raise ProviderCommandError(
                f"Failed to get device list: {result.stderr.strip()}",
                platform=self.platform,
                command=result.args,
                exit_code=result.returncode,
            )

        devices = []
        for line in result.stdout.strip().splitlines()[1:]:  # Skip header
            parts = line.split()
            if len(parts) < 2 or parts[1] != "device":
                continue
            model = ""
            for part in parts:
                if part.startswith("model:"):
                    model = part.split(":", 1)[1]
            devices.append({"serial": parts[0], "model": model})
        return devices

    async def connect(self, target: Optional[str] = None) -> ConnectionInfo:
        self.state = DeviceState.CONNECTING
        self.target = target or self.target

        # Network devices need an explicit 'adb connect' first
        if self.target and ":" in self.target:
            result = await self._run_adb("connect", self.target, device=False)
            if "connected" not in result.stdout:
                self.state = DeviceState.ERROR
                raise ProviderCommandError(
                    f"adb connect {self.target} failed: {result.output.strip()}",
                    platform=self.platform,
                    command=result.args,
                    exit_code=result.returncode,
                )

        logger.info("Connecting to ADB device", serial=self.target)
        devices = await self.list_devices()
        if not devices:
            self.state = DeviceState.ERROR
            raise ProviderCommandError(
                "No Android devices found. Start an emulator or connect a device.",
                platform=self.platform,
            )

        if self.target:
            matching = [d for d in devices if d["serial"] == self.target]
            if not matching:
                self.state = DeviceState.ERROR
                raise ProviderCommandError(
                    f"Device {self.target} not found; available: {', '.join(d['serial'] for d in devices)}",
                    platform=self.platform,
                )
            device = matching[0]
        else:
            device = devices[0]
            self.target = device["serial"]

        self.info = {
            "serial": self.target,
            "model": device.get("model") or await self._get_device_property("ro.product.model"),
            "manufacturer": await self._get_device_property("ro.product.manufacturer"),
            "android_version": await self._get_device_property("ro.build.version.release"),
            "sdk": await self._get_device_property("ro.build.version.sdk"),
        }
        self.state = DeviceState.CONNECTED
        logger.info(
            "Connected to ADB device",
            serial=self.target,
            model=self.info["model"],
            android_version=self.info["android_version"],
        )
        return ConnectionInfo(platform=self.platform, identifier=self.target, details=dict(self.info))

    async def _get_device_property(self, prop: str) -> str:
        """Get a device property via getprop."""
        result = await self._run_adb("shell", "getprop", prop)
        if result.ok:
            return result.stdout.strip()
        return ""

    async def disconnect(self) -> None:
        if self.target and ":" in self.target and self.is_connected:
            try:
                await self._run_adb("disconnect", self.target, device=False)
            except ProviderCommandError as e:
                logger.warning("Error disconnecting network device", serial=self.target, error=str(e))
        self.state = DeviceState.DISCONNECTED
        logger.info("Disconnected from ADB device", serial=self.target)

    async def test_connection(self) -> bool:
        if not self.is_connected:
            return False
        try:
            result = await self._run_adb("get-state", timeout=10.0)
        except ProviderCommandError as e:
            logger.debug("ADB health check failed", error=str(e))
            return False
        return result.ok and result.stdout.strip() == "device"

    async def get_device_identifier(self) -> str:
        return self.target or UNKNOWN_IDENTIFIER

    async def get_device_status(self) -> StatusRecord:
        state = await self._run_adb("get-state", timeout=10.0)
        status_data = dict(self.info)
        battery = await self._run_adb("shell", "dumpsys", "battery")
        if battery.ok:
            level = next((line.split(":", 1)[1].strip() for line in battery.lines if "level:" in line), None)
            status_data["battery_level"] = level
        return StatusRecord(
            platform=self.platform,
            status="Online" if state.ok and state.stdout.strip() == "device" else "Offline",
            status_data=status_data,
        )

    async def _get_pid(self, package: str) -> Optional[str]:
        result = await self._run_adb("shell", "pidof", package)
        pid = result.stdout.strip()
        return pid.split()[0] if result.ok and pid else None

    async def run_application(
        self,
        executable_path: str,
        arguments: str = "",
        timeout_seconds: Optional[float] = None,
    ) -> RunResult:
        """
        Launch an activity and wait for its process to exit.

        Args:
            executable_path: Activity component ("com.example/.MainActivity").
            arguments: Extra 'am start' arguments (e.g. "-e mode smoke").
            timeout_seconds: Maximum time to wait for the process to exit.
        """
        if "/" not in executable_path:
            raise ValueError(f"Expected an activity component 'package/activity', got: {executable_path}")

        package = executable_path.split("/", 1)[0]
        timeout = timeout_seconds or self.run_timeout
        started_at = utcnow()

        logger.info("Launching activity", component=executable_path, arguments=arguments)
        result = await self._run_adb("shell", "am", "start", "-W", "-n", executable_path, *shlex.split(arguments))
        if not result.ok or "Error" in result.stdout:
            raise ProviderCommandError(
                f"Failed to start {executable_path}: {result.output.strip()}",
                platform=self.platform,
                command=result.args,
                exit_code=result.returncode,
            )

        pid = await self._get_pid(package)
        timed_out = False
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while pid and await self._get_pid(package) == pid:
            if loop.time() >= deadline:
                timed_out = True
                logger.warning("Application still running at timeout, stopping it", package=package, timeout=timeout)
                await self._run_adb("shell", "am", "force-stop", package)
                break
            await asyncio.sleep(PROCESS_POLL_INTERVAL)

        output: list[str] = []
        if pid:
            logcat = await self._run_adb("logcat", "-d", "--pid", pid)
            output = logcat.lines

        return RunResult(
            platform=self.platform,
            executable_path=executable_path,
            arguments=arguments,
            started_at=started_at,
            finished_at=utcnow(),
            output=output,
            exit_code=None if timed_out else 0,
            timed_out=timed_out,
        )

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 1000) -> LogRecord:
        if not self.supports_log_type(log_type):
            return await super().get_device_logs(log_type, max_entries)

        buffers = LOG_BUFFERS.values() if log_type.lower() == "all" else [LOG_BUFFERS[log_type.lower()]]
        args = ["logcat", "-d"]
        for buffer in buffers:
            args.extend(["-b", buffer])
        if max_entries > 0:
            args.extend(["-t", str(max_entries)])

        result = await self._run_adb(*args)
        if not result.ok:
            logger.warning("Failed to read logcat", error=result.stderr.strip())
            return LogRecord(platform=self.platform, log_type=log_type)
        return LogRecord(platform=self.platform, log_type=log_type, entries=tail(result.lines, max_entries))

    async def take_screenshot(self, output_path: PathLike) -> Optional[Path]:
        # exec-out gives the raw PNG without line-ending translation
        data = await self._run_adb_bytes("exec-out", "screencap", "-p")
        if len(data) < 100:
            raise ProviderCommandError("Screenshot appears empty or corrupted", platform=self.platform)
        return save_screenshot_bytes(data, output_path)

    async def copy_device_item(self, source_path: str, destination_path: PathLike) -> Optional[Path]:
        destination = ensure_parent_dir(destination_path)
        result = await self._run_adb("pull", source_path, str(destination), timeout=300.0)
        if not result.ok:
            raise ProviderCommandError(
                f"adb pull {source_path} failed: {result.output.strip()}",
                platform=self.platform,
                command=result.args,
                exit_code=result.returncode,
            )
        return destination

    async def install_application(self, package_path: PathLike) -> None:
        apk = require_existing(package_path, "APK")
        result = await self._run_adb("install", "-r", str(apk), timeout=300.0)
        if not result.ok or "Failure" in result.stdout:
            raise ProviderCommandError(
                f"Install failed: {result.output.strip()}",
                platform=self.platform,
                command=result.args,
                exit_code=result.returncode,
            )
        logger.info("APK installed", path=str(apk))

    async def stop_device(self) -> None:
        await self._run_adb("reboot", "-p")
        self.state = DeviceState.DISCONNECTED

    async def restart_device(self) -> None:
        await self._run_adb("reboot")
        await self._run_adb("wait-for-device", timeout=300.0)

    async def detect_and_set_default_target(self) -> Optional[str]:
        if self.target:
            return self.target
        try:
            devices = await self.list_devices()
        except ProviderCommandError as e:
            logger.warning("Could not list ADB devices", error=str(e))
            return None
        if devices:
            self.target = devices[0]["serial"]
        return self.target
