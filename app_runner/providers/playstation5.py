"""
PlayStation 5 Device Provider
=============================

PlayStation 5 development kits controlled through the Prospero SDK host tools
(``prospero-ctrl`` for target/power/file control, ``prospero-run`` to run an
executable and stream its console output).
"""

from pathlib import Path
from typing import Optional

from app_runner.config import get_settings
from app_runner.errors import ProviderCommandError
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
)
from app_runner.providers.commands import (
    SdkToolRunner,
    find_ipv4_address,
    parse_key_value_lines,
    run_application_tool,
)
from app_runner.utils.files import ensure_parent_dir, require_existing
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

PS5_TOOLS = ("prospero-ctrl", "prospero-run")


class PlayStation5Provider(DeviceProvider):
    """PlayStation 5 development kit provider."""

    platform = "PlayStation5"
    supported_log_types = ("Console",)

    def __init__(self, target: Optional[str] = None, sdk_root: Optional[str] = None) -> None:
        """
        Args:
            target: Devkit IP address or host name.
            sdk_root: SDK root (defaults to SCE_PROSPERO_SDK_DIR).

        Raises:
            ProviderConfigurationError: If the SDK or its tools are missing.
        """
        super().__init__(target)
        settings = get_settings()
        self.run_timeout = settings.console.run_timeout
        self._tools = SdkToolRunner(
            platform=self.platform,
            sdk_root=sdk_root or settings.console.prospero_sdk_dir,
            sdk_env_var="SCE_PROSPERO_SDK_DIR",
            tool_dirs=("host_tools/bin",),
            tools=PS5_TOOLS,
            timeout=settings.console.command_timeout,
        )

    def _target_args(self) -> list[str]:
        return ["--target", self.target] if self.target else []

    async def connect(self, target: Optional[str] = None) -> ConnectionInfo:
        self.state = DeviceState.CONNECTING
        self.target = target or self.target
        if not self.target:
            await self.detect_and_set_default_target()

        logger.info("Connecting to PlayStation 5", target=self.target)
        try:
            await self._tools.run("prospero-ctrl", "target", "connect", *self._target_args())
        except ProviderCommandError:
            self.state = DeviceState.ERROR
            raise

        self.state = DeviceState.CONNECTED
        identifier = await self.get_device_identifier()
        logger.info("Connected to PlayStation 5", identifier=identifier)
        return ConnectionInfo(platform=self.platform, identifier=identifier)

    async def disconnect(self) -> None:
        if self.is_connected:
            try:
                await self._tools.run("prospero-ctrl", "target", "disconnect", *self._target_args())
            except ProviderCommandError as e:
                logger.warning("Error disconnecting from PlayStation 5", error=str(e))
        self.state = DeviceState.DISCONNECTED

    async def test_connection(self) -> bool:
        if not self.is_connected:
            return False
        try:
            result = await self._tools.run("prospero-ctrl", "target", "info", *self._target_args(), check=False)
        except ProviderCommandError as e:
            logger.debug("PlayStation 5 health check failed", error=str(e))
            return False
        return result.ok

    async def get_device_identifier(self) -> str:
        try:
            result = await self._tools.run("prospero-ctrl", "target", "info", *self._target_args(), check=False)
        except ProviderCommandError:
            return self.target or UNKNOWN_IDENTIFIER
        info = parse_key_value_lines(result.output)
        return info.get("Host Name") or find_ipv4_address(result.output) or self.target or UNKNOWN_IDENTIFIER

    async def get_device_status(self) -> StatusRecord:
        result = await self._tools.run("prospero-ctrl", "target", "info", *self._target_args(), check=False)
        info = parse_key_value_lines(result.output)
        return StatusRecord(
            platform=self.platform,
            status=info.get("Power Status", "Online" if result.ok else "Offline"),
            status_data=info,
        )

    async def run_application(
        self,
        executable_path: str,
        arguments: str = "",
        timeout_seconds: Optional[float] = None,
    ) -> RunResult:
        logger.info("Running application on PlayStation 5", executable=executable_path, arguments=arguments)
        args = [*self._target_args(), "--elf", executable_path]
        if arguments:
            args.extend(["--", arguments])
        return await run_application_tool(
            self._tools,
            "prospero-run",
            *args,
            executable_path=executable_path,
            arguments=arguments,
            timeout=timeout_seconds or self.run_timeout,
        )

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 1000) -> LogRecord:
        if not self.supports_log_type(log_type):
            return await super().get_device_logs(log_type, max_entries)
        result = await self._tools.run(
            "prospero-ctrl", "target", "console-output", *self._target_args(), "--lines", str(max_entries)
        )
        return LogRecord(platform=self.platform, log_type=log_type, entries=tail(result.lines, max_entries))

    async def install_application(self, package_path: PathLike) -> None:
        package = require_existing(package_path, "Package")
        logger.info("Installing package on PlayStation 5", package=str(package))
        await self._tools.run("prospero-ctrl", "package", "install", *self._target_args(), str(package))

    async def take_screenshot(self, output_path: PathLike) -> Optional[Path]:
        destination = ensure_parent_dir(output_path)
        await self._tools.run("prospero-ctrl", "target", "screenshot", *self._target_args(), str(destination))
        return destination

    async def copy_device_item(self, source_path: str, destination_path: PathLike) -> Optional[Path]:
        destination = ensure_parent_dir(destination_path)
        await self._tools.run("prospero-ctrl", "file", "get", *self._target_args(), source_path, str(destination))
        return destination

    async def start_device(self) -> None:
        await self._tools.run("prospero-ctrl", "power", "on", *self._target_args())

    async def stop_device(self) -> None:
        await self._tools.run("prospero-ctrl", "power", "off", *self._target_args())

    async def restart_device(self) -> None:
        await self._tools.run("prospero-ctrl", "power", "reboot", *self._target_args())

    async def detect_and_set_default_target(self) -> Optional[str]:
        try:
            result = await self._tools.run("prospero-ctrl", "target", "get-default", check=False)
        except ProviderCommandError as e:
            logger.warning("Could not query default PlayStation 5 target", error=str(e))
            return None
        default = result.lines[0].strip() if result.ok and result.lines else None
        if default:
            self.target = default
            logger.info("Detected default PlayStation 5 target", target=default)
        return default
