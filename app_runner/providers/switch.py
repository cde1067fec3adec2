"""
Nintendo Switch Device Provider
===============================

Switch development units controlled through the Nintendo SDK command-line
tools (``ControlTarget`` for connection/power/capture, ``RunOnTarget`` to
run an application and collect its output).
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
    PathLike,
    RunResult,
    StatusRecord,
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

SWITCH_TOOLS = ("ControlTarget", "RunOnTarget")


class SwitchProvider(DeviceProvider):
    """Nintendo Switch development unit provider."""

    platform = "Switch"

    def __init__(self, target: Optional[str] = None, sdk_root: Optional[str] = None) -> None:
        """
        Args:
            target: Target name, serial or IP address.
            sdk_root: SDK root (defaults to NINTENDO_SDK_ROOT).

        Raises:
            ProviderConfigurationError: If the SDK or its tools are missing.
        """
        super().__init__(target)
        settings = get_settings()
        self.run_timeout = settings.console.run_timeout
        self._tools = SdkToolRunner(
            platform=self.platform,
            sdk_root=sdk_root or settings.console.nintendo_sdk_root,
            sdk_env_var="NINTENDO_SDK_ROOT",
            tool_dirs=("Tools/CommandLineTools",),
            tools=SWITCH_TOOLS,
            timeout=settings.console.command_timeout,
        )

    def _target_args(self) -> list[str]:
        return ["--target", self.target] if self.target else []

    async def connect(self, target: Optional[str] = None) -> ConnectionInfo:
        self.state = DeviceState.CONNECTING
        self.target = target or self.target
        if not self.target:
            await self.detect_and_set_default_target()

        logger.info("Connecting to Switch", target=self.target)
        try:
            await self._tools.run("ControlTarget", "connect", *self._target_args())
        except ProviderCommandError:
            self.state = DeviceState.ERROR
            raise

        self.state = DeviceState.CONNECTED
        identifier = await self.get_device_identifier()
        logger.info("Connected to Switch", identifier=identifier)
        return ConnectionInfo(platform=self.platform, identifier=identifier)

    async def disconnect(self) -> None:
        if self.is_connected:
            try:
                await self._tools.run("ControlTarget", "disconnect", *self._target_args())
            except ProviderCommandError as e:
                logger.warning("Error disconnecting from Switch", error=str(e))
        self.state = DeviceState.DISCONNECTED

    async def test_connection(self) -> bool:
        if not self.is_connected:
            return False
        try:
            result = await self._tools.run("ControlTarget", "get-status", *self._target_args(), check=False)
        except ProviderCommandError as e:
            logger.debug("Switch health check failed", error=str(e))
            return False
        return result.ok

    async def get_device_identifier(self) -> str:
        try:
            result = await self._tools.run("ControlTarget", "get-status", *self._target_args(), check=False)
        except ProviderCommandError:
            return self.target or UNKNOWN_IDENTIFIER
        info = parse_key_value_lines(result.output)
        return info.get("Name") or find_ipv4_address(result.output) or self.target or UNKNOWN_IDENTIFIER

    async def get_device_status(self) -> StatusRecord:
        result = await self._tools.run("ControlTarget", "get-status", *self._target_args(), check=False)
        info = parse_key_value_lines(result.output)
        return StatusRecord(
            platform=self.platform,
            status=info.get("Status", "Online" if result.ok else "Offline"),
            status_data=info,
        )

    async def run_application(
        self,
        executable_path: str,
        arguments: str = "",
        timeout_seconds: Optional[float] = None,
    ) -> RunResult:
        logger.info("Running application on Switch", executable=executable_path, arguments=arguments)
        args = [executable_path, *self._target_args()]
        if arguments:
            args.extend(["--", arguments])
        return await run_application_tool(
            self._tools,
            "RunOnTarget",
            *args,
            executable_path=executable_path,
            arguments=arguments,
            timeout=timeout_seconds or self.run_timeout,
        )

    async def install_application(self, package_path: PathLike) -> None:
        package = require_existing(package_path, "Package")
        logger.info("Installing package on Switch", package=str(package))
        await self._tools.run("ControlTarget", "install-application", str(package), *self._target_args())

    async def take_screenshot(self, output_path: PathLike) -> Optional[Path]:
        destination = ensure_parent_dir(output_path)
        await self._tools.run(
            "ControlTarget",
            "take-screenshot",
            "--directory",
            str(destination.parent),
            "--file-name",
            destination.name,
            *self._target_args(),
        )
        return destination

    async def start_device(self) -> None:
        await self._tools.run("ControlTarget", "power-on", *self._target_args())

    async def stop_device(self) -> None:
        await self._tools.run("ControlTarget", "power-off", *self._target_args())

    async def restart_device(self) -> None:
        await self._tools.run("ControlTarget", "reset", *self._target_args())

    async def detect_and_set_default_target(self) -> Optional[str]:
        try:
            result = await self._tools.run("ControlTarget", "get-default", check=False)
        except ProviderCommandError as e:
            logger.warning("Could not query default Switch target", error=str(e))
            return None
        info = parse_key_value_lines(result.output)
        default = info.get("Name") or (result.lines[0].strip() if result.ok and result.lines else None)
        if result.ok and default:
            self.target = default
            logger.info("Detected default Switch target", target=default)
            return default
        return None
