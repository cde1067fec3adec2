"""
Xbox Device Provider
====================

Xbox development kits controlled through the Microsoft GDK command-line tools.

Tools (from <GameDK>/bin):
    - xbconnect: select/wake the default console, query its address
    - xbapp: install packaged titles
    - xbrun: run an executable on the console and stream its output
    - xbcopy: copy files between the PC and the console
    - xbcapture: capture a screenshot
    - xbreboot: reboot or shut down the console

Consoles in low-power mode sometimes miss the wake handshake on the first
attempt and report a timeout HRESULT; connecting retries once on that
specific error.
"""

import asyncio
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
    CommandResult,
    SdkToolRunner,
    find_ipv4_address,
    parse_key_value_lines,
    run_application_tool,
)
from app_runner.utils.files import ensure_parent_dir, require_existing
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

# HRESULT reported by xbconnect when the console does not wake in time
XBOX_WAKE_TIMEOUT_CODE = "0x80072EE2"
XBOX_CONNECT_MAX_ATTEMPTS = 2
XBOX_CONNECT_RETRY_DELAY = 5.0

XBOX_TOOLS = ("xbconnect", "xbapp", "xbrun", "xbcopy", "xbcapture", "xbreboot")


class XboxProvider(DeviceProvider):
    """Xbox development kit provider."""

    platform = "Xbox"

    def __init__(
        self,
        target: Optional[str] = None,
        sdk_root: Optional[str] = None,
        retry_delay: float = XBOX_CONNECT_RETRY_DELAY,
    ) -> None:
        """
        Initialize Xbox provider.

        Args:
            target: Console IP address or name.
            sdk_root: GDK root (defaults to the GameDK environment variable).
            retry_delay: Seconds to wait before retrying a timed-out wake.

        Raises:
            ProviderConfigurationError: If the GDK or its tools are missing.
        """
        super().__init__(target)
        settings = get_settings()
        self.retry_delay = retry_delay
        self.run_timeout = settings.console.run_timeout
        self._tools = SdkToolRunner(
            platform=self.platform,
            sdk_root=sdk_root or settings.console.gamedk,
            sdk_env_var="GameDK",
            tool_dirs=("bin",),
            tools=XBOX_TOOLS,
            timeout=settings.console.command_timeout,
        )
        self._address: Optional[str] = None

    async def _xbconnect(self, target: Optional[str]) -> CommandResult:
        """
        Connect to (and wake) the console, retrying the known wake timeout.

        Raises:
            ProviderCommandError: On any other failure, or when the wake
                timeout persists after XBOX_CONNECT_MAX_ATTEMPTS attempts.
        """
        args = [target] if target else []
        attempt = 1
        result = await self._tools.run("xbconnect", *args, check=False)

        while (
            not result.ok
            and XBOX_WAKE_TIMEOUT_CODE.lower() in result.output.lower()
            and attempt < XBOX_CONNECT_MAX_ATTEMPTS
        ):
            logger.warning(
                "Console did not wake in time, retrying",
                target=target,
                attempt=attempt,
                max_attempts=XBOX_CONNECT_MAX_ATTEMPTS,
            )
            await asyncio.sleep(self.retry_delay)
            attempt += 1
            result = await self._tools.run("xbconnect", *args, check=False)

        if result.ok:
            return result
        raise ProviderCommandError(
            f"Failed to connect to Xbox {target or '(default console)'}: {result.output.strip()}",
            platform=self.platform,
            command=result.args,
            exit_code=result.returncode,
            output=result.output,
        )

    async def connect(self, target: Optional[str] = None) -> ConnectionInfo:
        self.state = DeviceState.CONNECTING
        target = target or self.target
        if not target:
            target = await self.detect_and_set_default_target()

        logger.info("Connecting to Xbox", target=target)
        try:
            result = await self._xbconnect(target)
        except ProviderCommandError:
            self.state = DeviceState.ERROR
            raise

        self.target = target
        self._address = find_ipv4_address(result.output) or target
        self.state = DeviceState.CONNECTED
        logger.info("Connected to Xbox", address=self._address)
        return ConnectionInfo(
            platform=self.platform,
            identifier=self._address or UNKNOWN_IDENTIFIER,
            details={"sdk_root": str(self._tools.sdk_root)},
        )

    async def disconnect(self) -> None:
        # The GDK keeps no per-client session; only local state is reset.
        self._address = None
        self.state = DeviceState.DISCONNECTED

    async def test_connection(self) -> bool:
        if not self.is_connected:
            return False
        try:
            result = await self._tools.run("xbconnect", "/Q", check=False)
        except ProviderCommandError as e:
            logger.debug("Xbox health check failed", error=str(e))
            return False
        return result.ok

    async def get_device_identifier(self) -> str:
        try:
            result = await self._tools.run("xbconnect", "/Q", check=False)
        except ProviderCommandError:
            return self._address or self.target or UNKNOWN_IDENTIFIER
        return find_ipv4_address(result.output) or self._address or self.target or UNKNOWN_IDENTIFIER

    async def get_device_status(self) -> StatusRecord:
        result = await self._tools.run("xbconnect", "/Q", check=False)
        status_data: dict = parse_key_value_lines(result.output)
        status_data["address"] = find_ipv4_address(result.output) or self._address
        return StatusRecord(
            platform=self.platform,
            status="Online" if result.ok else "Offline",
            status_data=status_data,
        )

    async def run_application(
        self,
        executable_path: str,
        arguments: str = "",
        timeout_seconds: Optional[float] = None,
    ) -> RunResult:
        logger.info("Running application on Xbox", executable=executable_path, arguments=arguments)
        args = ["/O", executable_path]
        if arguments:
            args.append(arguments)
        return await run_application_tool(
            self._tools,
            "xbrun",
            *args,
            executable_path=executable_path,
            arguments=arguments,
            timeout=timeout_seconds or self.run_timeout,
        )

    async def install_application(self, package_path: PathLike) -> None:
        package = require_existing(package_path, "Package")
        logger.info("Installing package on Xbox", package=str(package))
        await self._tools.run("xbapp", "install", str(package))

    async def take_screenshot(self, output_path: PathLike) -> Optional[Path]:
        destination = ensure_parent_dir(output_path)
        await self._tools.run("xbcapture", str(destination))
        return destination

    async def copy_device_item(self, source_path: str, destination_path: PathLike) -> Optional[Path]:
        destination = ensure_parent_dir(destination_path)
        # xbcopy addresses console drives with an "x" prefix (xd:\...)
        await self._tools.run("xbcopy", f"x{source_path}", str(destination))
        return destination

    async def start_device(self) -> None:
        await self._xbconnect(self.target)

    async def stop_device(self) -> None:
        await self._tools.run("xbreboot", "/s")
        self.state = DeviceState.DISCONNECTED

    async def restart_device(self) -> None:
        await self._tools.run("xbreboot")
        await self._xbconnect(self.target)

    async def detect_and_set_default_target(self) -> Optional[str]:
        try:
            result = await self._tools.run("xbconnect", "/Q", check=False)
        except ProviderCommandError as e:
            logger.warning("Could not query default Xbox console", error=str(e))
            return None
        address = find_ipv4_address(result.output) if result.ok else None
        if address:
            self.target = address
            logger.info("Detected default Xbox console", address=address)
        return address
