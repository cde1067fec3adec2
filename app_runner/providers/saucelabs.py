"""
Sauce Labs Cloud Device Provider
================================

Android and iOS real devices hosted by Sauce Labs, driven through the
Appium (WebDriver) REST API.

Sauce Labs provides cloud-hosted real devices. This provider handles
session provisioning, app upload to Sauce storage, app-state polling,
device log retrieval and screenshot capture. Device lifecycle (power,
reboot) is managed by Sauce Labs and is not available.

Usage:
    from app_runner.providers.saucelabs import AndroidSauceLabsProvider

    provider = AndroidSauceLabsProvider(target="Google Pixel.*")
    await provider.connect()
    result = await provider.run_application("build/game.apk")
"""

import asyncio
import shlex
import time
from pathlib import Path
from typing import Any, Optional

import aiohttp

from app_runner.config import get_settings
from app_runner.errors import ProviderConfigurationError, RemoteApiError
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
from app_runner.utils.files import require_existing, save_screenshot_base64
from app_runner.utils.logger import get_logger
from app_runner.utils.security import SecureString, mask_sensitive, sanitize_for_logging

logger = get_logger(__name__)

# Appium app states (appium:device/app_state)
APP_STATE_NOT_INSTALLED = 0
APP_STATE_NOT_RUNNING = 1

# Seconds between app state checks while a run is in progress
APP_STATE_POLL_INTERVAL = 2.0

# Real-device sessions can take minutes to allocate
SESSION_CREATE_TIMEOUT = 600


class SauceLabsProvider(DeviceProvider):
    """
    Sauce Labs real-device provider.

    Subclasses pick the mobile OS, automation backend and device log type.
    """

    #: Appium platformName
    platform_name: str = ""

    #: Appium automationName
    automation_name: str = ""

    #: Appium log type holding the device log (logcat / syslog)
    device_log_type: str = ""

    def __init__(
        self,
        target: Optional[str] = None,
        username: Optional[str] = None,
        access_key: Optional[str] = None,
        region: Optional[str] = None,
    ) -> None:
        """
        Initialize Sauce Labs provider.

        Args:
            target: Device name or regex (e.g. "Samsung Galaxy S2[0-9]").
            username: Sauce Labs username.
            access_key: Sauce Labs access key.
            region: Data center (e.g. "us-west-1").

        Raises:
            ProviderConfigurationError: If credentials are not configured.
        """
        settings = get_settings().saucelabs
        super().__init__(target or settings.sauce_device_name or None)

        self.username = username or settings.sauce_username
        self.access_key = SecureString(access_key or settings.sauce_access_key)
        self.session_name = settings.sauce_session_name
        self.run_timeout = get_settings().console.run_timeout

        if not self.username or not self.access_key:
            raise ProviderConfigurationError(
                "Sauce Labs credentials not configured: set SAUCE_USERNAME and SAUCE_ACCESS_KEY",
                platform=self.platform,
            )

        if region:
            settings = settings.model_copy(update={"sauce_region": region})
        self.api_url = settings.get_api_url()
        self.hub_url = settings.get_hub_url()

        self._session: Optional[aiohttp.ClientSession] = None
        self._session_id: Optional[str] = None
        self._capabilities: dict[str, Any] = {}
        self._device_name: Optional[str] = None

    @property
    def _session_url(self) -> str:
        return f"{self.hub_url}/session/{self._session_id}"

    def _get_auth(self) -> aiohttp.BasicAuth:
        """Get HTTP basic auth for Sauce Labs."""
        return aiohttp.BasicAuth(self.username, self.access_key.get_secret())

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                auth=self._get_auth(),
                timeout=aiohttp.ClientTimeout(total=SESSION_CREATE_TIMEOUT),
            )
        return self._session

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            RemoteApiError: On connection failure or an HTTP error status.
        """
        session = await self._get_session()
        try:
            async with session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    detail = await response.text()
                    raise RemoteApiError(method, url, status=response.status, detail=detail[:500], platform=self.platform)
                if response.content_type == "application/json":
                    return await response.json()
                return {}
        except aiohttp.ClientError as e:
            raise RemoteApiError(method, url, detail=str(e), platform=self.platform) from e

    def _base_capabilities(self) -> dict[str, Any]:
        capabilities: dict[str, Any] = {
            "platformName": self.platform_name,
            "appium:automationName": self.automation_name,
            "sauce:options": {
                "name": self.session_name,
                "appiumVersion": "latest",
            },
        }
        if self.target:
            capabilities["appium:deviceName"] = self.target
        return capabilities

    def _argument_capabilities(self, arguments: str) -> dict[str, Any]:
        """Capabilities passing launch arguments to the app."""
        return {}

    def _app_id(self, capabilities: dict[str, Any]) -> Optional[str]:
        """Extract the installed app's id from session capabilities."""
        return None

    async def _create_session(self, capabilities: dict[str, Any]) -> None:
        logger.debug("Creating Appium session", capabilities=sanitize_for_logging(capabilities))
        start_time = time.monotonic()
        data = await self._request(
            "POST",
            f"{self.hub_url}/session",
            json={"capabilities": {"alwaysMatch": capabilities}},
        )
        value = data.get("value", {})
        self._session_id = value.get("sessionId")
        if not self._session_id:
            raise RemoteApiError("POST", f"{self.hub_url}/session", detail="No session ID in response", platform=self.platform)

        self._capabilities = value.get("capabilities", {})
        self._device_name = (
            self._capabilities.get("deviceName")
            or self._capabilities.get("appium:deviceName")
            or self._capabilities.get("testobject_device")
            or self.target
        )
        logger.info(
            "Sauce Labs session created",
            session_id=self._session_id,
            device=self._device_name,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )

    async def _delete_session(self) -> None:
        if not self._session_id:
            return
        try:
            await self._request("DELETE", self._session_url)
        except RemoteApiError as e:
            logger.warning("Error terminating Sauce Labs session", session_id=self._session_id, error=str(e))
        self._session_id = None

    async def connect(self, target: Optional[str] = None) -> ConnectionInfo:
        """
        Allocate a real device and start an Appium session on it.

        Args:
            target: Device name or regex, overriding the configured one.
        """
        self.state = DeviceState.CONNECTING
        self.target = target or self.target
        logger.info(
            "Connecting to Sauce Labs device",
            platform=self.platform,
            device=self.target or "(any)",
            username=mask_sensitive(self.username),
        )

        try:
            await self._create_session(self._base_capabilities())
        except RemoteApiError:
            self.state = DeviceState.ERROR
            await self._close_http()
            raise

        self.state = DeviceState.CONNECTED
        return ConnectionInfo(
            platform=self.platform,
            identifier=self._device_name or UNKNOWN_IDENTIFIER,
            details={
                "session_id": self._session_id,
                "platform_version": self._capabilities.get("platformVersion", ""),
            },
        )

    async def _close_http(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def disconnect(self) -> None:
        """Terminate the Appium session and release the device."""
        await self._delete_session()
        await self._close_http()
        self.state = DeviceState.DISCONNECTED
        logger.info("Disconnected from Sauce Labs", platform=self.platform)

    async def test_connection(self) -> bool:
        if not self.is_connected or not self._session_id:
            return False
        try:
            await self._request("GET", self._session_url)
        except RemoteApiError as e:
            logger.debug("Sauce Labs health check failed", error=str(e))
            return False
        return True

    async def get_device_identifier(self) -> str:
        return self._device_name or self.target or UNKNOWN_IDENTIFIER

    async def get_device_status(self) -> StatusRecord:
        try:
            data = await self._request("GET", self._session_url)
        except RemoteApiError as e:
            logger.warning("Could not read Sauce Labs session", error=str(e))
            return StatusRecord(platform=self.platform, status="Offline")
        capabilities = data.get("value", {})
        return StatusRecord(
            platform=self.platform,
            status="Online",
            status_data={
                "session_id": self._session_id,
                "device": self._device_name,
                "platform_version": capabilities.get("platformVersion", ""),
                "capabilities": sanitize_for_logging(capabilities),
            },
        )

    async def upload_app(self, app_path: PathLike) -> str:
        """
        Upload an app binary to Sauce storage.

        Returns:
            The storage file id.
        """
        app = require_existing(app_path, "App")
        url = f"{self.api_url}/v1/storage/upload"
        form = aiohttp.FormData()
        form.add_field(
            "payload",
            await asyncio.to_thread(app.read_bytes),
            filename=app.name,
            content_type="application/octet-stream",
        )
        form.add_field("name", app.name)

        logger.info("Uploading app to Sauce storage", app=app.name)
        data = await self._request("POST", url, data=form)
        file_id = data.get("item", {}).get("id")
        if not file_id:
            raise RemoteApiError("POST", url, detail="No file id in upload response", platform=self.platform)
        return file_id

    async def _app_state(self, app_id: str) -> int:
        data = await self._request(
            "POST",
            f"{self._session_url}/appium/device/app_state",
            json={"appId": app_id, "bundleId": app_id},
        )
        return int(data.get("value", APP_STATE_NOT_INSTALLED))

    async def _read_log(self, log_type: str) -> list[str]:
        data = await self._request("POST", f"{self._session_url}/se/log", json={"type": log_type})
        entries = data.get("value", []) or []
        return [entry.get("message", "") if isinstance(entry, dict) else str(entry) for entry in entries]

    async def run_application(
        self,
        executable_path: str,
        arguments: str = "",
        timeout_seconds: Optional[float] = None,
    ) -> RunResult:
        """
        Upload an app, launch it on the device and wait for it to stop.

        The session is recreated with the uploaded app, which Appium
        installs and launches. Sauce Labs cannot report the app's exit
        code, so the result carries ``exit_code=None``.

        Args:
            executable_path: Local .apk/.aab (Android) or .ipa (iOS) file.
            arguments: Launch arguments for the app.
            timeout_seconds: Maximum time to wait for the app to stop.
        """
        timeout = timeout_seconds or self.run_timeout
        file_id = await self.upload_app(executable_path)

        capabilities = self._base_capabilities()
        capabilities["appium:app"] = f"storage:{file_id}"
        capabilities.update(self._argument_capabilities(arguments))

        await self._delete_session()
        started_at = utcnow()
        try:
            await self._create_session(capabilities)
        except RemoteApiError:
            self.state = DeviceState.ERROR
            raise

        app_id = self._app_id(self._capabilities)
        timed_out = False
        if app_id:
            loop = asyncio.get_running_loop()
            deadline = loop.time() + timeout
            while await self._app_state(app_id) > APP_STATE_NOT_RUNNING:
                if loop.time() >= deadline:
                    timed_out = True
                    logger.warning("Application still running at timeout, terminating", app_id=app_id, timeout=timeout)
                    await self._request(
                        "POST",
                        f"{self._session_url}/appium/device/terminate_app",
                        json={"appId": app_id, "bundleId": app_id},
                    )
                    break
                await asyncio.sleep(APP_STATE_POLL_INTERVAL)
        else:
            logger.warning("App id not reported by session, not waiting for the app to stop")

        output = await self._read_log(self.device_log_type)
        return RunResult(
            platform=self.platform,
            executable_path=executable_path,
            arguments=arguments,
            started_at=started_at,
            finished_at=utcnow(),
            output=output,
            exit_code=None,
            timed_out=timed_out,
        )

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 1000) -> LogRecord:
        if not self.supports_log_type(log_type):
            return await super().get_device_logs(log_type, max_entries)

        log_types = self.supported_log_types if log_type.lower() == "all" else [log_type.lower()]
        entries: list[str] = []
        for name in log_types:
            entries.extend(await self._read_log(name))
        return LogRecord(platform=self.platform, log_type=log_type, entries=tail(entries, max_entries))

    async def take_screenshot(self, output_path: PathLike) -> Optional[Path]:
        data = await self._request("GET", f"{self._session_url}/screenshot")
        return save_screenshot_base64(data.get("value", ""), output_path)


class AndroidSauceLabsProvider(SauceLabsProvider):
    """Android real devices on Sauce Labs (UiAutomator2)."""

    platform = "AndroidSauceLabs"
    supported_log_types = ("logcat", "crashlog")
    platform_name = "Android"
    automation_name = "UiAutomator2"
    device_log_type = "logcat"

    def _argument_capabilities(self, arguments: str) -> dict[str, Any]:
        if not arguments:
            return {}
        return {"appium:optionalIntentArguments": arguments}

    def _app_id(self, capabilities: dict[str, Any]) -> Optional[str]:
        return capabilities.get("appPackage") or capabilities.get("appium:appPackage")


class IOSSauceLabsProvider(SauceLabsProvider):
    """iOS real devices on Sauce Labs (XCUITest)."""

    platform = "iOSSauceLabs"
    supported_log_types = ("syslog", "crashlog")
    platform_name = "iOS"
    automation_name = "XCUITest"
    device_log_type = "syslog"

    def _argument_capabilities(self, arguments: str) -> dict[str, Any]:
        if not arguments:
            return {}
        return {"appium:processArguments": {"args": shlex.split(arguments)}}

    def _app_id(self, capabilities: dict[str, Any]) -> Optional[str]:
        return (
            capabilities.get("bundleId")
            or capabilities.get("appium:bundleId")
            or capabilities.get("CFBundleIdentifier")
        )
