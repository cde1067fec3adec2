"""
Device Session Management
=========================

Owns the single active device session of a process (or of one automation
worker): the connected provider, the resource lock protecting the device,
and metadata about the connection.

Lifecycle:
    NO_SESSION -> CONNECTING -> ACTIVE -> DISCONNECTING -> NO_SESSION

Connecting acquires the resource lock before any provider I/O and releases
it again if provider creation or connection fails, so no lock is ever held
without a session. Every device operation goes through assert_session,
which refuses to run against a missing or unhealthy session.

Usage:
    from app_runner.session import SessionManager

    async with SessionManager() as manager:
        await manager.connect("Xbox", "192.168.1.100")
        result = await manager.run_application("Game.exe", "--smoke-test")
"""

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Any, Optional

from app_runner.config import get_settings
from app_runner.errors import LockAcquisitionError, NoActiveSessionError
from app_runner.locking import LockHandle, ResourceLock, get_resource_name
from app_runner.providers.base import (
    DeviceProvider,
    LogRecord,
    PathLike,
    RunResult,
    StatusRecord,
    utcnow,
)
from app_runner.providers.factory import ProviderFactory
from app_runner.utils.logger import LogContext, get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    """State of the session manager."""

    NO_SESSION = auto()
    CONNECTING = auto()
    ACTIVE = auto()
    DISCONNECTING = auto()


@dataclass(frozen=True)
class Session:
    """
    An active device session.

    Attributes:
        provider: Connected device provider.
        resource_name: Lock key of the device ("Xbox-192.168.1.100").
        lock: Held resource lock.
        platform: Platform name.
        identifier: Device address or name reported at connect.
        connected_at: When the session was established (UTC).
        is_connected: Whether the provider reported a successful connect.
    """

    provider: DeviceProvider
    resource_name: str
    lock: LockHandle
    platform: str
    identifier: str
    connected_at: datetime = field(default_factory=utcnow)
    is_connected: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "platform": self.platform,
            "resource_name": self.resource_name,
            "identifier": self.identifier,
            "connected_at": self.connected_at.isoformat(),
            "is_connected": self.is_connected,
            "lock_abandoned": self.lock.abandoned,
        }


class SessionManager:
    """
    Manages at most one device session at a time.

    Connect and disconnect sequences are serialized, so concurrent callers
    in one event loop never observe a half-built session. Exclusive access
    across processes comes from the ResourceLock.
    """

    def __init__(
        self,
        factory: Optional[ProviderFactory] = None,
        resource_lock: Optional[ResourceLock] = None,
        default_timeout_seconds: Optional[float] = None,
    ) -> None:
        """
        Initialize session manager.

        Args:
            factory: Provider factory (defaults to ProviderFactory()).
            resource_lock: Lock manager (defaults to ResourceLock()).
            default_timeout_seconds: Lock wait used when connect gets no
                timeout (defaults to APP_RUNNER_LOCK_TIMEOUT).
        """
        self.factory = factory or ProviderFactory()
        self.resource_lock = resource_lock or ResourceLock()
        if default_timeout_seconds is None:
            default_timeout_seconds = get_settings().lock.lock_timeout
        self.default_timeout_seconds = default_timeout_seconds

        self.state = SessionState.NO_SESSION
        self._session: Optional[Session] = None
        self._transition = asyncio.Lock()

    async def connect(
        self,
        platform: str,
        target: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Session:
        """
        Connect to a device, making it the current session.

        An active session for another device is disconnected first. An
        active, healthy session for the same device is returned unchanged.

        Args:
            platform: Platform name (see get_supported_platforms).
            target: Optional device address/name.
            timeout_seconds: Maximum seconds to wait for the device lock.

        Returns:
            The new (or reused) session.

        Raises:
            LockTimeoutError: Another holder kept the device past the timeout.
            LockAcquisitionError: The lock could not be created or taken.
            UnsupportedPlatformError: Unknown platform name.
            ProviderError: Provider construction or connection failed.
        """
        resource_name = get_resource_name(platform, target)
        timeout = self.default_timeout_seconds if timeout_seconds is None else timeout_seconds

        async with self._transition:
            current = self._session
            if current is not None:
                if current.resource_name == resource_name:
                    if await self.test_connection():
                        logger.info("Reusing active session", resource=resource_name)
                        return current
                    logger.warning("Active session is unhealthy, reconnecting", resource=resource_name)
                else:
                    logger.info(
                        "Switching device session",
                        previous=current.resource_name,
                        resource=resource_name,
                    )
                await self._teardown()

            with LogContext(platform=platform, resource=resource_name):
                self.state = SessionState.CONNECTING
                logger.info("Connecting", target=target, lock_timeout=timeout)

                try:
                    handle = await self._acquire_lock(resource_name, timeout)
                except BaseException:
                    self.state = SessionState.NO_SESSION
                    raise

                try:
                    provider = self.factory.create_provider(platform, target=target)
                    info = await provider.connect(target)
                except BaseException as e:
                    logger.error("Connect failed, releasing device lock", error=str(e))
                    self.resource_lock.release(handle, resource_name)
                    self.state = SessionState.NO_SESSION
                    raise

                self._session = Session(
                    provider=provider,
                    resource_name=resource_name,
                    lock=handle,
                    platform=platform,
                    identifier=info.identifier,
                )
                self.state = SessionState.ACTIVE
                logger.info(
                    "Session established",
                    identifier=info.identifier,
                    lock_abandoned=handle.abandoned,
                )
                return self._session

    async def _acquire_lock(self, resource_name: str, timeout: float) -> LockHandle:
        """
        Wait for the device lock in a worker thread.

        If the caller is cancelled, the worker stops waiting within
        CANCEL_CHECK_INTERVAL seconds, and a lock it takes after the
        cancellation is released again instead of being left behind.
        """
        cancelled = threading.Event()
        handoff = threading.Lock()
        delivered: list[LockHandle] = []

        def acquire() -> LockHandle:
            handle = self.resource_lock.acquire(resource_name, timeout, cancel_event=cancelled)
            with handoff:
                if not cancelled.is_set():
                    delivered.append(handle)
                    return handle
            self.resource_lock.release(handle, resource_name)
            raise LockAcquisitionError(f"Acquisition of resource '{resource_name}' was cancelled", resource_name)

        try:
            return await asyncio.to_thread(acquire)
        except asyncio.CancelledError:
            with handoff:
                cancelled.set()
                orphaned = list(delivered)
            for handle in orphaned:
                logger.info("Connect cancelled, releasing device lock", resource=resource_name)
                self.resource_lock.release(handle, resource_name)
            raise

    async def disconnect(self) -> None:
        """
        End the current session. No-op without one.

        Provider disconnect errors are logged; the lock is always released.
        """
        async with self._transition:
            await self._teardown()

    async def _teardown(self) -> None:
        session = self._session
        if session is None:
            return

        self.state = SessionState.DISCONNECTING
        with LogContext(platform=session.platform, resource=session.resource_name):
            try:
                await session.provider.disconnect()
            except Exception as e:
                logger.warning("Error disconnecting provider", error=str(e))
            finally:
                self.resource_lock.release(session.lock, session.resource_name)
                self._session = None
                self.state = SessionState.NO_SESSION
            logger.info("Disconnected")

    def get_session(self) -> Optional[Session]:
        """Return the current session, if any."""
        return self._session

    async def test_connection(self) -> bool:
        """Health-check the current session; False without one."""
        session = self._session
        if session is None:
            return False
        try:
            return await session.provider.test_connection()
        except Exception as e:
            logger.warning("Connection test raised", resource=session.resource_name, error=str(e))
            return False

    async def assert_session(self) -> Session:
        """
        Return the current session if it is present and healthy.

        Raises:
            NoActiveSessionError: No session, or the device stopped responding.
        """
        session = self._session
        if session is None:
            raise NoActiveSessionError("No active device session. Call connect() first.")
        if not await self.test_connection():
            raise NoActiveSessionError(
                f"Device session for '{session.resource_name}' is no longer responding. "
                "Disconnect and reconnect before continuing."
            )
        return session

    async def get_device_identifier(self) -> str:
        session = await self.assert_session()
        return await session.provider.get_device_identifier()

    async def get_device_status(self) -> StatusRecord:
        session = await self.assert_session()
        return await session.provider.get_device_status()

    async def run_application(
        self,
        executable_path: str,
        arguments: str = "",
        timeout_seconds: Optional[float] = None,
    ) -> RunResult:
        """Run an application on the session's device and wait for it."""
        session = await self.assert_session()
        with LogContext(platform=session.platform, resource=session.resource_name):
            return await session.provider.run_application(executable_path, arguments, timeout_seconds)

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 1000) -> LogRecord:
        session = await self.assert_session()
        return await session.provider.get_device_logs(log_type, max_entries)

    async def take_screenshot(self, output_path: PathLike) -> Optional[Path]:
        session = await self.assert_session()
        return await session.provider.take_screenshot(output_path)

    async def copy_device_item(self, source_path: str, destination_path: PathLike) -> Optional[Path]:
        session = await self.assert_session()
        return await session.provider.copy_device_item(source_path, destination_path)

    async def install_application(self, package_path: PathLike) -> None:
        session = await self.assert_session()
        with LogContext(platform=session.platform, resource=session.resource_name):
            await session.provider.install_application(package_path)

    async def start_device(self) -> None:
        session = await self.assert_session()
        await session.provider.start_device()

    async def stop_device(self) -> None:
        session = await self.assert_session()
        await session.provider.stop_device()

    async def restart_device(self) -> None:
        session = await self.assert_session()
        await session.provider.restart_device()

    async def close(self) -> None:
        """Process-level cleanup: end any active session."""
        await self.disconnect()

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
