"""
Error Taxonomy
==============

Exceptions raised by the session, locking and provider layers.

Hierarchy:
    AppRunnerError
    ├── LockError
    │   ├── LockTimeoutError
    │   └── LockAcquisitionError
    ├── NoActiveSessionError
    ├── UnsupportedPlatformError
    └── ProviderError
        ├── ProviderConfigurationError
        ├── ProviderCommandError
        │   └── CommandTimeoutError
        └── RemoteApiError
"""

from typing import Iterable, Optional


class AppRunnerError(Exception):
    """Base class for all app-runner errors."""


class LockError(AppRunnerError):
    """Base class for resource lock failures."""

    def __init__(self, message: str, resource_name: str) -> None:
        super().__init__(message)
        self.resource_name = resource_name


class LockTimeoutError(LockError):
    """
    Raised when a resource lock could not be acquired in time.

    The message always contains the resource name and the timeout so
    automation tooling can match on it.
    """

    def __init__(self, resource_name: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Timed out after {timeout_seconds} seconds waiting for exclusive "
            f"access to resource '{resource_name}'",
            resource_name,
        )
        self.timeout_seconds = timeout_seconds


class LockAcquisitionError(LockError):
    """Raised on an unexpected OS-level failure while acquiring a lock."""


class NoActiveSessionError(AppRunnerError):
    """Raised when a session-scoped operation runs without a healthy session."""


class UnsupportedPlatformError(AppRunnerError):
    """Raised when the provider factory is given an unknown platform."""

    def __init__(self, platform: str, supported: Iterable[str]) -> None:
        self.platform = platform
        self.supported = list(supported)
        super().__init__(
            f"Unsupported platform: '{platform}'. "
            f"Supported platforms: {', '.join(self.supported)}"
        )


class ProviderError(AppRunnerError):
    """Base class for errors raised by device providers."""

    def __init__(self, message: str, platform: str = "") -> None:
        super().__init__(message)
        self.platform = platform


class ProviderConfigurationError(ProviderError):
    """Required environment, SDK or credentials are missing."""


class ProviderCommandError(ProviderError):
    """A vendor command-line tool failed."""

    def __init__(
        self,
        message: str,
        platform: str = "",
        command: Optional[list[str]] = None,
        exit_code: Optional[int] = None,
        output: str = "",
    ) -> None:
        super().__init__(message, platform)
        self.command = command or []
        self.exit_code = exit_code
        self.output = output


class CommandTimeoutError(ProviderCommandError):
    """A vendor command-line tool did not finish within its timeout."""


class RemoteApiError(ProviderError):
    """A cloud device API request failed."""

    def __init__(
        self,
        method: str,
        url: str,
        status: Optional[int] = None,
        detail: str = "",
        platform: str = "",
    ) -> None:
        status_text = f"HTTP {status}" if status is not None else "no response"
        message = f"{method} {url} failed ({status_text})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, platform)
        self.method = method
        self.url = url
        self.status = status
        self.detail = detail
