"""
Provider Factory
================

Maps platform names to DeviceProvider implementations.

Platform names are matched exactly (case-sensitive). Provider modules are
imported on first use so that a host without, say, aiohttp or a console
SDK can still use the other providers.
"""

from typing import Any, Optional

from app_runner.errors import UnsupportedPlatformError
from app_runner.providers.base import DeviceProvider
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_PLATFORMS: tuple[str, ...] = (
    "Xbox",
    "PlayStation5",
    "Switch",
    "Mock",
    "Windows",
    "MacOS",
    "Linux",
    "Adb",
    "AndroidSauceLabs",
    "iOSSauceLabs",
)


def _provider_class(platform: str) -> type[DeviceProvider]:
    """Resolve the provider class for a supported platform name."""
    if platform == "Xbox":
        from app_runner.providers.xbox import XboxProvider

        return XboxProvider
    if platform == "PlayStation5":
        from app_runner.providers.playstation5 import PlayStation5Provider

        return PlayStation5Provider
    if platform == "Switch":
        from app_runner.providers.switch import SwitchProvider

        return SwitchProvider
    if platform == "Mock":
        from app_runner.providers.mock import MockProvider

        return MockProvider
    if platform == "Windows":
        from app_runner.providers.local import WindowsProvider

        return WindowsProvider
    if platform == "MacOS":
        from app_runner.providers.local import MacOSProvider

        return MacOSProvider
    if platform == "Linux":
        from app_runner.providers.local import LinuxProvider

        return LinuxProvider
    if platform == "Adb":
        from app_runner.providers.adb import AdbProvider

        return AdbProvider
    if platform == "AndroidSauceLabs":
        from app_runner.providers.saucelabs import AndroidSauceLabsProvider

        return AndroidSauceLabsProvider
    if platform == "iOSSauceLabs":
        from app_runner.providers.saucelabs import IOSSauceLabsProvider

        return IOSSauceLabsProvider
    raise UnsupportedPlatformError(platform, SUPPORTED_PLATFORMS)


class ProviderFactory:
    """
    Creates device providers by platform name.

    SessionManager takes a factory instance so tests can substitute one
    that hands out pre-built (mock) providers.
    """

    def create_provider(self, platform: str, target: Optional[str] = None, **kwargs: Any) -> DeviceProvider:
        """
        Create a provider for ``platform``.

        Args:
            platform: Exact platform name from SUPPORTED_PLATFORMS.
            target: Optional device address/name.
            **kwargs: Provider-specific constructor arguments.

        Returns:
            A new, unconnected DeviceProvider.

        Raises:
            UnsupportedPlatformError: If the platform is unknown.
            ProviderConfigurationError: If the provider's environment is
                not configured.
        """
        if platform not in SUPPORTED_PLATFORMS:
            raise UnsupportedPlatformError(platform, SUPPORTED_PLATFORMS)

        provider_class = _provider_class(platform)
        logger.debug("Creating provider", platform=platform, provider=provider_class.__name__, target=target)
        return provider_class(target=target, **kwargs)

    def get_supported_platforms(self) -> list[str]:
        """Platform names accepted by create_provider, in registry order."""
        return list(SUPPORTED_PLATFORMS)

    def is_platform_supported(self, platform: str) -> bool:
        return platform in SUPPORTED_PLATFORMS


_default_factory = ProviderFactory()


def create_provider(platform: str, target: Optional[str] = None, **kwargs: Any) -> DeviceProvider:
    """Create a provider with the default factory."""
    return _default_factory.create_provider(platform, target=target, **kwargs)


def get_supported_platforms() -> list[str]:
    """List supported platform names."""
    return _default_factory.get_supported_platforms()


def is_platform_supported(platform: str) -> bool:
    """Check whether ``platform`` is a supported platform name."""
    return _default_factory.is_platform_supported(platform)
