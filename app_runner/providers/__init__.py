"""
Device Providers
================

Device abstraction layer over consoles, desktops, ADB devices and
Sauce Labs cloud devices.

This package contains:
    - base: DeviceProvider ABC and result records
    - commands: vendor tool execution helpers
    - factory: platform name to provider mapping
    - mock, local, xbox, playstation5, switch, adb, saucelabs: backends

Backend modules are imported lazily by the factory.
"""

from app_runner.providers.base import (
    ConnectionInfo,
    DeviceProvider,
    DeviceState,
    LogRecord,
    RunResult,
    StatusRecord,
)
from app_runner.providers.factory import (
    SUPPORTED_PLATFORMS,
    ProviderFactory,
    create_provider,
    get_supported_platforms,
    is_platform_supported,
)

__all__ = [
    "ConnectionInfo",
    "DeviceProvider",
    "DeviceState",
    "LogRecord",
    "RunResult",
    "StatusRecord",
    "SUPPORTED_PLATFORMS",
    "ProviderFactory",
    "create_provider",
    "get_supported_platforms",
    "is_platform_supported",
]
