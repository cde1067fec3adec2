"""
Configuration Management
========================

Centralized configuration using Pydantic Settings.
Loads from environment variables and .env file.
"""

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Shared config that all settings classes use to load .env
_shared_config = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    env_prefix="",
    extra="ignore",
)


class LockSettings(BaseSettings):
    """Cross-process resource lock settings."""

    model_config = _shared_config

    lock_dir: Optional[Path] = Field(
        default=None,
        validation_alias="APP_RUNNER_LOCK_DIR",
        description="Directory holding lock files (defaults to <tmp>/app-runner-locks)",
    )
    lock_namespace: str = Field(
        default="AppRunner",
        validation_alias="APP_RUNNER_LOCK_NAMESPACE",
        description="Prefix applied to every lock object name",
    )
    lock_timeout: float = Field(
        default=3600.0,
        validation_alias="APP_RUNNER_LOCK_TIMEOUT",
        description="Default seconds to wait for exclusive access to a device",
    )

    @field_validator("lock_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Reject negative timeouts."""
        if v < 0:
            raise ValueError("lock timeout must be >= 0")
        return v

    def get_lock_dir(self) -> Path:
        """Return the configured lock directory or the temp-dir default."""
        if self.lock_dir:
            return self.lock_dir
        return Path(tempfile.gettempdir()) / "app-runner-locks"


class ConsoleSettings(BaseSettings):
    """Game console SDK locations and command timeouts."""

    model_config = _shared_config

    gamedk: str = Field(
        default="",
        validation_alias=AliasChoices("GAMEDK", "GameDK"),
        description="Microsoft GDK root (Xbox tools live in <GameDK>/bin)",
    )
    prospero_sdk_dir: str = Field(
        default="",
        validation_alias="SCE_PROSPERO_SDK_DIR",
        description="PlayStation 5 SDK root",
    )
    nintendo_sdk_root: str = Field(
        default="",
        validation_alias="NINTENDO_SDK_ROOT",
        description="Nintendo SDK root",
    )
    command_timeout: float = Field(
        default=120.0,
        validation_alias="APP_RUNNER_COMMAND_TIMEOUT",
        description="Timeout for individual vendor tool invocations (seconds)",
    )
    run_timeout: float = Field(
        default=600.0,
        validation_alias="APP_RUNNER_RUN_TIMEOUT",
        description="Default timeout for an application run (seconds)",
    )


class AdbSettings(BaseSettings):
    """Local Android (ADB) settings."""

    model_config = _shared_config

    adb_path: str = Field(
        default="",
        validation_alias="ADB_PATH",
        description="Path to adb executable (leave empty to search PATH / ANDROID_HOME)",
    )
    android_serial: str = Field(
        default="",
        validation_alias="ANDROID_SERIAL",
        description="Default device serial (leave empty for auto-detect)",
    )


class SauceLabsSettings(BaseSettings):
    """Sauce Labs real-device cloud settings."""

    model_config = _shared_config

    sauce_username: str = Field(default="", description="Sauce Labs username")
    sauce_access_key: str = Field(default="", description="Sauce Labs access key")
    sauce_region: str = Field(
        default="us-west-1",
        description="Sauce Labs data center (us-west-1, eu-central-1, ...)",
    )
    sauce_device_name: str = Field(
        default="",
        description="Default device name or regex when no target is given",
    )
    sauce_session_name: str = Field(
        default="app-runner",
        description="Session name shown in the Sauce Labs dashboard",
    )

    def get_api_url(self) -> str:
        """REST API base for storage uploads."""
        return f"https://api.{self.sauce_region}.saucelabs.com"

    def get_hub_url(self) -> str:
        """Appium (WebDriver) hub URL."""
        return f"https://ondemand.{self.sauce_region}.saucelabs.com/wd/hub"


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = _shared_config

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log lines instead of colored console output",
    )


class Settings(BaseSettings):
    """
    Main settings class combining all configuration sections.

    Usage:
        from app_runner.config import get_settings
        settings = get_settings()
        print(settings.lock.lock_timeout)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    lock: LockSettings = Field(default_factory=LockSettings)
    console: ConsoleSettings = Field(default_factory=ConsoleSettings)
    adb: AdbSettings = Field(default_factory=AdbSettings)
    saucelabs: SauceLabsSettings = Field(default_factory=SauceLabsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def __init__(self, **kwargs):
        """Initialize settings with nested configuration."""
        super().__init__(**kwargs)
        # Re-initialize nested settings to pick up env vars
        self.lock = LockSettings()
        self.console = ConsoleSettings()
        self.adb = AdbSettings()
        self.saucelabs = SauceLabsSettings()
        self.logging = LoggingSettings()


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings loaded from environment.
    """
    return Settings()
