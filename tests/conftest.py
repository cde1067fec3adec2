"""
Shared Test Fixtures
====================

Pytest fixtures used across all test modules.
Provides lock managers on throwaway directories and session managers
wired to mock providers.
"""

import os
import tempfile

# Set env vars BEFORE any app_runner imports; settings are cached on first use
os.environ.setdefault("APP_RUNNER_LOCK_DIR", tempfile.mkdtemp(prefix="app-runner-test-locks-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from typing import Any, Optional

from app_runner.config import get_settings
from app_runner.locking import ResourceLock
from app_runner.providers.base import DeviceProvider
from app_runner.providers.commands import CommandResult
from app_runner.providers.factory import ProviderFactory
from app_runner.providers.mock import MockProvider
from app_runner.session import SessionManager

TEST_NAMESPACE = "AppRunnerTest"


class RecordingFactory(ProviderFactory):
    """Factory that builds MockProviders and keeps every instance it created."""

    def __init__(self, healthy: bool = True) -> None:
        self.healthy = healthy
        self.created: list[MockProvider] = []

    def create_provider(self, platform: str, target: Optional[str] = None, **kwargs: Any) -> DeviceProvider:
        if platform != "Mock":
            return super().create_provider(platform, target=target, **kwargs)
        provider = MockProvider(target=target, healthy=self.healthy)
        self.created.append(provider)
        return provider


def make_result(stdout: str = "", returncode: int = 0, stderr: str = "", args: Optional[list[str]] = None) -> CommandResult:
    """Build a CommandResult for patched command runners."""
    return CommandResult(args=args or ["tool"], returncode=returncode, stdout=stdout, stderr=stderr)


# ---------------------------------------------------------------------------
# Locks
# ---------------------------------------------------------------------------

@pytest.fixture
def lock_dir(tmp_path):
    """Fresh lock directory per test."""
    return tmp_path / "locks"


@pytest.fixture
def resource_lock(lock_dir) -> ResourceLock:
    """ResourceLock on the per-test lock directory."""
    return ResourceLock(lock_dir=lock_dir, namespace=TEST_NAMESPACE, poll_interval=0.01)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_factory() -> RecordingFactory:
    return RecordingFactory()


@pytest.fixture
def session_manager(mock_factory, resource_lock) -> SessionManager:
    """SessionManager backed by mock providers and a private lock directory."""
    return SessionManager(factory=mock_factory, resource_lock=resource_lock, default_timeout_seconds=5)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@pytest.fixture
def fresh_settings():
    """Clear the settings cache around a test that changes the environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_sdk(tmp_path):
    """Create an SDK directory containing empty tool files."""

    def _make(tool_dir: str, tools: tuple[str, ...]):
        root = tmp_path / "sdk"
        bin_dir = root / tool_dir
        bin_dir.mkdir(parents=True, exist_ok=True)
        for tool in tools:
            (bin_dir / tool).write_text("")
        return root

    return _make
