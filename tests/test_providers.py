"""
Tests for Device Providers
==========================

Comprehensive tests for:
- Default "not supported" behavior of the provider interface
- Mock provider
- Local desktop providers
- Console providers with patched SDK tool execution
- ADB provider with patched adb
- Sauce Labs provider with patched HTTP requests
"""

import platform as host_platform
import sys
from unittest.mock import AsyncMock, patch

import pytest

from app_runner.errors import (
    CommandTimeoutError,
    ProviderCommandError,
    ProviderConfigurationError,
    RemoteApiError,
)
from app_runner.providers.base import ConnectionInfo, DeviceProvider, DeviceState, StatusRecord
from app_runner.providers.commands import (
    SdkToolRunner,
    find_ipv4_address,
    parse_key_value_lines,
    run_command,
)
from app_runner.providers.mock import MockProvider

from tests.conftest import make_result


class MinimalProvider(DeviceProvider):
    """Provider implementing only the required operations."""

    platform = "Minimal"

    async def connect(self, target=None):
        self.state = DeviceState.CONNECTED
        return ConnectionInfo(platform=self.platform, identifier="minimal")

    async def disconnect(self):
        self.state = DeviceState.DISCONNECTED

    async def test_connection(self):
        return self.is_connected

    async def get_device_identifier(self):
        return "minimal"

    async def get_device_status(self):
        return StatusRecord(platform=self.platform, status="Online")

    async def run_application(self, executable_path, arguments="", timeout_seconds=None):
        raise NotImplementedError


class TestProviderDefaults:
    @pytest.mark.asyncio
    async def test_unsupported_operations_are_neutral(self, tmp_path):
        provider = MinimalProvider()
        await provider.connect()

        logs = await provider.get_device_logs()
        assert logs.is_empty
        assert logs.platform == "Minimal"
        assert await provider.take_screenshot(tmp_path / "shot.png") is None
        assert await provider.copy_device_item("/a", tmp_path / "a") is None
        assert await provider.install_application(tmp_path / "pkg") is None
        assert await provider.start_device() is None
        assert await provider.stop_device() is None
        assert await provider.restart_device() is None
        assert await provider.detect_and_set_default_target() is None
        assert not (tmp_path / "shot.png").exists()

    def test_no_log_types_means_all_unsupported(self):
        assert not MinimalProvider().supports_log_type("All")

    def test_log_type_match_is_case_insensitive(self):
        provider = MockProvider()
        assert provider.supports_log_type("system")
        assert provider.supports_log_type("All")
        assert not provider.supports_log_type("Kernel")


class TestMockProvider:
    @pytest.mark.asyncio
    async def test_lifecycle(self):
        provider = MockProvider()
        info = await provider.connect()
        assert info.identifier == "mock-device"
        assert await provider.test_connection()

        await provider.stop_device()
        status = await provider.get_device_status()
        assert status.status == "Offline"

        await provider.disconnect()
        assert not await provider.test_connection()
        assert [op for op, _ in provider.calls] == ["connect", "stop_device", "get_device_status", "disconnect"]

    @pytest.mark.asyncio
    async def test_run_records_arguments(self):
        provider = MockProvider()
        await provider.connect()
        result = await provider.run_application("Game.exe", "--level 3")
        assert result.output == ["Running Game.exe", "arg: --level", "arg: 3"]
        assert result.duration_seconds >= 0
        assert result.to_dict()["exit_code"] == 0

    @pytest.mark.asyncio
    async def test_logs_max_entries(self):
        provider = MockProvider()
        provider.logs["App"] = [f"line {i}" for i in range(10)]
        record = await provider.get_device_logs("App", max_entries=3)
        assert record.entries == ["line 7", "line 8", "line 9"]


class TestCommandHelpers:
    def test_parse_key_value_lines(self):
        text = "Host Name: devkit-01\nIP Address: 10.0.0.5\nnoise line\n: empty key"
        assert parse_key_value_lines(text) == {"Host Name": "devkit-01", "IP Address": "10.0.0.5"}

    def test_find_ipv4_address(self):
        assert find_ipv4_address("Connected to console at 192.168.1.50 (dev)") == "192.168.1.50"
        assert find_ipv4_address("no address") is None

    def test_sdk_runner_requires_root(self):
        with pytest.raises(ProviderConfigurationError) as exc_info:
            SdkToolRunner("Xbox", "", "GameDK", ("bin",), ("xbconnect",))
        assert "GameDK" in str(exc_info.value)

    def test_sdk_runner_reports_missing_tools(self, fake_sdk):
        root = fake_sdk("bin", ("xbconnect",))
        with pytest.raises(ProviderConfigurationError) as exc_info:
            SdkToolRunner("Xbox", str(root), "GameDK", ("bin",), ("xbconnect", "xbrun"))
        assert "xbrun" in str(exc_info.value)
        assert "xbconnect" not in str(exc_info.value).split(":")[-1]

    @pytest.mark.skipif(host_platform.system() == "Windows", reason="uses a POSIX shell")
    @pytest.mark.asyncio
    async def test_run_command_timeout_keeps_partial_output(self):
        with pytest.raises(CommandTimeoutError) as exc_info:
            await run_command(
                ["sh", "-c", "echo 'boot ok'; echo 'level loaded'; exec sleep 30"],
                timeout=1,
                platform="Xbox",
            )
        assert "boot ok" in exc_info.value.output
        assert "level loaded" in exc_info.value.output


@pytest.mark.skipif(host_platform.system() != "Linux", reason="requires a Linux host")
class TestLinuxProvider:
    @pytest.mark.asyncio
    async def test_connect_and_status(self):
        from app_runner.providers.local import LinuxProvider

        provider = LinuxProvider()
        info = await provider.connect()
        assert info.identifier
        status = await provider.get_device_status()
        assert status.status == "Online"
        assert status.status_data["system"] == "Linux"

    @pytest.mark.asyncio
    async def test_run_application(self):
        from app_runner.providers.local import LinuxProvider

        provider = LinuxProvider()
        await provider.connect()
        result = await provider.run_application(sys.executable, "-c \"print('hello from app')\"")
        assert result.exit_code == 0
        assert "hello from app" in result.output
        assert not result.timed_out

    @pytest.mark.asyncio
    async def test_run_application_timeout(self):
        from app_runner.providers.local import LinuxProvider

        provider = LinuxProvider()
        await provider.connect()
        result = await provider.run_application(sys.executable, "-c \"import time; time.sleep(5)\"", timeout_seconds=0.5)
        assert result.timed_out
        assert result.exit_code is None

    @pytest.mark.asyncio
    async def test_run_missing_executable(self, tmp_path):
        from app_runner.providers.local import LinuxProvider

        provider = LinuxProvider()
        with pytest.raises(FileNotFoundError):
            await provider.run_application(str(tmp_path / "missing"))

    @pytest.mark.asyncio
    async def test_copy_device_item(self, tmp_path):
        from app_runner.providers.local import LinuxProvider

        source = tmp_path / "save.dat"
        source.write_text("progress")
        provider = LinuxProvider()
        copied = await provider.copy_device_item(str(source), tmp_path / "out" / "save.dat")
        assert copied.read_text() == "progress"

    @pytest.mark.asyncio
    async def test_lifecycle_not_supported(self):
        from app_runner.providers.local import LinuxProvider

        provider = LinuxProvider()
        assert await provider.restart_device() is None


class TestLocalHostMismatch:
    def test_wrong_host_os(self):
        from app_runner.providers.local import WindowsProvider

        with patch("app_runner.providers.local.host_platform.system", return_value="Linux"):
            with pytest.raises(ProviderConfigurationError) as exc_info:
                WindowsProvider()
        assert "Windows" in str(exc_info.value)


XBOX_TOOL_NAMES = ("xbconnect", "xbapp", "xbrun", "xbcopy", "xbcapture", "xbreboot")


class TestXboxProvider:
    @pytest.fixture
    def xbox(self, fake_sdk):
        from app_runner.providers.xbox import XboxProvider

        root = fake_sdk("bin", XBOX_TOOL_NAMES)
        return XboxProvider(target="192.168.1.50", sdk_root=str(root), retry_delay=0)

    def test_missing_sdk(self, tmp_path):
        from app_runner.providers.xbox import XboxProvider

        with pytest.raises(ProviderConfigurationError):
            XboxProvider(sdk_root=str(tmp_path / "no-gdk"))

    @pytest.mark.asyncio
    async def test_connect_retries_wake_timeout(self, xbox):
        responses = [
            make_result("Error: 0x80072EE2 - the console did not respond", returncode=1),
            make_result("Connected to 192.168.1.50"),
        ]
        with patch("app_runner.providers.commands.run_command", AsyncMock(side_effect=responses)) as run:
            info = await xbox.connect()

        assert run.await_count == 2
        assert info.identifier == "192.168.1.50"
        assert xbox.is_connected

    @pytest.mark.asyncio
    async def test_wake_timeout_retry_is_bounded(self, xbox):
        failure = make_result("0x80072EE2", returncode=1)
        with patch("app_runner.providers.commands.run_command", AsyncMock(return_value=failure)) as run:
            with pytest.raises(ProviderCommandError):
                await xbox.connect()

        assert run.await_count == 2
        assert xbox.state == DeviceState.ERROR

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self, xbox):
        failure = make_result("Access denied", returncode=5)
        with patch("app_runner.providers.commands.run_command", AsyncMock(return_value=failure)) as run:
            with pytest.raises(ProviderCommandError) as exc_info:
                await xbox.connect()

        assert run.await_count == 1
        assert exc_info.value.exit_code == 5
        assert exc_info.value.platform == "Xbox"

    @pytest.mark.asyncio
    async def test_run_application(self, xbox):
        with patch(
            "app_runner.providers.commands.run_command",
            AsyncMock(return_value=make_result("frame 1\nframe 2\n", returncode=3)),
        ) as run:
            result = await xbox.run_application("Game.exe", "--smoke")

        args = run.await_args.args[0]
        assert args[1:] == ["/O", "Game.exe", "--smoke"]
        assert result.output == ["frame 1", "frame 2"]
        assert result.exit_code == 3

    @pytest.mark.asyncio
    async def test_run_application_timeout(self, xbox):
        with patch(
            "app_runner.providers.commands.run_command",
            AsyncMock(
                side_effect=CommandTimeoutError(
                    "timed out", platform="Xbox", output="boot ok\nlevel loaded\n"
                )
            ),
        ):
            result = await xbox.run_application("Game.exe", timeout_seconds=1)

        assert result.timed_out
        assert result.exit_code is None
        assert result.output == ["boot ok", "level loaded"]

    @pytest.mark.asyncio
    async def test_test_connection_never_raises(self, xbox):
        with patch("app_runner.providers.commands.run_command", AsyncMock(return_value=make_result("Connected"))):
            await xbox.connect()
        with patch(
            "app_runner.providers.commands.run_command",
            AsyncMock(side_effect=ProviderCommandError("gone", platform="Xbox")),
        ):
            assert await xbox.test_connection() is False


class TestPlayStation5Provider:
    @pytest.fixture
    def ps5(self, fake_sdk):
        from app_runner.providers.playstation5 import PlayStation5Provider

        root = fake_sdk("host_tools/bin", ("prospero-ctrl", "prospero-run"))
        return PlayStation5Provider(target="10.0.0.5", sdk_root=str(root))

    @pytest.mark.asyncio
    async def test_connect_reads_host_name(self, ps5):
        info_output = "Host Name: devkit-01\nIP Address: 10.0.0.5\nPower Status: On"
        with patch(
            "app_runner.providers.commands.run_command",
            AsyncMock(side_effect=[make_result("connected"), make_result(info_output)]),
        ):
            info = await ps5.connect()
        assert info.identifier == "devkit-01"

    @pytest.mark.asyncio
    async def test_console_logs(self, ps5):
        with patch(
            "app_runner.providers.commands.run_command",
            AsyncMock(return_value=make_result("a\nb\nc\n")),
        ) as run:
            record = await ps5.get_device_logs("Console", max_entries=2)
        assert record.entries == ["b", "c"]
        assert "--lines" in run.await_args.args[0]

    @pytest.mark.asyncio
    async def test_unsupported_log_type(self, ps5):
        with patch("app_runner.providers.commands.run_command", AsyncMock()) as run:
            record = await ps5.get_device_logs("Crash")
        assert record.is_empty
        run.assert_not_awaited()


class TestSwitchProvider:
    @pytest.mark.asyncio
    async def test_detects_default_target(self, fake_sdk):
        from app_runner.providers.switch import SwitchProvider

        root = fake_sdk("Tools/CommandLineTools", ("ControlTarget", "RunOnTarget"))
        provider = SwitchProvider(sdk_root=str(root))
        responses = [
            make_result("Name: sdev-42\n"),
            make_result("connected"),
            make_result("Name: sdev-42\nStatus: Online"),
        ]
        with patch("app_runner.providers.commands.run_command", AsyncMock(side_effect=responses)):
            info = await provider.connect()

        assert provider.target == "sdev-42"
        assert info.identifier == "sdev-42"

    @pytest.mark.asyncio
    async def test_logs_not_supported(self, fake_sdk):
        from app_runner.providers.switch import SwitchProvider

        root = fake_sdk("Tools/CommandLineTools", ("ControlTarget", "RunOnTarget"))
        provider = SwitchProvider(target="sdev-42", sdk_root=str(root))
        record = await provider.get_device_logs()
        assert record.is_empty


def _adb_responder(pid_sequence):
    """Fake adb that answers by sub-command."""
    pids = iter(pid_sequence)

    async def respond(cmd, timeout=30.0, platform=""):
        args = cmd[1:]
        if args[:2] == ["devices", "-l"]:
            return make_result("List of devices attached\nemulator-5554 device product:sdk model:Pixel_7\n")
        if "-s" in args:
            args = args[2:]
        if args[:2] == ["shell", "getprop"]:
            return make_result("14\n")
        if args[:3] == ["shell", "am", "start"]:
            return make_result("Starting: Intent { cmp=com.example.game/.Main }\nStatus: ok\n")
        if args[:2] == ["shell", "pidof"]:
            return make_result(next(pids, ""))
        if args[:2] == ["logcat", "-d"]:
            return make_result("I/Game: started\nI/Game: finished\n")
        if args == ["get-state"]:
            return make_result("device\n")
        return make_result("")

    return respond


class TestAdbProvider:
    @pytest.fixture
    def adb(self):
        from app_runner.providers.adb import AdbProvider

        return AdbProvider(adb_path="/opt/fake/adb")

    @pytest.mark.asyncio
    async def test_connect_picks_first_device(self, adb):
        with patch("app_runner.providers.adb.run_command", AsyncMock(side_effect=_adb_responder([]))):
            info = await adb.connect()
            assert await adb.test_connection()

        assert info.identifier == "emulator-5554"
        assert info.details["model"] == "Pixel_7"
        assert adb.target == "emulator-5554"

    @pytest.mark.asyncio
    async def test_connect_unknown_serial(self, adb):
        with patch("app_runner.providers.adb.run_command", AsyncMock(side_effect=_adb_responder([]))):
            with pytest.raises(ProviderCommandError):
                await adb.connect("R58M123")
        assert adb.state == DeviceState.ERROR

    @pytest.mark.asyncio
    async def test_run_waits_for_process_exit(self, adb):
        with patch("app_runner.providers.adb.PROCESS_POLL_INTERVAL", 0), patch(
            "app_runner.providers.adb.run_command",
            AsyncMock(side_effect=_adb_responder(["4242", "4242", "4242", ""])),
        ):
            await adb.connect()
            result = await adb.run_application("com.example.game/.Main", "-e mode smoke")

        assert result.exit_code == 0
        assert not result.timed_out
        assert result.output == ["I/Game: started", "I/Game: finished"]

    @pytest.mark.asyncio
    async def test_run_requires_component(self, adb):
        with pytest.raises(ValueError):
            await adb.run_application("com.example.game")

    def test_missing_adb(self):
        from app_runner.providers.adb import AdbProvider

        with patch.object(AdbProvider, "_find_adb", return_value=None), patch(
            "app_runner.providers.adb.get_settings"
        ) as settings:
            settings.return_value.adb.adb_path = ""
            settings.return_value.adb.android_serial = ""
            with pytest.raises(ProviderConfigurationError):
                AdbProvider()


class TestSauceLabsProvider:
    @pytest.fixture
    def android(self):
        from app_runner.providers.saucelabs import AndroidSauceLabsProvider

        return AndroidSauceLabsProvider(target="Google Pixel.*", username="ci-user", access_key="sauce-secret")

    def test_missing_credentials(self, monkeypatch, fresh_settings):
        from app_runner.providers.saucelabs import IOSSauceLabsProvider

        monkeypatch.delenv("SAUCE_USERNAME", raising=False)
        monkeypatch.delenv("SAUCE_ACCESS_KEY", raising=False)
        with pytest.raises(ProviderConfigurationError) as exc_info:
            IOSSauceLabsProvider()
        assert "SAUCE_USERNAME" in str(exc_info.value)

    def test_access_key_not_exposed(self, android):
        assert "sauce-secret" not in repr(android.access_key)
        assert "sauce-secret" not in str(android.access_key)

    def test_region_urls(self):
        from app_runner.providers.saucelabs import AndroidSauceLabsProvider

        provider = AndroidSauceLabsProvider(username="u", access_key="k", region="eu-central-1")
        assert provider.hub_url == "https://ondemand.eu-central-1.saucelabs.com/wd/hub"
        assert provider.api_url == "https://api.eu-central-1.saucelabs.com"

    @pytest.mark.asyncio
    async def test_connect_creates_session(self, android):
        response = {"value": {"sessionId": "abc123", "capabilities": {"deviceName": "Google Pixel 7"}}}
        with patch.object(android, "_request", AsyncMock(return_value=response)) as request:
            info = await android.connect()

        method, url = request.await_args.args[:2]
        capabilities = request.await_args.kwargs["json"]["capabilities"]["alwaysMatch"]
        assert (method, url) == ("POST", f"{android.hub_url}/session")
        assert capabilities["platformName"] == "Android"
        assert capabilities["appium:deviceName"] == "Google Pixel.*"
        assert info.identifier == "Google Pixel 7"
        assert android.is_connected

    @pytest.mark.asyncio
    async def test_connect_api_failure(self, android):
        error = RemoteApiError("POST", f"{android.hub_url}/session", status=401, platform=android.platform)
        with patch.object(android, "_request", AsyncMock(side_effect=error)):
            with pytest.raises(RemoteApiError) as exc_info:
                await android.connect()

        assert exc_info.value.status == 401
        assert "401" in str(exc_info.value)
        assert android.state == DeviceState.ERROR

    @pytest.mark.asyncio
    async def test_test_connection(self, android):
        response = {"value": {"sessionId": "abc123", "capabilities": {}}}
        with patch.object(android, "_request", AsyncMock(return_value=response)):
            await android.connect()
            assert await android.test_connection() is True

        with patch.object(android, "_request", AsyncMock(side_effect=RemoteApiError("GET", "x", status=404))):
            assert await android.test_connection() is False

    @pytest.mark.asyncio
    async def test_logs(self, android):
        responses = [
            {"value": {"sessionId": "abc123", "capabilities": {}}},
            {"value": [{"message": "I/ActivityManager: start"}, {"message": "I/Game: ready"}]},
        ]
        with patch.object(android, "_request", AsyncMock(side_effect=responses)) as request:
            await android.connect()
            record = await android.get_device_logs("logcat")

        assert record.entries == ["I/ActivityManager: start", "I/Game: ready"]
        assert request.await_args.kwargs["json"] == {"type": "logcat"}

    @pytest.mark.asyncio
    async def test_lifecycle_not_supported(self, android):
        with patch.object(android, "_request", AsyncMock()) as request:
            assert await android.restart_device() is None
            assert await android.stop_device() is None
        request.assert_not_awaited()
