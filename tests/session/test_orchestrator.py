"""Tests for SessionOrchestrator."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from medic.channel.bus import EventBus, EventHandler
from medic.channel.server import ChannelAddress, medic_address
from medic.config import RunRequest, Settings
from medic.process.supervisor import ProcessResult
from medic.session.orchestrator import SessionOrchestrator, write_medic_descriptor
from medic.session.reporters import Reporter
from medic.shared.enums import ChannelEvent, ExecutionMode, Platform, SessionOutcome, SessionPhase
from medic.shared.exceptions import LaunchFailedError
from medic.shared.models import Target

PASSED_RESULTS = {"specResults": {"specFailed": 0, "specPassed": 12}}
FAILED_RESULTS = {"specResults": {"specFailed": 2, "specPassed": 10}}


class FakeChannel:
    """In-memory stand-in for ResultChannel; tests publish device events directly."""

    def __init__(self) -> None:
        self.bus = EventBus()
        self.connected = False
        self.started_with: tuple[str, Any] | None = None
        self.stopped = 0

    async def start(self, host: str = "0.0.0.0", port: int | range = 0) -> ChannelAddress:
        self.started_with = (host, port)
        return ChannelAddress(host=host, port=8008)

    def subscribe(self, event: str | ChannelEvent, handler: EventHandler) -> None:
        self.bus.subscribe(event, handler)

    def unsubscribe(self, event: str | ChannelEvent, handler: EventHandler) -> None:
        self.bus.unsubscribe(event, handler)

    def is_peer_connected(self) -> bool:
        return self.connected

    def address_for(self, platform: Platform, target: Target | None = None) -> str:
        return medic_address(platform, 8008, target)

    async def stop(self) -> None:
        self.stopped += 1

    def emit(self, event: str, data: Any = None) -> None:
        self.connected = True
        self.bus.publish(event, data)


class RecordingReporter(Reporter):
    def __init__(self) -> None:
        self.events: list[str] = []

    def spec_done(self, data: Any) -> None:
        self.events.append("specDone")

    def jasmine_done(self, data: Any) -> None:
        self.events.append("jasmineDone")


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def project(tmp_path: Path) -> MagicMock:
    (tmp_path / "www").mkdir()
    mock = MagicMock()
    mock.path = tmp_path
    mock.www_dir = tmp_path / "www"
    mock.create = AsyncMock(return_value=tmp_path)
    mock.prepare = AsyncMock()
    return mock


@pytest.fixture
def acquirer() -> AsyncMock:
    mock = AsyncMock()
    mock.acquire.return_value = Target(platform=Platform.ANDROID, target="emulator-5554")
    return mock


@pytest.fixture
def supervisor() -> AsyncMock:
    mock = AsyncMock()
    mock.run.return_value = ProcessResult(stdout="", stderr="")
    return mock


@pytest.fixture
def collector(tmp_path: Path) -> AsyncMock:
    mock = AsyncMock()
    mock.collect.return_value = tmp_path / "android_logs.txt"
    return mock


@pytest.fixture
def uninstaller() -> AsyncMock:
    mock = AsyncMock()
    mock.uninstall.return_value = True
    return mock


@pytest.fixture
def killer() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def make_orchestrator(
    settings: Settings,
    channel: FakeChannel,
    project: MagicMock,
    acquirer: AsyncMock,
    supervisor: AsyncMock,
    collector: AsyncMock,
    uninstaller: AsyncMock,
    killer: AsyncMock,
):
    def _make(reporters: list[Reporter] | None = None, **request: Any) -> SessionOrchestrator:
        request.setdefault("platform", "android")
        request.setdefault("plugins", ("./cordova-plugin-device",))
        return SessionOrchestrator(
            RunRequest(**request),
            settings=settings,
            project=project,
            acquirer=acquirer,
            channel=channel,
            supervisor=supervisor,
            collector=collector,
            uninstaller=uninstaller,
            killer=killer,
            reporters=reporters or [],
        )

    return _make


def _launch_emitting(channel: FakeChannel, *events: tuple[str, Any]):
    async def _run(command: str, args: list[str], **kwargs: Any) -> ProcessResult:
        if args and args[0] in ("run", "emulate"):
            for event, data in events:
                channel.emit(event, data)
        return ProcessResult(stdout="", stderr="")

    return _run


class TestPassingSession:
    async def test_passed_run(
        self,
        make_orchestrator,
        channel: FakeChannel,
        project: MagicMock,
        supervisor: AsyncMock,
        collector: AsyncMock,
        uninstaller: AsyncMock,
        killer: AsyncMock,
    ) -> None:
        reporter = RecordingReporter()
        supervisor.run.side_effect = _launch_emitting(
            channel, ("specDone", {"status": "passed"}), ("jasmineDone", PASSED_RESULTS)
        )
        orchestrator = make_orchestrator(reporters=[reporter])

        session = await orchestrator.run()

        assert session.outcome == SessionOutcome.PASSED
        assert session.passed
        assert session.phase == SessionPhase.TORN_DOWN
        assert reporter.events == ["specDone", "jasmineDone"]

        descriptor = json.loads((project.www_dir / "medic.json").read_text())
        assert descriptor == {"logurl": "ws://10.0.2.2:8008"}

        launch = supervisor.run.call_args_list[-1]
        assert launch.args[0] == "cordova"
        assert launch.args[1] == [
            "run",
            "android",
            "--no-telemetry",
            "--no-update-notifier",
            "--target",
            "emulator-5554",
        ]
        assert launch.kwargs["cwd"] == str(project.path)

        collector.collect.assert_awaited_once()
        uninstaller.uninstall.assert_awaited_once()
        assert uninstaller.uninstall.call_args.args[1] == "io.cordova.hellocordova"
        killer.kill.assert_awaited_once_with(Platform.ANDROID)
        assert channel.stopped == 1
        project.cleanup.assert_not_called()

    async def test_failed_specs_fail_the_session(self, make_orchestrator, channel: FakeChannel, supervisor: AsyncMock) -> None:
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", FAILED_RESULTS))

        session = await make_orchestrator().run()

        assert session.outcome == SessionOutcome.FAILED

    async def test_missing_failure_count_fails_the_session(
        self, make_orchestrator, channel: FakeChannel, supervisor: AsyncMock
    ) -> None:
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", {"unexpected": True}))

        session = await make_orchestrator().run()

        assert session.outcome == SessionOutcome.FAILED

    async def test_result_after_launch_exits(self, make_orchestrator, channel: FakeChannel) -> None:
        loop = asyncio.get_running_loop()
        channel.connected = True
        loop.call_later(0.05, channel.emit, "jasmineDone", PASSED_RESULTS)

        session = await make_orchestrator().run()

        assert session.outcome == SessionOutcome.PASSED

    async def test_logs_written_to_output_dir(
        self, make_orchestrator, channel: FakeChannel, supervisor: AsyncMock, collector: AsyncMock, tmp_path: Path
    ) -> None:
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", PASSED_RESULTS))

        await make_orchestrator(output_dir=str(tmp_path / "out")).run()

        assert collector.collect.call_args.args[1] == tmp_path / "out"

    async def test_cleanup_after_run(
        self, make_orchestrator, channel: FakeChannel, supervisor: AsyncMock, project: MagicMock
    ) -> None:
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", PASSED_RESULTS))

        await make_orchestrator(cleanup_after_run=True).run()

        project.cleanup.assert_called_once()


class TestFailingSession:
    async def test_disconnect_before_done(
        self, make_orchestrator, channel: FakeChannel, supervisor: AsyncMock, killer: AsyncMock
    ) -> None:
        supervisor.run.side_effect = _launch_emitting(channel, ("specDone", {"status": "passed"}), ("disconnect", None))

        session = await make_orchestrator().run()

        assert session.outcome == SessionOutcome.FAILED
        assert "disconnected" in (session.error_message or "")
        killer.kill.assert_awaited_once_with(Platform.ANDROID)

    async def test_disconnect_after_done_is_ignored(
        self, make_orchestrator, channel: FakeChannel, supervisor: AsyncMock
    ) -> None:
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", PASSED_RESULTS), ("disconnect", None))

        session = await make_orchestrator().run()

        assert session.outcome == SessionOutcome.PASSED

    async def test_absolute_timeout_kills_launch(
        self, make_orchestrator, channel: FakeChannel, supervisor: AsyncMock
    ) -> None:
        cancelled = asyncio.Event()

        async def _hang(command: str, args: list[str], **kwargs: Any) -> ProcessResult:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return ProcessResult(stdout="", stderr="")

        supervisor.run.side_effect = _hang
        channel.connected = True

        session = await make_orchestrator(timeout_ms=50).run()
        channel.emit("jasmineDone", PASSED_RESULTS)

        assert session.outcome == SessionOutcome.ERROR
        assert "timed out" in (session.error_message or "")
        assert cancelled.is_set()

    async def test_no_device_connects(self, make_orchestrator, settings: Settings, channel: FakeChannel) -> None:
        orchestrator = make_orchestrator()
        orchestrator.session.connection_timeout_seconds = 0.05

        session = await orchestrator.run()

        assert session.outcome == SessionOutcome.ERROR
        assert "no device connected" in (session.error_message or "")
        assert channel.stopped == 1

    async def test_watchdog_keeps_waiting_while_device_connected(
        self, make_orchestrator, channel: FakeChannel
    ) -> None:
        orchestrator = make_orchestrator()
        orchestrator.session.connection_timeout_seconds = 0.05
        channel.connected = True
        asyncio.get_running_loop().call_later(0.2, channel.emit, "jasmineDone", PASSED_RESULTS)

        session = await orchestrator.run()

        assert session.outcome == SessionOutcome.PASSED
        assert session.error_message is None

    async def test_missing_reporter_plugin_fails_fast(
        self, make_orchestrator, project: MagicMock, acquirer: AsyncMock, channel: FakeChannel
    ) -> None:
        orchestrator = make_orchestrator()
        orchestrator.settings = Settings(device_plugin="")

        session = await orchestrator.run()

        assert session.outcome == SessionOutcome.ERROR
        assert "MEDIC_DEVICE_PLUGIN" in (session.error_message or "")
        assert session.phase == SessionPhase.TORN_DOWN
        project.create.assert_not_called()
        acquirer.acquire.assert_not_called()
        assert channel.started_with is None

    async def test_launch_failure(self, make_orchestrator, supervisor: AsyncMock, collector: AsyncMock) -> None:
        async def _run(command: str, args: list[str], **kwargs: Any) -> ProcessResult:
            if args[0] == "run":
                raise LaunchFailedError("cordova not found")
            return ProcessResult(stdout="", stderr="")

        supervisor.run.side_effect = _run

        session = await make_orchestrator().run()

        assert session.outcome == SessionOutcome.ERROR
        assert session.error_message == "cordova not found"
        collector.collect.assert_awaited_once()

    async def test_acquisition_exhausted(
        self,
        make_orchestrator,
        acquirer: AsyncMock,
        channel: FakeChannel,
        collector: AsyncMock,
        killer: AsyncMock,
    ) -> None:
        acquirer.acquire.return_value = None

        session = await make_orchestrator().run()

        assert session.outcome == SessionOutcome.ERROR
        assert session.target is None
        assert channel.started_with is None
        collector.collect.assert_not_called()
        killer.kill.assert_not_called()
        assert session.phase == SessionPhase.TORN_DOWN

    async def test_project_failure_still_tears_down(
        self, make_orchestrator, project: MagicMock, channel: FakeChannel
    ) -> None:
        project.prepare.side_effect = LaunchFailedError("cordova missing")

        session = await make_orchestrator(cleanup_after_run=True).run()

        assert session.outcome == SessionOutcome.ERROR
        assert channel.stopped == 1
        project.cleanup.assert_called_once()


class TestTeardown:
    async def test_uninstall_failure_keeps_outcome(
        self,
        make_orchestrator,
        channel: FakeChannel,
        supervisor: AsyncMock,
        uninstaller: AsyncMock,
        killer: AsyncMock,
    ) -> None:
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", PASSED_RESULTS))
        uninstaller.uninstall.side_effect = RuntimeError("adb: device offline")

        session = await make_orchestrator(cleanup_after_run=True).run()

        assert session.outcome == SessionOutcome.PASSED
        killer.kill.assert_awaited_once_with(Platform.ANDROID)
        assert channel.stopped == 1

    async def test_log_collection_failure_keeps_outcome(
        self, make_orchestrator, channel: FakeChannel, supervisor: AsyncMock, collector: AsyncMock, uninstaller: AsyncMock
    ) -> None:
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", FAILED_RESULTS))
        collector.collect.side_effect = OSError("disk full")

        session = await make_orchestrator().run()

        assert session.outcome == SessionOutcome.FAILED
        uninstaller.uninstall.assert_awaited_once()


class TestBuildOnly:
    async def test_build_without_reporter_plugin(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(action=ExecutionMode.BUILD)
        orchestrator.settings = Settings(device_plugin="")

        session = await orchestrator.run()

        assert session.outcome == SessionOutcome.PASSED

    async def test_build_only_passes_without_waiting(
        self,
        make_orchestrator,
        acquirer: AsyncMock,
        supervisor: AsyncMock,
        collector: AsyncMock,
        killer: AsyncMock,
        channel: FakeChannel,
    ) -> None:
        orchestrator = make_orchestrator(action=ExecutionMode.BUILD)

        session = await orchestrator.run()

        assert session.outcome == SessionOutcome.PASSED
        assert session.target is not None and session.target.is_passthrough
        acquirer.acquire.assert_not_called()
        collector.collect.assert_not_called()
        killer.kill.assert_not_called()
        assert supervisor.run.call_args.args[1] == ["build", "android", "--no-telemetry", "--no-update-notifier"]
        assert channel.stopped == 1

    async def test_build_failure(self, make_orchestrator, supervisor: AsyncMock) -> None:
        supervisor.run.side_effect = LaunchFailedError("gradle missing")

        session = await make_orchestrator(action=ExecutionMode.BUILD).run()

        assert session.outcome == SessionOutcome.ERROR


class TestTargets:
    async def test_ios_launch_arguments(
        self, make_orchestrator, acquirer: AsyncMock, channel: FakeChannel, supervisor: AsyncMock, project: MagicMock
    ) -> None:
        acquirer.acquire.return_value = Target(platform=Platform.IOS, target="iPhone-15", sim_id="UDID-1")
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", PASSED_RESULTS))

        session = await make_orchestrator(platform="ios", target="^iPhone", args=("--buildFlag=-quiet",)).run()

        assert session.outcome == SessionOutcome.PASSED
        acquirer.acquire.assert_awaited_once_with(Platform.IOS, "^iPhone", project_dir=str(project.path))
        assert supervisor.run.call_args.args[1] == [
            "run",
            "ios",
            "--buildFlag=-quiet",
            "--no-telemetry",
            "--no-update-notifier",
            "--target",
            "iPhone-15",
            "--emulator",
        ]
        descriptor = json.loads((project.www_dir / "medic.json").read_text())
        assert descriptor == {"logurl": "ws://127.0.0.1:8008"}

    async def test_android_device_gets_port_reverse(
        self, make_orchestrator, acquirer: AsyncMock, channel: FakeChannel, supervisor: AsyncMock, project: MagicMock
    ) -> None:
        acquirer.acquire.return_value = Target(platform=Platform.ANDROID, target="R58M123ABC")
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", PASSED_RESULTS))

        await make_orchestrator().run()

        assert supervisor.run.call_args_list[0].args == ("adb", ["-s", "R58M123ABC", "reverse", "tcp:8008", "tcp:8008"])
        descriptor = json.loads((project.www_dir / "medic.json").read_text())
        assert descriptor == {"logurl": "ws://127.0.0.1:8008"}

    async def test_custom_cli(self, make_orchestrator, channel: FakeChannel, supervisor: AsyncMock) -> None:
        supervisor.run.side_effect = _launch_emitting(channel, ("jasmineDone", PASSED_RESULTS))

        await make_orchestrator(cli="/opt/cordova/bin/cordova").run()

        assert supervisor.run.call_args.args[0] == "/opt/cordova/bin/cordova"


def test_write_medic_descriptor(tmp_path: Path) -> None:
    path = write_medic_descriptor(tmp_path, "ws://10.0.2.2:7008")

    assert path == tmp_path / "medic.json"
    assert json.loads(path.read_text()) == {"logurl": "ws://10.0.2.2:7008"}
