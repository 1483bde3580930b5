"""Drives one test session from project creation to teardown."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from medic.channel.server import ResultChannel
from medic.config import RunRequest, Settings, channel_ports
from medic.process.supervisor import ProcessSupervisor
from medic.project.cordova import COMMON_CLI_ARGS
from medic.session.interfaces import AppProject, AppRemover, DeviceLogCollector, ProcessKiller, TargetProvider
from medic.session.race import fail_after, race
from medic.session.reporters import REPORTER_ROUTES, Reporter, failed_spec_count
from medic.shared.enums import ChannelEvent, ExecutionMode, Platform, SessionOutcome, SessionPhase
from medic.shared.exceptions import (
    AcquisitionExhaustedError,
    InitialConnectionTimeoutError,
    MedicError,
    ProcessError,
    ProjectError,
    SessionTimeoutError,
    UnexpectedDisconnectError,
)
from medic.shared.models import Session, Target

logger = logging.getLogger(__name__)

MEDIC_DESCRIPTOR = "medic.json"


def write_medic_descriptor(www_dir: Path, url: str) -> Path:
    """Write ``medic.json`` so the deployed app knows where to report."""
    path = www_dir / MEDIC_DESCRIPTOR
    path.write_text(json.dumps({"logurl": url}), encoding="utf-8")
    logger.info("app will report to %s", url)
    return path


class SessionOrchestrator:
    """Run one plugin test session and settle its outcome.

    The session moves through PREPARING, ACQUIRING, CHANNEL_OPEN and
    PROCESS_RUNNING, then either BUILD_ONLY or WAITING_FOR_RESULT, and
    finally COLLECTING and TORN_DOWN. Waiting ends with whichever happens
    first: ``jasmineDone``, a device disconnect, the launch command failing,
    no device connecting within the grace window, or the absolute timeout.
    Teardown always runs and never changes the outcome.
    """

    def __init__(
        self,
        request: RunRequest,
        *,
        settings: Settings,
        project: AppProject,
        acquirer: TargetProvider,
        channel: ResultChannel,
        supervisor: ProcessSupervisor,
        collector: DeviceLogCollector,
        uninstaller: AppRemover,
        killer: ProcessKiller,
        reporters: Sequence[Reporter] = (),
    ) -> None:
        self.request = request
        self.settings = settings
        self.project = project
        self.acquirer = acquirer
        self.channel = channel
        self.supervisor = supervisor
        self.collector = collector
        self.uninstaller = uninstaller
        self.killer = killer
        self.reporters = list(reporters)
        self.session = Session(
            platform=request.platform_id,
            mode=request.action,
            timeout_seconds=request.timeout_seconds(settings),
            connection_timeout_seconds=settings.initial_connection_timeout_seconds,
        )

    @property
    def cli(self) -> str:
        return self.request.cli or self.settings.cli

    async def run(self) -> Session:
        """Run the session to completion and return its final state."""
        try:
            await self._run_session()
        except UnexpectedDisconnectError as exc:
            logger.error("device disconnected before the tests finished")
            self.session.settle(SessionOutcome.FAILED, str(exc) or "device disconnected")
        except MedicError as exc:
            logger.error("session failed in %s: %s", self.session.phase.value, exc)
            self.session.settle(SessionOutcome.ERROR, str(exc))
        finally:
            try:
                if not self.session.is_build_only and self.session.target is not None:
                    await self._collect(self.session.target)
            finally:
                await self._tear_down()

        logger.info("session outcome: %s", self.session.outcome.value)
        return self.session

    async def _run_session(self) -> None:
        session = self.session
        if not session.is_build_only and not self.settings.device_plugin:
            raise ProjectError(
                "no device reporter plugin is configured (set MEDIC_DEVICE_PLUGIN); "
                "the app would never report results"
            )

        logger.info("preparing test project for %s", self.request.platform)
        await self.project.create()
        await self.project.prepare()

        session.advance(SessionPhase.ACQUIRING)
        target = await self._acquire()
        session.target = target

        session.advance(SessionPhase.CHANNEL_OPEN)
        await self._open_channel(target)

        passed = await race(
            self._launch_and_wait(target),
            fail_after(
                session.timeout_seconds,
                lambda: SessionTimeoutError(f"session timed out after {session.timeout_seconds:.0f}s"),
            ),
        )
        session.settle(SessionOutcome.PASSED if passed else SessionOutcome.FAILED)

    async def _acquire(self) -> Target:
        platform = self.session.platform
        if self.session.is_build_only:
            return Target.passthrough(platform)

        target = await self.acquirer.acquire(platform, self.request.target, project_dir=str(self.project.path))
        if target is None:
            raise AcquisitionExhaustedError(f"no {platform.value} target could be acquired")
        logger.info("using target %s", target.target or platform.value)
        return target

    async def _open_channel(self, target: Target) -> None:
        address = await self.channel.start(self.settings.bind_host, channel_ports(self.settings))
        if target.platform == Platform.ANDROID and target.target and not target.is_emulator:
            await self._reverse_port(target.target, address.port)

        write_medic_descriptor(self.project.www_dir, self.channel.address_for(target.platform, target))

        for reporter in self.reporters:
            for event, method in REPORTER_ROUTES.items():
                self.channel.subscribe(event, getattr(reporter, method))
        self.channel.subscribe(ChannelEvent.DEVICE_LOG, _log_device_message)
        self.channel.subscribe(ChannelEvent.DEVICE_INFO, _log_device_info)

    async def _reverse_port(self, serial: str, port: int) -> None:
        spec = f"tcp:{port}"
        try:
            await self.supervisor.run(self.settings.adb_bin, ["-s", serial, "reverse", spec, spec], timeout=30)
        except ProcessError as exc:
            logger.warning("adb reverse failed for %s: %s", serial, exc)

    def _command_args(self, target: Target) -> list[str]:
        action = self.request.action
        args = [action.value, target.platform.value, *self.request.args, *COMMON_CLI_ARGS]
        if action != ExecutionMode.BUILD and not target.is_passthrough:
            args += ["--target", target.target]
            if target.platform == Platform.IOS:
                args.append("--emulator")
        return args

    async def _launch_and_wait(self, target: Target) -> bool:
        session = self.session
        session.advance(SessionPhase.PROCESS_RUNNING)
        args = self._command_args(target)
        cwd = str(self.project.path)

        if session.is_build_only:
            session.advance(SessionPhase.BUILD_ONLY)
            logger.info("building app: %s %s", self.cli, " ".join(args))
            await self.supervisor.run(self.cli, args, cwd=cwd)
            return True

        session.advance(SessionPhase.WAITING_FOR_RESULT)
        outcome: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

        def _on_done(data: Any) -> None:
            if outcome.done():
                return
            failed = failed_spec_count(data)
            if failed is None:
                logger.warning("jasmineDone carried no failure count; treating the run as failed")
                outcome.set_result(False)
                return
            outcome.set_result(failed == 0)

        def _on_disconnect(data: Any) -> None:
            if not outcome.done():
                outcome.set_exception(UnexpectedDisconnectError("device disconnected before jasmineDone"))

        self.channel.subscribe(ChannelEvent.JASMINE_DONE, _on_done)
        self.channel.subscribe(ChannelEvent.DISCONNECT, _on_disconnect)
        try:
            return await race(outcome, self._launch(args, cwd, outcome), self._watch_connection(outcome))
        finally:
            self.channel.unsubscribe(ChannelEvent.JASMINE_DONE, _on_done)
            self.channel.unsubscribe(ChannelEvent.DISCONNECT, _on_disconnect)

    async def _launch(self, args: list[str], cwd: str, outcome: asyncio.Future[bool]) -> bool:
        logger.info("running app: %s %s", self.cli, " ".join(args))
        await self.supervisor.run(self.cli, args, cwd=cwd)
        logger.info("launch command finished, waiting for test results")
        return await asyncio.shield(outcome)

    async def _watch_connection(self, outcome: asyncio.Future[bool]) -> bool:
        grace = self.session.connection_timeout_seconds
        await asyncio.sleep(grace)
        if not self.channel.is_peer_connected():
            raise InitialConnectionTimeoutError(f"no device connected within {grace:.0f}s")
        return await asyncio.shield(outcome)

    async def _collect(self, target: Target) -> None:
        self.session.advance(SessionPhase.COLLECTING)
        output_dir = Path(self.request.output_dir) if self.request.output_dir else self.project.path
        try:
            path = await self.collector.collect(target, output_dir)
            if path is not None:
                logger.info("device logs written to %s", path)
        except Exception as exc:
            logger.error("failed to collect device logs: %s", exc)

        try:
            await self.uninstaller.uninstall(target, self.settings.app_id)
        except Exception as exc:
            logger.error("failed to uninstall %s: %s", self.settings.app_id, exc)
        finally:
            await self.killer.kill(target.platform)

    async def _tear_down(self) -> None:
        self.session.advance(SessionPhase.TORN_DOWN)
        await self.channel.stop()
        if self.request.cleanup_after_run:
            self.project.cleanup()


def _log_device_message(data: Any) -> None:
    if not isinstance(data, dict):
        logger.debug("device|console: %s", data)
        return
    msg = data.get("msg")
    if isinstance(msg, list):
        msg = " ".join(str(part) for part in msg)
    logger.debug("device|console.%s: %s", data.get("type", "log"), msg)


def _log_device_info(data: Any) -> None:
    logger.info("device info: %s", data)
