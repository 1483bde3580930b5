"""Command line entry point: ``medic --platform android --plugin ./my-plugin``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import sys

from pydantic import ValidationError

from medic.channel.server import ResultChannel
from medic.config import RunRequest, Settings, get_settings
from medic.process.supervisor import ProcessSupervisor
from medic.project.cordova import CordovaProject
from medic.session.orchestrator import SessionOrchestrator
from medic.session.reporters import LoggingReporter
from medic.session.teardown import AppUninstaller, LogCollector
from medic.shared.enums import ExecutionMode, SessionOutcome
from medic.shared.exceptions import MedicError
from medic.shared.models import Session
from medic.target.acquirer import TargetAcquirer
from medic.target.emulator import AndroidEmulator
from medic.target.kill import PlatformKiller
from medic.target.simulator import SimulatorInventory

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="medic",
        description="Build a throwaway Cordova app with the given plugins and run their tests on a target.",
    )
    parser.add_argument("--version", action="version", version=VERSION)
    parser.add_argument(
        "--platform",
        required=True,
        help="Platform to test on, optionally with a spec (android, android@13.0.0, ios, browser, electron).",
    )
    parser.add_argument(
        "--plugin",
        dest="plugins",
        action="append",
        required=True,
        help="Plugin to install and test; repeat for several plugins.",
    )
    parser.add_argument("--outputDir", dest="output_dir", default=None, help="Directory for device logs.")
    parser.add_argument(
        "--target",
        default=None,
        help="Android AVD name or a regex matching the iOS simulator model.",
    )
    parser.add_argument("--ci", action="store_true", help="Skip tests that require user interaction.")
    parser.add_argument("--timeout", dest="timeout_ms", type=int, default=None, help="Session timeout in ms.")
    parser.add_argument(
        "--action",
        choices=[mode.value for mode in ExecutionMode],
        default=ExecutionMode.RUN.value,
        help="Cordova command used to launch the app.",
    )
    parser.add_argument("--justbuild", action="store_true", help="Only build the app; same as --action build.")
    parser.add_argument("--verbose", action="store_true", help="Log commands and device console output.")
    parser.add_argument(
        "--cleanUpAfterRun",
        dest="cleanup_after_run",
        action="store_true",
        help="Remove the temporary project when done.",
    )
    parser.add_argument("--cli", default=None, help="Cordova CLI executable (default: cordova).")
    parser.add_argument("--args", default="", help="Extra arguments appended to the launch command.")
    return parser


def parse_request(argv: list[str] | None = None) -> RunRequest:
    """Parse command line options into a RunRequest."""
    parser = build_parser()
    args = parser.parse_args(argv)

    action = ExecutionMode.BUILD if args.justbuild else ExecutionMode(args.action)
    try:
        return RunRequest(
            platform=args.platform,
            plugins=tuple(args.plugins),
            action=action,
            output_dir=args.output_dir,
            target=args.target,
            ci=args.ci,
            verbose=args.verbose,
            cleanup_after_run=args.cleanup_after_run,
            timeout_ms=args.timeout_ms,
            cli=args.cli,
            args=tuple(shlex.split(args.args)),
        )
    except ValidationError as exc:
        parser.error(str(exc))


def build_orchestrator(request: RunRequest, settings: Settings) -> SessionOrchestrator:
    """Wire the session collaborators from settings and the request."""
    cli = request.cli or settings.cli
    supervisor = ProcessSupervisor(verbose=request.verbose)
    killer = PlatformKiller(supervisor, adb_bin=settings.adb_bin)

    framework_plugins = [settings.test_framework_plugin, settings.device_plugin]
    if request.ci:
        framework_plugins.append(settings.ci_plugin)

    project = CordovaProject(
        supervisor,
        cli=cli,
        platform_spec=request.platform,
        plugins=request.plugins,
        framework_plugins=framework_plugins,
    )
    acquirer = TargetAcquirer(
        supervisor=supervisor,
        emulator=AndroidEmulator(
            supervisor,
            adb_bin=settings.adb_bin,
            emulator_bin=settings.emulator_bin,
            poll_interval=settings.emulator_boot_poll_seconds,
        ),
        killer=killer,
        inventory=SimulatorInventory(supervisor, xcrun_bin=settings.xcrun_bin),
        cli=cli,
        boot_attempts=settings.emulator_boot_attempts,
        boot_timeout=settings.emulator_boot_timeout_seconds,
    )
    channel = ResultChannel(
        heartbeat_interval=settings.heartbeat_interval_seconds,
        heartbeat_timeout=settings.heartbeat_timeout_seconds,
    )
    return SessionOrchestrator(
        request,
        settings=settings,
        project=project,
        acquirer=acquirer,
        channel=channel,
        supervisor=supervisor,
        collector=LogCollector(supervisor, adb_bin=settings.adb_bin),
        uninstaller=AppUninstaller(
            supervisor,
            adb_bin=settings.adb_bin,
            xcrun_bin=settings.xcrun_bin,
            timeout=settings.uninstall_timeout_seconds,
        ),
        killer=killer,
        reporters=[LoggingReporter()],
    )


async def run_session(request: RunRequest, settings: Settings) -> Session:
    return await build_orchestrator(request, settings).run()


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``medic`` console script; exits 0 only when the tests passed."""
    request = parse_request(argv)
    logging.basicConfig(
        level=logging.DEBUG if request.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        session = asyncio.run(run_session(request, get_settings()))
    except MedicError as exc:
        print(f"medic: {exc}", file=sys.stderr)
        return 1

    if session.outcome == SessionOutcome.ERROR:
        print(f"medic: {session.error_message}", file=sys.stderr)
    exit_code = 0 if session.passed else 1
    logger.info("finished with exit code %d", exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
