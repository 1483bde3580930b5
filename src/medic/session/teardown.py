"""Best-effort post-run steps: device log collection and app uninstall."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from medic.process.supervisor import ProcessSupervisor
from medic.shared.enums import Platform
from medic.shared.models import Target

logger = logging.getLogger(__name__)


def log_file_path(output_dir: Path, platform: Platform) -> Path:
    return output_dir / f"{platform.value}_logs.txt"


class LogCollector:
    """Writes device logs to ``<platform>_logs.txt`` in the output directory."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        adb_bin: str = "adb",
        simulator_logs_root: Path | None = None,
        timeout: float = 120,
    ) -> None:
        self._supervisor = supervisor
        self._adb_bin = adb_bin
        self._simulator_logs_root = simulator_logs_root or Path.home() / "Library" / "Logs" / "CoreSimulator"
        self._timeout = timeout

    async def collect(self, target: Target, output_dir: Path) -> Path | None:
        """Collect logs for ``target``.

        Returns:
            The written log file, or None when nothing was collected.

        Raises:
            ProcessError: If ``adb logcat`` fails.
        """
        if target.is_passthrough:
            logger.info("log collection is unsupported for %s, skipping", target.platform.value)
            return None

        if target.platform == Platform.ANDROID and target.target:
            return await self._collect_android(target.target, output_dir)
        if target.platform == Platform.IOS:
            return await self._collect_ios(target, output_dir)
        logger.info("log collection is unsupported for %s, skipping", target.platform.value)
        return None

    async def _collect_android(self, serial: str, output_dir: Path) -> Path:
        result = await self._supervisor.run(
            self._adb_bin,
            ["-s", serial, "logcat", "-d", "-v", "time"],
            timeout=self._timeout,
        )
        destination = log_file_path(output_dir, Platform.ANDROID)
        output_dir.mkdir(parents=True, exist_ok=True)
        destination.write_text(result.stdout, encoding="utf-8")
        logger.info("device logs written to %s", destination)
        return destination

    async def _collect_ios(self, target: Target, output_dir: Path) -> Path | None:
        if not target.sim_id:
            logger.info("missing simulator id on target; cannot locate logs")
            return None

        system_log = self._simulator_logs_root / target.sim_id / "system.log"
        if not system_log.is_file():
            logger.info("no logs found for simulator %s", target.sim_id)
            return None

        destination = log_file_path(output_dir, target.platform)
        output_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, system_log, destination)
        logger.info("device logs copied to %s", destination)
        return destination


class AppUninstaller:
    """Removes the test app from an Android emulator/device or iOS simulator."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        adb_bin: str = "adb",
        xcrun_bin: str = "xcrun",
        timeout: float = 60,
    ) -> None:
        self._supervisor = supervisor
        self._adb_bin = adb_bin
        self._xcrun_bin = xcrun_bin
        self._timeout = timeout

    async def uninstall(self, target: Target, app_id: str) -> bool:
        """Uninstall ``app_id`` from ``target``.

        Returns:
            False when the target has nothing to uninstall from.

        Raises:
            ProcessError: If the uninstall command fails.
        """
        if target.is_passthrough:
            return False

        if target.platform == Platform.ANDROID and target.target:
            await self._supervisor.run(
                self._adb_bin, ["-s", target.target, "uninstall", app_id], timeout=self._timeout
            )
            return True
        if target.platform == Platform.IOS and target.sim_id:
            await self._supervisor.run(
                self._xcrun_bin, ["simctl", "uninstall", target.sim_id, app_id], timeout=self._timeout
            )
            return True
        return False
