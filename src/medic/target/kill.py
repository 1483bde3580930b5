"""Terminates lingering emulator/simulator processes for a platform."""

from __future__ import annotations

import logging
import sys

from medic.process.supervisor import ProcessSupervisor
from medic.shared.enums import Platform
from medic.shared.exceptions import ProcessError

logger = logging.getLogger(__name__)


def _is_windows() -> bool:
    return sys.platform.startswith("win")


def tasks_for(platform: Platform) -> list[str]:
    """Process names that belong to a platform's emulator or simulator."""
    if platform == Platform.IOS:
        return ["Simulator", "iOS Simulator"]
    if platform == Platform.ANDROID:
        if _is_windows():
            return ["emulator-arm.exe", "qemu-system-i386.exe"]
        return ["emulator64-x86", "emulator64-arm", "qemu-system-i386", "qemu-system-x86_64"]
    if platform == Platform.BROWSER:
        return ["chrome.exe"] if _is_windows() else ["chrome"]
    return []


class PlatformKiller:
    """Best-effort ``killall``/``taskkill`` of platform processes.

    Failures are logged and never raised.
    """

    def __init__(self, supervisor: ProcessSupervisor, *, adb_bin: str = "adb", timeout: float = 60) -> None:
        self._supervisor = supervisor
        self._adb_bin = adb_bin
        self._timeout = timeout

    async def kill(self, platform: Platform) -> None:
        tasks = tasks_for(platform)
        if not tasks:
            logger.warning("no known tasks to kill for %s", platform.value)
            return

        await self._kill_tasks(tasks)
        if platform == Platform.ANDROID:
            await self._kill_adb_server()

    async def _kill_tasks(self, tasks: list[str]) -> None:
        if _is_windows():
            command = "taskkill"
            args = ["/t", "/F"]
            for name in tasks:
                args += ["/IM", name]
        else:
            command = "killall"
            args = ["-9", *tasks]

        try:
            await self._supervisor.run(command, args, timeout=self._timeout)
        except ProcessError as exc:
            logger.warning("kill command did not succeed: %s", exc)

    async def _kill_adb_server(self) -> None:
        logger.info("killing the adb server")
        try:
            await self._supervisor.run(self._adb_bin, ["kill-server"], timeout=self._timeout)
        except ProcessError as exc:
            logger.error("failed to kill the adb server: %s", exc)
            return
        logger.info("killed the adb server")
