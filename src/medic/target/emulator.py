"""Android emulator discovery and boot through ``adb`` and ``emulator``."""

from __future__ import annotations

import asyncio
import logging

from medic.process.supervisor import ProcessSupervisor, kill_process
from medic.shared.exceptions import LaunchFailedError, ProcessError

logger = logging.getLogger(__name__)

# Console ports the emulator accepts; the adb serial is ``emulator-<port>``.
_FIRST_CONSOLE_PORT = 5554
_LAST_CONSOLE_PORT = 5682


def parse_started(adb_devices_output: str) -> list[str]:
    """Extract ready emulator serials from ``adb devices`` output."""
    serials: list[str] = []
    for line in adb_devices_output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0].startswith("emulator-") and parts[1] == "device":
            serials.append(parts[0])
    return serials


class AndroidEmulator:
    """Lists running emulators and boots new ones."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        adb_bin: str = "adb",
        emulator_bin: str = "emulator",
        poll_interval: float = 3,
        command_timeout: float = 30,
    ) -> None:
        self._supervisor = supervisor
        self._adb_bin = adb_bin
        self._emulator_bin = emulator_bin
        self._poll_interval = poll_interval
        self._command_timeout = command_timeout
        # Emulators booted by this instance, by adb serial
        self.processes: dict[str, asyncio.subprocess.Process] = {}

    async def list_started(self) -> list[str]:
        try:
            result = await self._supervisor.run(self._adb_bin, ["devices"], timeout=self._command_timeout)
        except ProcessError as exc:
            logger.warning("could not list running emulators: %s", exc)
            return []
        return parse_started(result.stdout)

    async def list_avds(self) -> list[str]:
        result = await self._supervisor.run(self._emulator_bin, ["-list-avds"], timeout=self._command_timeout)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def start(self, avd: str | None = None, *, timeout: float = 300) -> str | None:
        """Boot an emulator and wait for ``sys.boot_completed``.

        Args:
            avd: AVD name to boot. Defaults to the first one installed.
            timeout: Seconds to wait for the boot to complete.

        Returns:
            The adb serial of the booted emulator, or None if it did not boot.

        Raises:
            LaunchFailedError: The emulator binary is missing.
        """
        try:
            avds = await self.list_avds()
        except LaunchFailedError:
            raise
        except ProcessError as exc:
            logger.error("could not list AVDs: %s", exc)
            return None

        if not avds:
            logger.error("no Android virtual devices are installed")
            return None
        name = avd if avd in avds else avds[0]
        if avd and avd not in avds:
            logger.warning("AVD %s not found, using %s", avd, name)

        port = self._free_console_port(await self.list_started())
        if port is None:
            logger.error("no free emulator console port")
            return None
        serial = f"emulator-{port}"

        logger.info("booting AVD %s as %s", name, serial)
        try:
            proc = await asyncio.create_subprocess_exec(
                self._emulator_bin,
                "-avd",
                name,
                "-port",
                str(port),
                "-no-snapshot-save",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise LaunchFailedError(f"failed to launch {self._emulator_bin}: {exc}") from exc

        try:
            booted = await self.wait_booted(serial, timeout=timeout)
        except asyncio.CancelledError:
            await kill_process(proc)
            raise

        if booted:
            logger.info("emulator %s is ready", serial)
            self.processes[serial] = proc
            return serial
        logger.warning("emulator %s did not boot within %.0fs", serial, timeout)
        await kill_process(proc)
        return None

    async def wait_booted(self, serial: str, *, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            try:
                result = await self._supervisor.run(
                    self._adb_bin,
                    ["-s", serial, "shell", "getprop", "sys.boot_completed"],
                    timeout=self._command_timeout,
                )
                if result.stdout.strip() == "1":
                    return True
            except ProcessError as exc:
                logger.debug("waiting for %s: %s", serial, exc)
            await asyncio.sleep(self._poll_interval)
        return False

    @staticmethod
    def _free_console_port(started: list[str]) -> int | None:
        used = {serial.removeprefix("emulator-") for serial in started}
        for port in range(_FIRST_CONSOLE_PORT, _LAST_CONSOLE_PORT + 1, 2):
            if str(port) not in used:
                return port
        return None
