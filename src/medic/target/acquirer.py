"""Resolves a platform request into a ready execution target."""

from __future__ import annotations

import logging

from medic.process.supervisor import ProcessSupervisor
from medic.project.cordova import COMMON_CLI_ARGS
from medic.shared.enums import Platform
from medic.shared.exceptions import ProcessError
from medic.shared.models import Target
from medic.target.emulator import AndroidEmulator
from medic.target.kill import PlatformKiller
from medic.target.simulator import SimulatorInventory, SimulatorModel, select_model

logger = logging.getLogger(__name__)


class TargetAcquirer:
    """Produces a Target for browser/desktop, Android and iOS platforms.

    Acquisition returns ``None`` when retries are exhausted; callers treat
    that as fatal. Unsupported platforms raise ``UnsupportedPlatformError``.
    """

    def __init__(
        self,
        *,
        supervisor: ProcessSupervisor,
        emulator: AndroidEmulator,
        killer: PlatformKiller,
        inventory: SimulatorInventory,
        cli: str = "cordova",
        boot_attempts: int = 3,
        boot_timeout: float = 300,
    ) -> None:
        if boot_attempts < 1:
            raise ValueError("boot_attempts must be at least 1")
        self._supervisor = supervisor
        self._emulator = emulator
        self._killer = killer
        self._inventory = inventory
        self._cli = cli
        self._boot_attempts = boot_attempts
        self._boot_timeout = boot_timeout

    async def acquire(
        self,
        platform: Platform | str,
        hint: str | None = None,
        *,
        project_dir: str | None = None,
    ) -> Target | None:
        """Resolve ``platform`` into a ready Target.

        Args:
            platform: Platform id, e.g. ``android`` or ``ios``.
            hint: AVD name for Android, model regex for iOS.
            project_dir: App project used to list iOS simulator models.

        Returns:
            The target, or None when no target could be obtained.

        Raises:
            UnsupportedPlatformError: ``platform`` is not a known platform id.
        """
        resolved = Platform.parse(platform)
        logger.info("choosing target for %s", resolved.value)

        if resolved in (Platform.BROWSER, Platform.ELECTRON):
            return Target.passthrough(resolved)
        if resolved == Platform.ANDROID:
            return await self._acquire_android(hint)
        return await self._acquire_ios(hint, project_dir)

    async def _acquire_android(self, hint: str | None) -> Target | None:
        started = await self._emulator.list_started()
        if started:
            logger.info("reusing running emulator %s", started[0])
            return Target(platform=Platform.ANDROID, target=started[0])

        for attempt in range(1, self._boot_attempts + 1):
            logger.info("starting an Android emulator (attempt %d/%d)", attempt, self._boot_attempts)
            serial = await self._emulator.start(hint, timeout=self._boot_timeout)
            if serial:
                return Target(platform=Platform.ANDROID, target=serial)
            if attempt < self._boot_attempts:
                await self._killer.kill(Platform.ANDROID)

        logger.error("could not start an Android emulator after %d attempts", self._boot_attempts)
        return None

    async def _acquire_ios(self, hint: str | None, project_dir: str | None) -> Target | None:
        try:
            result = await self._supervisor.run(
                self._cli,
                ["run", "ios", "--list", "--emulator", *COMMON_CLI_ARGS],
                cwd=project_dir,
            )
        except ProcessError as exc:
            logger.error("failed to list iOS simulators: %s", exc)
            return None

        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        logger.info("available simulators:\n%s", "\n".join(lines))
        line = select_model(lines, hint)
        if line is None:
            logger.error("no iOS simulator available")
            return None

        model = SimulatorModel.parse(line)
        entry = await self._inventory.resolve(model.device, model.version)
        if entry is None:
            return None
        return Target(platform=Platform.IOS, target=model.name, sim_id=entry.udid)
