"""iOS simulator inventory and model matching."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from medic.process.supervisor import ProcessSupervisor
from medic.shared.exceptions import ProcessError

logger = logging.getLogger(__name__)

# "iPhone 15 Pro (17.0) (6F3E1C0A-8B6E-4E5B-9D4C-1A2B3C4D5E6F)"
_SIMULATOR_LINE = re.compile(r"^([a-zA-Z\d ]+) \(([\d.]+)\) [\[(]([a-zA-Z\d-]*)[\])].*$")

DEFAULT_FAMILY = "iPhone"


@dataclass(frozen=True, slots=True)
class SimulatorEntry:
    device: str
    version: str
    udid: str


@dataclass(frozen=True, slots=True)
class SimulatorModel:
    """A ``"<device>, <version>"`` line from ``cordova run ios --list``."""

    name: str
    version: str

    @classmethod
    def parse(cls, line: str) -> SimulatorModel:
        name, _, version = line.partition(",")
        return cls(name=name.strip(), version=version.strip())

    @property
    def device(self) -> str:
        """Inventory spelling of the device name (``iPhone-15-Pro`` -> ``iPhone 15 Pro``)."""
        return self.name.replace("-", " ").strip()


def parse_inventory(output: str, *, family: str = DEFAULT_FAMILY) -> list[SimulatorEntry]:
    """Parse ``xcrun xctrace list devices`` output into simulator entries."""
    entries: list[SimulatorEntry] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line.startswith(family):
            continue
        line = line.replace("ʀ", "R").replace(" Simulator", "")
        match = _SIMULATOR_LINE.match(line)
        if match is None:
            continue
        entries.append(SimulatorEntry(device=match.group(1), version=match.group(2), udid=match.group(3)))
    return entries


def select_model(lines: list[str], hint: str | None, *, family: str = DEFAULT_FAMILY) -> str | None:
    """Pick the simulator model line for ``hint``.

    The last line matching the ``hint`` regex wins. Without a match the first
    line of the generic ``family`` is used.
    """
    pattern = re.compile(hint or f"^{family}")
    matching = [line for line in lines if pattern.search(line)]
    if matching:
        return matching[-1]

    fallback = [line for line in lines if family in line]
    if not fallback:
        return None
    logger.warning("no simulator matches %r, falling back to %s", pattern.pattern, fallback[0])
    return fallback[0]


class SimulatorInventory:
    """Lazily populated cache of installed simulators.

    The listing is fetched once and reused until ``invalidate()``.
    """

    def __init__(self, supervisor: ProcessSupervisor, *, xcrun_bin: str = "xcrun", timeout: float = 120) -> None:
        self._supervisor = supervisor
        self._xcrun_bin = xcrun_bin
        self._timeout = timeout
        self._entries: list[SimulatorEntry] | None = None

    async def entries(self) -> list[SimulatorEntry]:
        if self._entries is not None:
            return self._entries
        try:
            result = await self._supervisor.run(
                self._xcrun_bin, ["xctrace", "list", "devices"], timeout=self._timeout
            )
        except ProcessError as exc:
            logger.error("failed to fetch simulator list: %s", exc)
            return []
        self._entries = parse_inventory(result.stdout)
        return self._entries

    def invalidate(self) -> None:
        self._entries = None

    async def resolve(self, device: str, version: str, *, family: str = DEFAULT_FAMILY) -> SimulatorEntry | None:
        """Find the simulator for ``device``/``version``.

        When several match the last listed one wins; when none match any
        simulator of the same ``family`` is used.
        """
        entries = await self.entries()
        matching = [e for e in entries if e.device == device and e.version == version]
        if len(matching) > 1:
            logger.warning("multiple simulators match %s (%s); using the last one", device, version)
        if matching:
            return matching[-1]

        same_family = [e for e in entries if e.device.startswith(family)]
        if not same_family:
            logger.error("no simulator found for %s (%s)", device, version)
            return None
        fallback = same_family[0]
        logger.warning(
            "no simulator matches %s (%s); degraded match %s (%s)",
            device,
            version,
            fallback.device,
            fallback.version,
        )
        return fallback
