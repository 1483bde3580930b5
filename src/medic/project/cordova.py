"""Throwaway Cordova project the plugin tests are built from."""

from __future__ import annotations

import logging
import shlex
import shutil
import tempfile
import xml.etree.ElementTree as ElementTree
from collections.abc import Sequence
from pathlib import Path

from medic.process.supervisor import ProcessSupervisor
from medic.shared.exceptions import ProjectError

logger = logging.getLogger(__name__)

COMMON_CLI_ARGS = ("--no-telemetry", "--no-update-notifier")
TEST_START_PAGE = "cdvtests/index.html"


def resolve_plugin_spec(spec: str, base: Path) -> str:
    """Make a plugin spec that names a local directory absolute.

    Trailing CLI options (``./my-plugin --variable KEY=VALUE``) are kept.
    Registry names and git URLs that do not exist under ``base`` are returned
    unchanged.
    """
    location, sep, options = spec.partition(" --")
    if location and (base / location).exists():
        return str((base / location).resolve()) + sep + options
    return spec


def resolve_platform_spec(spec: str, base: Path) -> str:
    """Make the ``@<path>`` part of ``android@../cordova-android`` absolute."""
    name, _, version = spec.partition("@")
    if version and (base / version).exists():
        return f"{name}@{(base / version).resolve()}"
    return spec


def plugin_id(plugin_xml: Path) -> str | None:
    try:
        return ElementTree.parse(plugin_xml).getroot().get("id")
    except ElementTree.ParseError as exc:
        logger.warning("cannot read %s: %s", plugin_xml, exc)
        return None


class CordovaProject:
    """Creates a temp Cordova app with the platform and plugins under test."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        *,
        cli: str = "cordova",
        platform_spec: str,
        plugins: Sequence[str] = (),
        framework_plugins: Sequence[str] = (),
        parent_dir: str | None = None,
        work_dir: str | None = None,
    ) -> None:
        base = Path(work_dir) if work_dir else Path.cwd()
        self._supervisor = supervisor
        self._cli = cli
        self._platform_spec = resolve_platform_spec(platform_spec, base)
        self._plugins = [resolve_plugin_spec(p, base) for p in plugins]
        self._framework_plugins = [resolve_plugin_spec(p, base) for p in framework_plugins if p]
        self._parent_dir = parent_dir
        self._path: Path | None = None

    @property
    def path(self) -> Path:
        if self._path is None:
            raise ProjectError("project has not been created")
        return self._path

    @property
    def www_dir(self) -> Path:
        return self.path / "www"

    async def create(self) -> Path:
        self._path = Path(tempfile.mkdtemp(prefix="medic-", dir=self._parent_dir))
        logger.info("creating temp project at %s", self._path)
        await self._supervisor.run(self._cli, ["create", str(self._path), *COMMON_CLI_ARGS])
        return self._path

    async def prepare(self) -> None:
        cwd = str(self.path)
        logger.info("adding platform %s", self._platform_spec)
        await self._supervisor.run(self._cli, ["platform", "add", self._platform_spec, *COMMON_CLI_ARGS], cwd=cwd)

        for plugin in [*self._framework_plugins, *self._plugins]:
            await self._install_plugin(plugin)
        await self._install_plugin_tests()

        self._set_start_page()

        platform_id = self._platform_spec.split("@", 1)[0]
        requirements = await self._supervisor.run(
            self._cli, ["requirements", platform_id, *COMMON_CLI_ARGS], cwd=cwd
        )
        logger.info("platform requirements:\n%s", requirements.stdout.strip())

    async def _install_plugin(self, spec: str) -> None:
        logger.info("installing plugin %s", spec)
        location, _, options = spec.partition(" --")
        extra = shlex.split("--" + options) if options else []
        await self._supervisor.run(
            self._cli, ["plugin", "add", location, *extra, *COMMON_CLI_ARGS], cwd=str(self.path)
        )

    async def _install_plugin_tests(self) -> None:
        """Install the ``tests`` sub-plugin of every plugin that ships one.

        Local plugin sources are checked first, then the copies under the
        project's ``plugins`` directory; a tests plugin id is installed once.
        """
        candidates = [Path(spec.partition(" --")[0]) for spec in self._plugins]
        installed = self.path / "plugins"
        if installed.is_dir():
            candidates += sorted(p for p in installed.iterdir() if p.is_dir())

        seen: set[str] = set()
        for plugin_dir in candidates:
            tests_xml = plugin_dir / "tests" / "plugin.xml"
            if not plugin_dir.is_absolute() or not tests_xml.is_file():
                continue
            tests_id = plugin_id(tests_xml) or str(tests_xml.parent)
            if tests_id in seen:
                continue
            seen.add(tests_id)
            await self._install_plugin(str(plugin_dir / "tests"))

    def _set_start_page(self) -> None:
        config_xml = self.path / "config.xml"
        if not config_xml.is_file():
            raise ProjectError(f"config.xml not found in {self.path}")
        logger.info("setting the app start page to %s", TEST_START_PAGE)
        content = config_xml.read_text(encoding="utf-8")
        config_xml.write_text(content.replace('src="index.html"', f'src="{TEST_START_PAGE}"'), encoding="utf-8")

    def cleanup(self) -> None:
        if self._path is None:
            return
        logger.info("removing temporary project %s", self._path)
        shutil.rmtree(self._path, ignore_errors=True)
