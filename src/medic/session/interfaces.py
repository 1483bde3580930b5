"""Protocol interfaces for session orchestrator dependency injection."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from medic.shared.enums import Platform
from medic.shared.models import Target


@runtime_checkable
class AppProject(Protocol):
    """Temporary app project the tests are built from."""

    @property
    def path(self) -> Path: ...

    @property
    def www_dir(self) -> Path: ...

    async def create(self) -> Path:
        """Create the project in a fresh temporary directory.

        Returns:
            Project directory.

        Raises:
            ProcessError: If the scaffolding command fails.
        """
        ...

    async def prepare(self) -> None:
        """Install the platform and plugins and point the app at the test page.

        Raises:
            ProcessError: If a CLI command fails.
            ProjectError: If project files are missing.
        """
        ...

    def cleanup(self) -> None:
        """Remove the project directory."""
        ...


@runtime_checkable
class TargetProvider(Protocol):
    """Protocol for resolving a platform into an execution target."""

    async def acquire(
        self,
        platform: Platform | str,
        hint: str | None = None,
        *,
        project_dir: str | None = None,
    ) -> Target | None:
        """Return a ready target, or None when retries are exhausted.

        Raises:
            UnsupportedPlatformError: Unknown platform id.
        """
        ...


@runtime_checkable
class DeviceLogCollector(Protocol):
    async def collect(self, target: Target, output_dir: Path) -> Path | None: ...


@runtime_checkable
class AppRemover(Protocol):
    async def uninstall(self, target: Target, app_id: str) -> bool: ...


@runtime_checkable
class ProcessKiller(Protocol):
    async def kill(self, platform: Platform) -> None: ...
