"""Shared pytest fixtures for the medic test suite."""

from __future__ import annotations

import os

import pytest

from medic.config import Settings


@pytest.fixture(autouse=True)
def _clean_medic_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep MEDIC_* variables from the developer's shell out of Settings."""
    for name in list(os.environ):
        if name.startswith("MEDIC_"):
            monkeypatch.delenv(name)


@pytest.fixture()
def settings() -> Settings:
    """Return a Settings instance with short test time limits."""
    return Settings(
        initial_connection_timeout_seconds=5,
        session_timeout_seconds=5,
        emulator_boot_attempts=2,
        device_plugin="/opt/medic/reporter-plugin",
    )
