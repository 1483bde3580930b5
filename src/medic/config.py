"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from medic.shared.enums import ExecutionMode, Platform


class Settings(BaseSettings):
    """Tool-wide tunables loaded from environment variables."""

    model_config = {"env_prefix": "MEDIC_", "frozen": True}

    # Binaries
    cli: str = "cordova"
    adb_bin: str = "adb"
    emulator_bin: str = "emulator"
    xcrun_bin: str = "xcrun"

    # App under test
    app_id: str = "io.cordova.hellocordova"
    test_framework_plugin: str = "github:apache/cordova-plugin-test-framework"
    # In-app reporter plugin that reads medic.json and connects to the result channel;
    # run/emulate sessions refuse to start without it
    device_plugin: str = ""
    # Installed only for --ci runs
    ci_plugin: str = ""

    # Result channel
    bind_host: str = "0.0.0.0"
    # 0 lets the OS pick a free port; channel_port_end > channel_port probes a range
    channel_port: int = 0
    channel_port_end: int = 0
    heartbeat_interval_seconds: float = 25
    heartbeat_timeout_seconds: float = 60

    # Time limits
    initial_connection_timeout_seconds: float = 540
    session_timeout_seconds: float = 3600
    uninstall_timeout_seconds: float = 60

    # Android emulator boot
    emulator_boot_attempts: int = 3
    emulator_boot_timeout_seconds: float = 300
    emulator_boot_poll_seconds: float = 3


def get_settings() -> Settings:
    """Factory; tests override it with their own Settings."""
    return Settings()


class RunRequest(BaseModel):
    """Options for one invocation, as parsed by the command line."""

    model_config = {"frozen": True}

    platform: str
    plugins: tuple[str, ...] = ()
    action: ExecutionMode = ExecutionMode.RUN
    output_dir: str | None = None
    target: str | None = None
    ci: bool = False
    verbose: bool = False
    cleanup_after_run: bool = False
    timeout_ms: int | None = Field(default=None, gt=0)
    cli: str | None = None
    args: tuple[str, ...] = ()

    @property
    def platform_id(self) -> Platform:
        """Platform name without an ``@<spec>`` suffix (``android@../cordova-android``)."""
        return Platform.parse(self.platform)

    def timeout_seconds(self, settings: Settings) -> float:
        if self.timeout_ms is None:
            return settings.session_timeout_seconds
        return self.timeout_ms / 1000


def channel_ports(settings: Settings) -> int | range:
    """Fixed port or inclusive port range the result channel binds to."""
    if settings.channel_port_end > settings.channel_port > 0:
        return range(settings.channel_port, settings.channel_port_end + 1)
    return settings.channel_port
