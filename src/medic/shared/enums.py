"""Domain enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, unique

from medic.shared.exceptions import UnsupportedPlatformError


@unique
class Platform(str, Enum):
    """Cordova platforms a session can target."""

    ANDROID = "android"
    IOS = "ios"
    BROWSER = "browser"
    ELECTRON = "electron"

    @classmethod
    def parse(cls, value: str | Platform) -> Platform:
        """Resolve a platform id, ignoring an ``@<spec>`` suffix such as ``android@13.0.0``."""
        if isinstance(value, Platform):
            return value
        name = value.split("@", 1)[0].strip().lower()
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedPlatformError(f"unsupported platform: {value!r}") from None


@unique
class ExecutionMode(str, Enum):
    """What the launch command is asked to do."""

    BUILD = "build"
    RUN = "run"
    EMULATE = "emulate"


@unique
class SessionPhase(str, Enum):
    """Lifecycle phases of a test session, in order."""

    PREPARING = "preparing"
    ACQUIRING = "acquiring"
    CHANNEL_OPEN = "channel_open"
    PROCESS_RUNNING = "process_running"
    WAITING_FOR_RESULT = "waiting_for_result"
    BUILD_ONLY = "build_only"
    COLLECTING = "collecting"
    TORN_DOWN = "torn_down"


@unique
class SessionOutcome(str, Enum):
    """Final verdict of a test session."""

    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"


@unique
class ChannelEvent(str, Enum):
    """Events the device-side app may send over the result channel."""

    DEVICE_LOG = "deviceLog"
    DISCONNECT = "disconnect"
    DEVICE_INFO = "deviceInfo"
    JASMINE_STARTED = "jasmineStarted"
    SPEC_STARTED = "specStarted"
    SPEC_DONE = "specDone"
    SUITE_STARTED = "suiteStarted"
    SUITE_DONE = "suiteDone"
    JASMINE_DONE = "jasmineDone"
