"""Hierarchical exception types for medic test sessions."""

from __future__ import annotations


class MedicError(Exception):
    """Base exception for all medic errors."""


# ── Target ──────────────────────────────────────────────────────


class AcquisitionExhaustedError(MedicError):
    """No execution target could be obtained after bounded retries."""


class UnsupportedPlatformError(MedicError):
    """The requested platform cannot be resolved to a target."""


# ── Process ─────────────────────────────────────────────────────


class ProcessError(MedicError):
    """External command could not be run to a successful exit."""


class LaunchFailedError(ProcessError):
    """The command binary could not be started."""


class ProcessFailedError(ProcessError):
    """The command exited with a nonzero return code."""

    def __init__(self, message: str, *, returncode: int, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class ProcessTimeoutError(ProcessError):
    """The command was killed after exceeding its timeout."""


# ── Result channel ──────────────────────────────────────────────


class ChannelBindError(MedicError):
    """No usable port for the result channel."""

    def __init__(self, message: str, *, port: int | None = None) -> None:
        super().__init__(message)
        self.port = port


class UnexpectedDisconnectError(MedicError):
    """The device dropped before reporting a terminal result."""


class InitialConnectionTimeoutError(MedicError):
    """No device connected to the result channel within the grace window."""


# ── Session ─────────────────────────────────────────────────────


class SessionTimeoutError(MedicError):
    """The session exceeded its absolute time limit."""


class ProjectError(MedicError):
    """Temporary app project could not be created or prepared."""
