"""Pydantic domain models shared by all modules."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from medic.shared.enums import ExecutionMode, Platform, SessionOutcome, SessionPhase

_PHASE_ORDER = list(SessionPhase)


class Target(BaseModel):
    """A resolved execution destination for one session."""

    model_config = {"frozen": True}

    platform: Platform
    target: str | None = None
    sim_id: str | None = None

    @classmethod
    def passthrough(cls, platform: Platform) -> Target:
        return cls(platform=platform)

    @property
    def is_passthrough(self) -> bool:
        return self.target is None

    @property
    def is_emulator(self) -> bool:
        """True for Android emulators (``emulator-5554`` style serials)."""
        return self.platform == Platform.ANDROID and (self.target or "").startswith("emulator-")


class Session(BaseModel):
    """State of the single test session driven by the orchestrator."""

    platform: Platform
    mode: ExecutionMode = ExecutionMode.RUN
    timeout_seconds: float = 3600
    connection_timeout_seconds: float = 540
    phase: SessionPhase = SessionPhase.PREPARING
    target: Target | None = None
    outcome: SessionOutcome = SessionOutcome.PENDING
    error_message: str | None = None

    @property
    def is_build_only(self) -> bool:
        return self.mode == ExecutionMode.BUILD

    @property
    def passed(self) -> bool:
        return self.outcome == SessionOutcome.PASSED

    def advance(self, phase: SessionPhase) -> None:
        """Move to ``phase``; phases never go backward."""
        if _PHASE_ORDER.index(phase) < _PHASE_ORDER.index(self.phase):
            raise ValueError(f"cannot move session from {self.phase.value} back to {phase.value}")
        self.phase = phase

    def settle(self, outcome: SessionOutcome, error_message: str | None = None) -> None:
        """Record the verdict once; later calls are ignored."""
        if self.outcome != SessionOutcome.PENDING:
            return
        self.outcome = outcome
        self.error_message = error_message


class ChannelMessage(BaseModel):
    """One JSON message sent by the device: ``{"event": ..., "data": ...}``."""

    event: str
    data: Any = None
