"""Test-lifecycle reporters fed by result-channel events."""

from __future__ import annotations

import logging
from typing import Any

from medic.shared.enums import ChannelEvent

logger = logging.getLogger(__name__)

# Reporter method invoked for each lifecycle event.
REPORTER_ROUTES: dict[ChannelEvent, str] = {
    ChannelEvent.JASMINE_STARTED: "jasmine_started",
    ChannelEvent.SPEC_STARTED: "spec_started",
    ChannelEvent.SPEC_DONE: "spec_done",
    ChannelEvent.SUITE_STARTED: "suite_started",
    ChannelEvent.SUITE_DONE: "suite_done",
    ChannelEvent.JASMINE_DONE: "jasmine_done",
}


class Reporter:
    """Base reporter; subclasses override the callbacks they need."""

    def jasmine_started(self, data: Any) -> None:
        pass

    def spec_started(self, data: Any) -> None:
        pass

    def spec_done(self, data: Any) -> None:
        pass

    def suite_started(self, data: Any) -> None:
        pass

    def suite_done(self, data: Any) -> None:
        pass

    def jasmine_done(self, data: Any) -> None:
        pass


def failed_spec_count(data: Any) -> int | None:
    """Read ``specResults.specFailed`` from a ``jasmineDone`` payload."""
    if not isinstance(data, dict):
        return None
    results = data.get("specResults")
    if not isinstance(results, dict):
        return None
    failed = results.get("specFailed")
    if isinstance(failed, bool) or not isinstance(failed, int):
        return None
    return failed


class LoggingReporter(Reporter):
    """Console reporter: one log line per finished spec plus a summary."""

    def __init__(self) -> None:
        self.passed = 0
        self.failed = 0
        self.skipped = 0

    def jasmine_started(self, data: Any) -> None:
        total = data.get("totalSpecsDefined") if isinstance(data, dict) else None
        logger.info("test run started (%s specs defined)", total if total is not None else "?")

    def spec_done(self, data: Any) -> None:
        if not isinstance(data, dict):
            return
        status = data.get("status")
        name = data.get("fullName") or data.get("description") or "<unnamed spec>"
        if status == "passed":
            self.passed += 1
            logger.debug("PASS %s", name)
        elif status == "failed":
            self.failed += 1
            messages = [e.get("message") for e in data.get("failedExpectations") or [] if isinstance(e, dict)]
            logger.error("FAIL %s: %s", name, "; ".join(m for m in messages if m))
        else:
            self.skipped += 1

    def jasmine_done(self, data: Any) -> None:
        logger.info(
            "test run finished: %d passed, %d failed, %d skipped (device reported %s failures)",
            self.passed,
            self.failed,
            self.skipped,
            failed_spec_count(data),
        )
