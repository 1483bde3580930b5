"""Typed event bus for the closed set of result-channel events."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from medic.shared.enums import ChannelEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]

ALLOWED_EVENTS: frozenset[str] = frozenset(event.value for event in ChannelEvent)


def as_channel_event(name: str | ChannelEvent) -> ChannelEvent | None:
    """Return the allow-listed event for ``name`` or ``None``."""
    if isinstance(name, ChannelEvent):
        return name
    if name not in ALLOWED_EVENTS:
        return None
    return ChannelEvent(name)


class EventBus:
    """Relays allow-listed events to their subscribers.

    Handlers run one after another on the event loop, in subscription order.
    A failing handler is logged and does not prevent the remaining handlers
    from running.
    """

    def __init__(self) -> None:
        self._handlers: dict[ChannelEvent, list[EventHandler]] = {event: [] for event in ChannelEvent}

    def subscribe(self, event: str | ChannelEvent, handler: EventHandler) -> None:
        resolved = as_channel_event(event)
        if resolved is None:
            raise ValueError(f"unknown channel event: {event!r}")
        self._handlers[resolved].append(handler)

    def unsubscribe(self, event: str | ChannelEvent, handler: EventHandler) -> None:
        resolved = as_channel_event(event)
        if resolved is None:
            return
        try:
            self._handlers[resolved].remove(handler)
        except ValueError:
            pass

    def publish(self, event: str | ChannelEvent, data: Any = None) -> bool:
        """Invoke every handler of ``event``.

        Returns:
            False when ``event`` is not allow-listed and was dropped.
        """
        resolved = as_channel_event(event)
        if resolved is None:
            logger.debug("dropping unknown channel event %r", event)
            return False

        for handler in list(self._handlers[resolved]):
            try:
                handler(data)
            except Exception:
                logger.exception("handler for %s failed", resolved.value)
        return True

    def handler_count(self, event: str | ChannelEvent) -> int:
        resolved = as_channel_event(event)
        return 0 if resolved is None else len(self._handlers[resolved])
