"""WebSocket result channel the deployed test app reports back to."""

from __future__ import annotations

import asyncio
import errno
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from medic.channel.bus import EventBus, EventHandler
from medic.shared.enums import ChannelEvent, Platform
from medic.shared.exceptions import ChannelBindError
from medic.shared.models import ChannelMessage, Target

logger = logging.getLogger(__name__)

ANDROID_EMULATOR_HOST = "10.0.2.2"
LOOPBACK_HOST = "127.0.0.1"


def server_ip(platform: Platform, target: Target | None = None) -> str:
    """Return the host address the app uses to reach this machine.

    Android emulators reach the host through their special loopback alias.
    iOS simulators and devices, desktop/browser targets and Android devices
    with ``adb reverse`` use 127.0.0.1.
    """
    if platform != Platform.ANDROID:
        return LOOPBACK_HOST
    if target is None or target.is_passthrough or target.is_emulator:
        return ANDROID_EMULATOR_HOST
    return LOOPBACK_HOST


def medic_address(platform: Platform, port: int, target: Target | None = None) -> str:
    return f"ws://{server_ip(platform, target)}:{port}"


@dataclass(frozen=True, slots=True)
class ChannelAddress:
    host: str
    port: int


@dataclass(eq=False, slots=True)
class PeerConnection:
    """Bookkeeping for one connected device socket."""

    connection: Any
    last_activity: float
    open: bool = True

    def touch(self, now: float) -> None:
        self.last_activity = now


class ResultChannel:
    """Accepts device connections and relays allow-listed events.

    Every connection is stamped with a monotonic last-activity time that is
    refreshed by each inbound message and each pong. A heartbeat task pings
    idle peers and aborts any peer silent for longer than ``heartbeat_timeout``,
    publishing a single ``disconnect`` event for it.
    """

    def __init__(
        self,
        *,
        bus: EventBus | None = None,
        heartbeat_interval: float = 25,
        heartbeat_timeout: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bus = bus or EventBus()
        self._heartbeat_interval = heartbeat_interval
        self._heartbeat_timeout = heartbeat_timeout
        self._clock = clock
        self._server: Server | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._peers: set[PeerConnection] = set()
        self.address: ChannelAddress | None = None

    async def start(self, host: str = "0.0.0.0", port: int | range = 0) -> ChannelAddress:
        """Bind the channel and start the heartbeat.

        Args:
            host: Interface to listen on.
            port: A fixed port (0 lets the OS choose) or a range of candidates
                probed in order.

        Returns:
            The bound address.

        Raises:
            ChannelBindError: The fixed port is unavailable or every port in
                the range is.
        """
        if self._server is not None:
            raise RuntimeError("result channel already started")

        candidates = port if isinstance(port, range) else range(port, port + 1)
        last_error: OSError | None = None
        for candidate in candidates:
            try:
                self._server = await serve(
                    self._handle,
                    host,
                    candidate,
                    ping_interval=None,
                    ping_timeout=None,
                )
            except OSError as exc:
                if exc.errno not in (errno.EADDRINUSE, errno.EACCES, errno.EADDRNOTAVAIL):
                    raise ChannelBindError(f"cannot bind {host}:{candidate}: {exc}", port=candidate) from exc
                logger.debug("port %d unavailable: %s", candidate, exc)
                last_error = exc
                continue
            break

        if self._server is None:
            if isinstance(port, range):
                raise ChannelBindError(
                    f"no free port in range {port.start}-{port.stop - 1}", port=None
                ) from last_error
            raise ChannelBindError(f"port {port} is unavailable", port=port) from last_error

        bound_port = self._server.sockets[0].getsockname()[1]
        self.address = ChannelAddress(host=host, port=bound_port)
        self._heartbeat_task = asyncio.create_task(self._heartbeat(), name="result-channel-heartbeat")
        logger.info("result channel listening on %s:%d", host, bound_port)
        return self.address

    def subscribe(self, event: str | ChannelEvent, handler: EventHandler) -> None:
        self.bus.subscribe(event, handler)

    def unsubscribe(self, event: str | ChannelEvent, handler: EventHandler) -> None:
        self.bus.unsubscribe(event, handler)

    def is_peer_connected(self) -> bool:
        return any(peer.open for peer in self._peers)

    def address_for(self, platform: Platform, target: Target | None = None) -> str:
        """Return the ``ws://`` URL the app on ``target`` should connect to."""
        if self.address is None:
            raise RuntimeError("result channel not started")
        return medic_address(platform, self.address.port, target)

    async def stop(self) -> None:
        """Stop the heartbeat and close the listening socket. Idempotent."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        if self._server is not None:
            server, self._server = self._server, None
            server.close()
            await server.wait_closed()
            logger.info("result channel stopped")

    async def sweep(self) -> int:
        """Run one heartbeat pass over every open connection.

        Returns:
            Number of connections terminated for inactivity.
        """
        now = self._clock()
        terminated = 0
        for peer in list(self._peers):
            if not peer.open:
                continue
            idle = now - peer.last_activity
            if idle > self._heartbeat_timeout:
                logger.warning("device connection idle for %.0fs; terminating", idle)
                self._terminate(peer)
                terminated += 1
                continue
            await self._ping(peer)
        return terminated

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            await self.sweep()

    async def _ping(self, peer: PeerConnection) -> None:
        try:
            pong_waiter = await peer.connection.ping()
        except ConnectionClosed:
            return

        def _on_pong(fut: asyncio.Future[Any]) -> None:
            if fut.cancelled() or fut.exception() is not None:
                return
            peer.touch(self._clock())
            logger.debug("received pong")

        pong_waiter.add_done_callback(_on_pong)

    async def _handle(self, connection: ServerConnection) -> None:
        peer = self.register(connection)
        try:
            async for raw in connection:
                self.receive(peer, raw)
        except ConnectionClosed:
            pass
        finally:
            self.release(peer)

    def register(self, connection: Any) -> PeerConnection:
        """Track a newly accepted connection."""
        peer = PeerConnection(connection=connection, last_activity=self._clock())
        self._peers.add(peer)
        logger.info("device connected to result channel")
        return peer

    def receive(self, peer: PeerConnection, raw: str | bytes) -> None:
        """Handle one inbound message from ``peer``."""
        peer.touch(self._clock())
        try:
            message = ChannelMessage.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("invalid message on result channel: %s", exc)
            return
        self.bus.publish(message.event, message.data)

    def release(self, peer: PeerConnection) -> None:
        """Forget a closed connection and publish its ``disconnect``."""
        self._peers.discard(peer)
        if not peer.open:
            return
        peer.open = False
        logger.info("device disconnected from result channel")
        self.bus.publish(ChannelEvent.DISCONNECT)

    def _terminate(self, peer: PeerConnection) -> None:
        transport = getattr(peer.connection, "transport", None)
        if transport is not None:
            transport.abort()
        self.release(peer)
