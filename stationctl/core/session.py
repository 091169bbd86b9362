"""Per-station connection state machine."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from stationctl.core.command import CommandChannel
from stationctl.core.errors import (
    CharacteristicResolutionError,
    ConnectError,
    DisconnectedError,
    InvalidTransitionError,
    SessionStateError,
    SubscribeError,
)
from stationctl.core.events import EventSource, Subscription
from stationctl.core.model import (
    CONNECTED,
    CharacteristicRole,
    ConnectionState,
    DeviceIdentity,
    StationProfile,
    normalize_uuid,
)
from stationctl.transports.base import Characteristic, Peripheral

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

INIT_RESPONSE_CODE = 0x80

# Handshake the station expects before it serves commands. What each of these
# settings does is not documented; they are sent byte-for-byte as captured.
INIT_SEQUENCE: tuple[tuple[bytes, int], ...] = (
    (bytes([0x06, 0x06, 0x30, 0x30, 0x30, 0x30, 0x30, 0x30]), INIT_RESPONSE_CODE),
    (bytes([0x05, 0x06, 0x30, 0x30, 0x30, 0x30, 0x30, 0x30]), INIT_RESPONSE_CODE),
    (bytes([0xAA, 0x02, 0x33, 0xFF]), INIT_RESPONSE_CODE),
)

_STATE_ORDER = (
    ConnectionState.DISCONNECTED,
    ConnectionState.CONNECTING,
    ConnectionState.CHARACTERISTICS_RESOLVED,
    ConnectionState.SUBSCRIBED,
    ConnectionState.INITIALIZED,
)


def next_state(current: ConnectionState) -> ConnectionState:
    """Return the only state reachable from `current` during a connect."""
    index = _STATE_ORDER.index(current)
    if index + 1 >= len(_STATE_ORDER):
        raise InvalidTransitionError(f"No state follows {current.value}")
    return _STATE_ORDER[index + 1]


class ConnectionStateMachine:
    def __init__(self, on_change: Callable[[ConnectionState], None] | None = None) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._on_change = on_change

    @property
    def state(self) -> ConnectionState:
        return self._state

    def advance(self, to: ConnectionState) -> None:
        expected = next_state(self._state)
        if to is not expected:
            raise InvalidTransitionError(
                f"Invalid state transition: {self._state.value} -> {to.value}"
            )
        self._set(to)

    def reset(self) -> None:
        if self._state is not ConnectionState.DISCONNECTED:
            self._set(ConnectionState.DISCONNECTED)

    def _set(self, state: ConnectionState) -> None:
        LOGGER.debug("State transition: %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_change is not None:
            self._on_change(state)


class ConnectionSession:
    """Connect, subscribe and initialize one station, then send commands.

    `connect()` walks DISCONNECTED -> CONNECTING -> CHARACTERISTICS_RESOLVED
    -> SUBSCRIBED -> INITIALIZED. Each phase runs under its own disconnect
    listener; a disconnect aborts the phase and fails the whole connect with
    `DisconnectedError`. Any failure leaves the session DISCONNECTED.
    """

    def __init__(self, peripheral: Peripheral, profile: StationProfile) -> None:
        self._peripheral = peripheral
        self._profile = profile
        self.identity = DeviceIdentity.create(peripheral.id, peripheral.address, peripheral.name)

        self._state_events = EventSource()
        self._ready_events = EventSource()
        self._write_events = EventSource()
        self._machine = ConnectionStateMachine(self._state_events.emit)

        self._characteristics: dict[CharacteristicRole, Characteristic] = {}
        self._settings_channel: CommandChannel | None = None
        self._data_channel: CommandChannel | None = None
        self._link_watch: Subscription | None = None

    def __repr__(self) -> str:
        return f"ConnectionSession({self.identity.address!r}, state={self.state.value})"

    @property
    def peripheral(self) -> Peripheral:
        return self._peripheral

    @property
    def state(self) -> ConnectionState:
        return self._machine.state

    def on_state_change(self, listener: Callable[[ConnectionState], None]) -> Subscription:
        return self._state_events.subscribe(listener)

    def on_ready(self, listener: Callable[[], None]) -> Subscription:
        return self._ready_events.subscribe(listener)

    def on_write(self, listener: Callable[[bytes, Exception | None], None]) -> Subscription:
        return self._write_events.subscribe(listener)

    async def connect(self) -> None:
        if self.state is ConnectionState.INITIALIZED:
            return
        if self.state is not ConnectionState.DISCONNECTED:
            raise SessionStateError(f"Connect already in progress for {self.identity.address}")

        try:
            self._machine.advance(ConnectionState.CONNECTING)
            await self._until_disconnected(self._connect_transport())
            await self._step(ConnectionState.CHARACTERISTICS_RESOLVED, self._resolve_characteristics())
            await self._step(ConnectionState.SUBSCRIBED, self._subscribe())
            await self._step(ConnectionState.INITIALIZED, self._initialize())
        except BaseException:
            self._teardown()
            raise

        self._link_watch = self._peripheral.on_disconnect(self._on_link_lost)
        LOGGER.debug("Station %s ready", self.identity.address)
        self._ready_events.emit()

    async def disconnect(self) -> None:
        self._teardown()
        if self._peripheral.state == CONNECTED:
            await self._peripheral.disconnect()

    async def write_setting(self, payload: bytes, expected_code: int) -> bytes:
        return await self._channel(self._settings_channel).send(payload, expected_code)

    async def write(self, payload: bytes, expected_code: int) -> bytes:
        return await self._channel(self._data_channel).send(payload, expected_code)

    def _channel(self, channel: CommandChannel | None) -> CommandChannel:
        if channel is None or self.state not in (ConnectionState.SUBSCRIBED, ConnectionState.INITIALIZED):
            raise SessionStateError(
                f"Station {self.identity.address} is not connected (state: {self.state.value})"
            )
        return channel

    async def _step(self, target: ConnectionState, operation: Awaitable[None]) -> None:
        await self._until_disconnected(operation)
        self._machine.advance(target)

    async def _until_disconnected(self, operation: Awaitable[T]) -> T:
        lost = asyncio.get_running_loop().create_future()

        def _on_disconnect() -> None:
            if not lost.done():
                lost.set_result(None)

        with self._peripheral.on_disconnect(_on_disconnect):
            task = asyncio.ensure_future(operation)
            try:
                await asyncio.wait({task, lost}, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                task.cancel()
                raise
            if task.done():
                return task.result()

            task.cancel()
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                LOGGER.debug("Phase failed after disconnect: %s", task.exception())
            raise DisconnectedError(f"Station {self.identity.address} disconnected unexpectedly")

    async def _connect_transport(self) -> None:
        if self._peripheral.state == CONNECTED:
            return
        try:
            await self._peripheral.connect()
        except ConnectError:
            raise
        except Exception as exc:
            raise ConnectError(f"Connect to {self.identity.address} failed: {exc}") from exc

    async def _resolve_characteristics(self) -> None:
        try:
            found = await self._peripheral.discover_characteristics(self._profile.service_uuid)
        except Exception as exc:
            raise CharacteristicResolutionError(
                f"Characteristic discovery on {self.identity.address} failed: {exc}"
            ) from exc

        by_uuid = {normalize_uuid(c.uuid): c for c in found}
        resolved: dict[CharacteristicRole, Characteristic] = {}
        for role, uuid in self._profile.characteristics.items():
            characteristic = by_uuid.get(normalize_uuid(uuid))
            if characteristic is None:
                raise CharacteristicResolutionError(
                    f"Station {self.identity.address} has no {role.value} characteristic ({uuid})"
                )
            resolved[role] = characteristic

        self._characteristics = resolved
        self._settings_channel = CommandChannel(
            resolved[CharacteristicRole.SETTINGS_WRITE],
            resolved[CharacteristicRole.SETTINGS_NOTIFY],
            on_write=self._write_events.emit,
        )
        self._data_channel = CommandChannel(
            resolved[CharacteristicRole.DATA_WRITE],
            resolved[CharacteristicRole.DATA_NOTIFY],
            on_write=self._write_events.emit,
        )

    async def _subscribe(self) -> None:
        for role in (CharacteristicRole.SETTINGS_NOTIFY, CharacteristicRole.DATA_NOTIFY):
            try:
                await self._characteristics[role].subscribe()
            except SubscribeError:
                raise
            except Exception as exc:
                raise SubscribeError(
                    f"Subscribe to {role.value} on {self.identity.address} failed: {exc}"
                ) from exc

    async def _initialize(self) -> None:
        channel = self._channel(self._settings_channel)
        for payload, expected_code in INIT_SEQUENCE:
            await channel.send(payload, expected_code)

    def _on_link_lost(self) -> None:
        LOGGER.info("Station %s disconnected", self.identity.address)
        self._teardown()

    def _teardown(self) -> None:
        if self._link_watch is not None:
            self._link_watch.release()
            self._link_watch = None
        for channel in (self._settings_channel, self._data_channel):
            if channel is not None:
                channel.close(DisconnectedError(f"Station {self.identity.address} disconnected"))
        self._characteristics = {}
        self._settings_channel = None
        self._data_channel = None
        self._machine.reset()
