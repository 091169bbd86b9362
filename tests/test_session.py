from __future__ import annotations

import asyncio

import pytest
from fakes import FakePeripheral, ack_writes, weather_profile

from stationctl.core.errors import (
    CharacteristicResolutionError,
    ConnectError,
    DisconnectedError,
    InvalidTransitionError,
    SessionStateError,
    SubscribeError,
)
from stationctl.core.model import ConnectionState
from stationctl.core.session import (
    INIT_SEQUENCE,
    ConnectionSession,
    ConnectionStateMachine,
    next_state,
)

INIT_BYTES = [
    "0606303030303030",
    "0506303030303030",
    "aa0233ff",
]


def test_init_sequence_is_reproduced_exactly() -> None:
    assert [payload.hex() for payload, _ in INIT_SEQUENCE] == INIT_BYTES
    assert {code for _, code in INIT_SEQUENCE} == {0x80}


def test_state_machine_is_strictly_sequential() -> None:
    assert next_state(ConnectionState.DISCONNECTED) is ConnectionState.CONNECTING
    assert next_state(ConnectionState.SUBSCRIBED) is ConnectionState.INITIALIZED
    with pytest.raises(InvalidTransitionError):
        next_state(ConnectionState.INITIALIZED)

    machine = ConnectionStateMachine()
    with pytest.raises(InvalidTransitionError):
        machine.advance(ConnectionState.SUBSCRIBED)
    machine.advance(ConnectionState.CONNECTING)
    machine.reset()
    assert machine.state is ConnectionState.DISCONNECTED


def test_connect_runs_every_phase_in_order() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        session = ConnectionSession(peripheral, weather_profile())
        states: list[ConnectionState] = []
        ready: list[bool] = []
        session.on_state_change(states.append)
        session.on_ready(lambda: ready.append(True))

        await session.connect()

        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.CHARACTERISTICS_RESOLVED,
            ConnectionState.SUBSCRIBED,
            ConnectionState.INITIALIZED,
        ]
        assert ready == [True]
        assert peripheral.connect_calls == 1
        assert peripheral.settings_notify.subscribed
        assert peripheral.data_notify.subscribed
        assert [w.hex() for w in peripheral.settings_write.writes] == INIT_BYTES
        assert peripheral.data_write.writes == []
        # only the post-connect link watch remains
        assert peripheral.disconnect_listener_count == 1

    asyncio.run(scenario())


def test_already_connected_peripheral_skips_connect_request() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        await peripheral.connect()
        session = ConnectionSession(peripheral, weather_profile())

        await session.connect()
        await session.connect()
        assert peripheral.connect_calls == 1
        assert session.state is ConnectionState.INITIALIZED

    asyncio.run(scenario())


def test_commands_after_ready() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        session = ConnectionSession(peripheral, weather_profile())
        written: list[bytes] = []
        session.on_write(lambda data, _error: written.append(data))

        with pytest.raises(SessionStateError):
            await session.write(bytes([0x12]), 0x80)

        await session.connect()
        assert await session.write(bytes([0x12, 0x34]), 0x80) == bytes([0x80, 0x34])
        assert await session.write_setting(bytes([0x07]), 0x80) == bytes([0x80])
        assert written[-2:] == [bytes([0x12, 0x34]), bytes([0x07])]

    asyncio.run(scenario())


def test_disconnect_during_initialization_aborts_connect() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral(auto_ack=False)
        settings_write, settings_notify = peripheral.settings_write, peripheral.settings_notify
        # acknowledge only the first initialization command
        settings_write.on_written = lambda data: (
            settings_notify.notify(bytes([0x80])) if len(settings_write.writes) == 1 else None
        )
        session = ConnectionSession(peripheral, weather_profile())

        task = asyncio.create_task(session.connect())
        while len(settings_write.writes) < 2:
            await asyncio.sleep(0)
        assert session.state is ConnectionState.SUBSCRIBED
        peripheral.drop()

        with pytest.raises(DisconnectedError):
            await task
        for _ in range(5):
            await asyncio.sleep(0)

        assert len(settings_write.writes) == 2
        assert session.state is ConnectionState.DISCONNECTED
        assert settings_notify.listener_count == 0
        assert peripheral.disconnect_listener_count == 0

    asyncio.run(scenario())


def test_missing_characteristic_fails_connect() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        peripheral.characteristics = [c for c in peripheral.characteristics if c.uuid != "fff4"]
        session = ConnectionSession(peripheral, weather_profile())

        with pytest.raises(CharacteristicResolutionError) as exc:
            await session.connect()
        assert "data_notify" in str(exc.value)
        assert session.state is ConnectionState.DISCONNECTED
        assert peripheral.disconnect_listener_count == 0

    asyncio.run(scenario())


def test_full_length_uuids_resolve() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        for characteristic in peripheral.characteristics:
            characteristic.uuid = f"0000{characteristic.uuid}-0000-1000-8000-00805F9B34FB"
        session = ConnectionSession(peripheral, weather_profile())

        await session.connect()
        assert session.state is ConnectionState.INITIALIZED

    asyncio.run(scenario())


def test_subscribe_failure_fails_connect() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        peripheral.data_notify.subscribe_error = OSError("notify refused")
        session = ConnectionSession(peripheral, weather_profile())

        with pytest.raises(SubscribeError):
            await session.connect()
        assert peripheral.settings_notify.subscribed
        assert peripheral.settings_write.writes == []
        assert session.state is ConnectionState.DISCONNECTED

    asyncio.run(scenario())


def test_connect_request_failure() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral(connect_error=OSError("le-connection-abort-by-local"))
        session = ConnectionSession(peripheral, weather_profile())

        with pytest.raises(ConnectError):
            await session.connect()
        assert session.state is ConnectionState.DISCONNECTED

    asyncio.run(scenario())


def test_link_loss_after_ready_resets_state() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        session = ConnectionSession(peripheral, weather_profile())
        await session.connect()

        peripheral.drop()
        assert session.state is ConnectionState.DISCONNECTED
        assert peripheral.disconnect_listener_count == 0
        with pytest.raises(SessionStateError):
            await session.write_setting(bytes([0x01]), 0x80)

        # a fresh connect runs the whole handshake again
        ack_writes(peripheral.settings_write, peripheral.settings_notify)
        await session.connect()
        assert len(peripheral.settings_write.writes) == 6

    asyncio.run(scenario())


def test_explicit_disconnect() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        session = ConnectionSession(peripheral, weather_profile())
        await session.connect()

        await session.disconnect()
        assert peripheral.disconnect_calls == 1
        assert session.state is ConnectionState.DISCONNECTED

    asyncio.run(scenario())


def test_concurrent_connect_is_rejected() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        session = ConnectionSession(peripheral, weather_profile())

        first = asyncio.create_task(session.connect())
        await asyncio.sleep(0)
        with pytest.raises(SessionStateError):
            await session.connect()
        await first

    asyncio.run(scenario())


def test_session_identity_uses_normalized_address() -> None:
    session = ConnectionSession(FakePeripheral("AA:BB:CC:DD:EE:FF"), weather_profile())
    assert session.identity.address == "aabbccddeeff"
    assert session.identity.name == "Weather Station"
    assert session.state is ConnectionState.DISCONNECTED


def test_link_loss_fails_command_waiting_for_response() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        session = ConnectionSession(peripheral, weather_profile())
        await session.connect()
        # station stops answering data commands
        peripheral.data_write.on_written = None

        task = asyncio.create_task(session.write(bytes([0x01, 0x02]), 0x81))
        while not peripheral.data_write.writes:
            await asyncio.sleep(0)
        assert peripheral.data_notify.listener_count == 1

        peripheral.drop()
        assert peripheral.data_notify.listener_count == 0
        with pytest.raises(DisconnectedError):
            await asyncio.wait_for(task, 1.0)
        assert session.state is ConnectionState.DISCONNECTED

    asyncio.run(scenario())


def test_explicit_disconnect_fails_command_waiting_for_response() -> None:
    async def scenario() -> None:
        peripheral = FakePeripheral()
        session = ConnectionSession(peripheral, weather_profile())
        await session.connect()
        peripheral.settings_write.on_written = None

        task = asyncio.create_task(session.write_setting(bytes([0x07]), 0x80))
        while len(peripheral.settings_write.writes) < 4:
            await asyncio.sleep(0)

        await session.disconnect()
        with pytest.raises(DisconnectedError):
            await asyncio.wait_for(task, 1.0)
        assert peripheral.settings_notify.listener_count == 0
        assert peripheral.disconnect_calls == 1

    asyncio.run(scenario())
