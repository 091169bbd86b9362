"""Stable public API for building tooling on top of stationctl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals. Every operation is a coroutine and must run on an
asyncio event loop.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from stationctl.core.errors import (
    AdapterError,
    AdapterStateError,
    AdapterTimeoutError,
    CharacteristicResolutionError,
    CommandError,
    CommandInProgressError,
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
    ConnectError,
    DisconnectedError,
    InvalidTransitionError,
    ScanStartError,
    SessionError,
    SessionStateError,
    StationctlError,
    StationNotFoundError,
    SubscribeError,
    WriteError,
)
from stationctl.core.model import (
    ConnectionState,
    DeviceIdentity,
    Reading,
    ReadingSet,
    StationConfig,
    StationProfile,
)
from stationctl.core.readings import ReadingPayloadDecoder
from stationctl.core.scanner import ReadingHandler, StationHandler
from stationctl.core.service import StationService
from stationctl.core.session import ConnectionSession
from stationctl.transports.base import RadioAdapter
from stationctl.transports.ble_gatt import BleakRadioAdapter

__all__ = [
    "StationctlError",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
    "AdapterError",
    "AdapterTimeoutError",
    "AdapterStateError",
    "ScanStartError",
    "StationNotFoundError",
    "SessionError",
    "ConnectError",
    "DisconnectedError",
    "CharacteristicResolutionError",
    "SubscribeError",
    "SessionStateError",
    "InvalidTransitionError",
    "CommandError",
    "WriteError",
    "CommandInProgressError",
    "ConnectionState",
    "DeviceIdentity",
    "Reading",
    "ReadingSet",
    "StationConfig",
    "StationProfile",
    "ConnectionSession",
    "RadioAdapter",
    "BleakRadioAdapter",
    "Client",
]


class Client:
    """Public client for interacting with stationctl core capabilities.

    A `Client` wraps profile/config loading, advertisement scanning, reading
    aggregation and station connections behind a stable API intended for
    third-party tools (GUI/TUI/services/scripts). Without an explicit
    adapter the platform Bluetooth stack is used through bleak.
    """

    def __init__(
        self,
        *,
        adapter: RadioAdapter | None = None,
        config: StationConfig | None = None,
        config_path: Path | None = None,
        payload_decoder: ReadingPayloadDecoder | None = None,
    ) -> None:
        self._service = StationService(
            adapter or BleakRadioAdapter(),
            config=config,
            config_path=config_path,
            payload_decoder=payload_decoder,
        )

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def config(self) -> StationConfig:
        return self._service.config

    @property
    def profile(self) -> StationProfile:
        return self._service.profile

    def list_profiles(self) -> list[StationProfile]:
        return self._service.list_profiles()

    async def power_on(self) -> None:
        await self._service.power_on()

    async def scan(
        self,
        on_station: StationHandler | None = None,
        *,
        addresses: Iterable[str] | None = None,
    ) -> list[ConnectionSession]:
        return await self._service.scan(on_station, addresses)

    async def scan_for_readings(
        self,
        on_reading: ReadingHandler | None = None,
        *,
        addresses: Iterable[str] | None = None,
    ) -> None:
        await self._service.scan_for_readings(on_reading, addresses)

    async def stop_scan(self) -> None:
        await self._service.stop_scan()

    async def get_record(
        self,
        readings: Iterable[str] | None = None,
        *,
        timeout_s: float | None = None,
        addresses: Iterable[str] | None = None,
    ) -> ReadingSet:
        return await self._service.get_record(readings, timeout_s, addresses)

    async def connect(self, station: ConnectionSession) -> None:
        await station.connect()

    async def write_setting(self, station: ConnectionSession, payload: bytes, expected_code: int) -> bytes:
        return await station.write_setting(payload, expected_code)

    async def write(self, station: ConnectionSession, payload: bytes, expected_code: int) -> bytes:
        return await station.write(payload, expected_code)
