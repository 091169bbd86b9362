"""Adapter power-on handling and advertisement scanning."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from contextlib import ExitStack

from stationctl.core.address import is_allowed, normalize_addresses
from stationctl.core.advertisement import AdvertisementDecoder
from stationctl.core.errors import (
    AdapterStateError,
    AdapterTimeoutError,
    ScanStartError,
    StationctlError,
)
from stationctl.core.model import POWERED_ON, AdvertisementPacket, DeviceIdentity, Reading, StationProfile
from stationctl.core.session import ConnectionSession
from stationctl.transports.base import Peripheral, RadioAdapter

LOGGER = logging.getLogger(__name__)

POWER_ON_TIMEOUT_S = 5.0

ReadingHandler = Callable[[Reading, Peripheral], None]
StationHandler = Callable[[ConnectionSession], None]


async def wait_for_power_on(adapter: RadioAdapter, timeout_s: float = POWER_ON_TIMEOUT_S) -> None:
    if adapter.state == POWERED_ON:
        return

    powered = asyncio.get_running_loop().create_future()

    def _on_state_change(state: str) -> None:
        if state == POWERED_ON and not powered.done():
            powered.set_result(None)

    with adapter.on_state_change(_on_state_change):
        try:
            await asyncio.wait_for(powered, timeout_s)
        except asyncio.TimeoutError as exc:
            raise AdapterTimeoutError(adapter.state) from exc


def identity_of(peripheral: Peripheral) -> DeviceIdentity:
    return DeviceIdentity.create(peripheral.id, peripheral.address, peripheral.name)


class _ScanSession:
    def __init__(self) -> None:
        self.done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self.started = False

    def finish(self) -> None:
        if not self.done.done():
            self.done.set_result(None)

    def fail(self, exc: StationctlError) -> None:
        if not self.done.done():
            self.done.set_exception(exc)


class DiscoveryScanner:
    """Drive adapter scanning in one of two modes.

    Connectable discovery reports each station once and returns station
    handles. Continuous reading mode asks for every advertisement and decodes
    readings from each. One scan session runs at a time.
    """

    def __init__(
        self,
        adapter: RadioAdapter,
        profile: StationProfile,
        decoder: AdvertisementDecoder,
        *,
        power_on_timeout_s: float = POWER_ON_TIMEOUT_S,
    ) -> None:
        self._adapter = adapter
        self._profile = profile
        self._decoder = decoder
        self._power_on_timeout_s = power_on_timeout_s
        self._session: _ScanSession | None = None

    @property
    def scanning(self) -> bool:
        return self._session is not None

    async def power_on(self) -> None:
        await wait_for_power_on(self._adapter, self._power_on_timeout_s)

    async def scan(
        self,
        on_station: StationHandler | None = None,
        addresses: Iterable[str] | None = None,
    ) -> list[ConnectionSession]:
        allowed = normalize_addresses(addresses)
        stations: list[ConnectionSession] = []
        seen: set[str] = set()

        def _on_discover(peripheral: Peripheral, _data: bytes) -> None:
            if peripheral.id in seen or not is_allowed(peripheral.address, allowed):
                return
            seen.add(peripheral.id)
            station = ConnectionSession(peripheral, self._profile)
            stations.append(station)
            LOGGER.debug("Discovered station %s (%s)", station.identity.address, station.identity.name)
            if on_station is not None:
                on_station(station)

        await self._run(_on_discover, allow_duplicates=False)
        return stations

    async def scan_for_readings(
        self,
        on_reading: ReadingHandler | None = None,
        addresses: Iterable[str] | None = None,
    ) -> None:
        allowed = normalize_addresses(addresses)

        def _on_discover(peripheral: Peripheral, data: bytes) -> None:
            if not is_allowed(peripheral.address, allowed):
                return
            packet = AdvertisementPacket(data=data, device=identity_of(peripheral))
            for reading in self._decoder.decode(packet):
                if on_reading is not None:
                    on_reading(reading, peripheral)

        await self._run(_on_discover, allow_duplicates=True)

    async def stop(self) -> None:
        session = self._session
        if session is not None and not session.started:
            # start not acknowledged yet; _run stops the adapter once it is
            session.finish()
            return
        await self._adapter.stop_scanning()
        if session is not None:
            session.finish()

    async def _run(self, on_discover: Callable[[Peripheral, bytes], None], *, allow_duplicates: bool) -> None:
        if self._session is not None:
            raise ScanStartError("A scan is already in progress")

        session = _ScanSession()
        self._session = session
        try:
            await self.power_on()

            def _on_state_change(state: str) -> None:
                if state != POWERED_ON:
                    session.fail(AdapterStateError(state))

            with ExitStack() as stack:
                stack.enter_context(self._adapter.on_discover(on_discover))
                stack.enter_context(self._adapter.on_scan_stop(session.finish))
                stack.enter_context(self._adapter.on_state_change(_on_state_change))

                if session.done.done():
                    # stopped during power-on wait
                    await session.done
                    return

                try:
                    await self._adapter.start_scanning([self._profile.service_uuid], allow_duplicates)
                except ScanStartError:
                    raise
                except Exception as exc:
                    raise ScanStartError(f"Adapter rejected scan start: {exc}") from exc
                session.started = True
                LOGGER.debug("Scanning started (duplicates=%s)", allow_duplicates)

                if session.done.done() and session.done.exception() is None:
                    await self._adapter.stop_scanning()

                try:
                    await session.done
                except AdapterStateError:
                    LOGGER.debug("Adapter left powered-on state, force-stopping scan")
                    await self._adapter.stop_scanning()
                    raise
                except asyncio.CancelledError:
                    await self._adapter.stop_scanning()
                    raise
        finally:
            self._session = None
