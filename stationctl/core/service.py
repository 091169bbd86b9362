"""Service layer used by the public API and CLI."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from pathlib import Path
from typing import TypeVar

from stationctl.core.advertisement import AdvertisementDecoder
from stationctl.core.aggregator import ReadingAggregator
from stationctl.core.errors import ConfigValidationError, StationNotFoundError
from stationctl.core.loader import load_config, load_profiles
from stationctl.core.model import ReadingSet, StationConfig, StationProfile
from stationctl.core.readings import ProfileReadingDecoder, ReadingPayloadDecoder
from stationctl.core.scanner import DiscoveryScanner, ReadingHandler, StationHandler
from stationctl.core.session import ConnectionSession
from stationctl.transports.base import RadioAdapter

T = TypeVar("T")


class StationService:
    def __init__(
        self,
        adapter: RadioAdapter,
        *,
        config: StationConfig | None = None,
        config_path: Path | None = None,
        payload_decoder: ReadingPayloadDecoder | None = None,
    ) -> None:
        self.config = config or load_config(config_path)
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings

        profile = self.profiles.get(self.config.profile)
        if profile is None:
            available = ", ".join(sorted(self.profiles))
            raise ConfigValidationError(
                f"Unknown profile '{self.config.profile}'. Available: {available}"
            )
        self.profile = profile
        self.adapter = adapter
        self.decoder = AdvertisementDecoder(
            profile.company_id,
            payload_decoder or ProfileReadingDecoder(profile.readings),
        )
        self.scanner = DiscoveryScanner(
            adapter,
            profile,
            self.decoder,
            power_on_timeout_s=self.config.power_on_timeout_s,
        )
        self.aggregator = ReadingAggregator(self.scanner)

    def list_profiles(self) -> list[StationProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    async def power_on(self) -> None:
        await self.scanner.power_on()

    async def scan(
        self,
        on_station: StationHandler | None = None,
        addresses: Iterable[str] | None = None,
    ) -> list[ConnectionSession]:
        return await self.scanner.scan(on_station, self._addresses(addresses))

    async def scan_for_readings(
        self,
        on_reading: ReadingHandler | None = None,
        addresses: Iterable[str] | None = None,
    ) -> None:
        await self.scanner.scan_for_readings(on_reading, self._addresses(addresses))

    async def stop_scan(self) -> None:
        await self.scanner.stop()

    async def get_record(
        self,
        readings: Iterable[str] | None = None,
        timeout_s: float | None = None,
        addresses: Iterable[str] | None = None,
    ) -> ReadingSet:
        return await self.aggregator.get_record(
            self.config.readings if readings is None else readings,
            self.config.record_timeout_s if timeout_s is None else timeout_s,
            self._addresses(addresses),
        )

    async def scan_for(
        self,
        duration_s: float | None = None,
        on_station: StationHandler | None = None,
        addresses: Iterable[str] | None = None,
    ) -> list[ConnectionSession]:
        return await self._stop_after(duration_s, self.scan(on_station, addresses))

    async def watch_readings(
        self,
        duration_s: float | None = None,
        on_reading: ReadingHandler | None = None,
        addresses: Iterable[str] | None = None,
    ) -> None:
        await self._stop_after(duration_s, self.scan_for_readings(on_reading, addresses))

    async def find_station(self, address: str, timeout_s: float | None = None) -> ConnectionSession:
        found: list[ConnectionSession] = []
        loop = asyncio.get_running_loop()
        stop_tasks: list[asyncio.Task[None]] = []

        def _on_station(station: ConnectionSession) -> None:
            found.append(station)
            if not stop_tasks:
                stop_tasks.append(loop.create_task(self.stop_scan()))

        await self._stop_after(timeout_s, self.scan(_on_station, [address]))
        for task in stop_tasks:
            await task
        if not found:
            raise StationNotFoundError(f"No station found with address '{address}'")
        return found[0]

    async def send(
        self,
        address: str,
        payload: bytes,
        expected_code: int,
        *,
        settings: bool = False,
        timeout_s: float | None = None,
    ) -> bytes:
        """Connect to one station, send a single command and disconnect."""
        station = await self.find_station(address, timeout_s)
        try:
            await station.connect()
            if settings:
                return await station.write_setting(payload, expected_code)
            return await station.write(payload, expected_code)
        finally:
            await station.disconnect()

    def _addresses(self, addresses: Iterable[str] | None) -> Iterable[str] | None:
        if addresses is not None:
            return addresses
        return self.config.addresses or None

    async def _stop_after(self, duration_s: float | None, scan: Awaitable[T]) -> T:
        loop = asyncio.get_running_loop()
        stop_tasks: list[asyncio.Task[None]] = []

        def _on_elapsed() -> None:
            stop_tasks.append(loop.create_task(self.stop_scan()))

        timer = loop.call_later(
            self.config.scan_duration_s if duration_s is None else duration_s,
            _on_elapsed,
        )
        try:
            return await scan
        finally:
            timer.cancel()
            for task in stop_tasks:
                await task
