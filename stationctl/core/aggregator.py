"""Collect one reading per requested kind within a deadline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from stationctl.core.model import Reading, ReadingSet
from stationctl.core.scanner import DiscoveryScanner
from stationctl.transports.base import Peripheral

LOGGER = logging.getLogger(__name__)

RECORD_TIMEOUT_S = 10.0


class ReadingAggregator:
    def __init__(self, scanner: DiscoveryScanner) -> None:
        self._scanner = scanner

    async def get_record(
        self,
        readings: Iterable[str],
        timeout_s: float = RECORD_TIMEOUT_S,
        addresses: Iterable[str] | None = None,
    ) -> ReadingSet:
        """Scan until every requested reading was seen or the deadline passes.

        Hitting the deadline is not an error: whatever was collected by then
        is returned. Adapter failures during the scan propagate.
        """
        requested = frozenset(readings)
        record = ReadingSet()
        if not requested:
            return record

        loop = asyncio.get_running_loop()
        stop_task: asyncio.Task[None] | None = None

        def _request_stop() -> None:
            nonlocal stop_task
            if stop_task is None:
                stop_task = loop.create_task(self._scanner.stop())

        def _on_deadline() -> None:
            LOGGER.info("Timed out while listening for sensor readings")
            _request_stop()

        def _on_reading(reading: Reading, _peripheral: Peripheral) -> None:
            if reading.name not in requested:
                return
            record.add(reading)
            if len(record) >= len(requested):
                timer.cancel()
                _request_stop()

        timer = loop.call_later(timeout_s, _on_deadline)
        try:
            await self._scanner.scan_for_readings(_on_reading, addresses)
        finally:
            timer.cancel()
            if stop_task is not None:
                await stop_task

        return record
