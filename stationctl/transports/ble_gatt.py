"""BLE GATT radio adapter implementation over bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from stationctl.core.errors import (
    ConnectError,
    ScanStartError,
    SubscribeError,
    WriteError,
)
from stationctl.core.events import EventSource, Subscription
from stationctl.core.model import CONNECTED, POWERED_ON, normalize_uuid

LOGGER = logging.getLogger(__name__)

UNKNOWN = "unknown"
UNAVAILABLE = "unavailable"


def manufacturer_payloads(advertisement: AdvertisementData) -> list[bytes]:
    """Rebuild raw manufacturer data, company id first, as sent over the air.

    bleak splits the company id off into the dict key.
    """
    return [
        company_id.to_bytes(2, "little") + bytes(data)
        for company_id, data in (advertisement.manufacturer_data or {}).items()
    ]


class BleakCharacteristic:
    def __init__(self, client: BleakClient, characteristic: BleakGATTCharacteristic) -> None:
        self._client = client
        self._characteristic = characteristic
        self._data_events = EventSource()
        self.uuid = characteristic.uuid

    def on_data(self, listener: Callable[[bytes, bool], None]) -> Subscription:
        return self._data_events.subscribe(listener)

    async def subscribe(self) -> None:
        try:
            await self._client.start_notify(self._characteristic, self._handle_notify)
        except BleakError as exc:
            raise SubscribeError(f"BLE notify on {self.uuid} failed: {exc}") from exc

    async def write(self, data: bytes) -> None:
        try:
            await self._client.write_gatt_char(self._characteristic, data, response=True)
        except BleakError as exc:
            raise WriteError(f"BLE write to {self.uuid} failed: {exc}") from exc

    def _handle_notify(self, _: BleakGATTCharacteristic, data: bytearray) -> None:
        # bleak only calls back for notifications and indications
        self._data_events.emit(bytes(data), True)


class BleakPeripheral:
    def __init__(self, device: BLEDevice) -> None:
        self._device = device
        self._client: BleakClient | None = None
        self._disconnect_events = EventSource()
        self.id = device.address
        self.address = device.address
        self.name = device.name

    @property
    def state(self) -> str:
        if self._client is not None and self._client.is_connected:
            return CONNECTED
        return "disconnected"

    def on_disconnect(self, listener: Callable[[], None]) -> Subscription:
        return self._disconnect_events.subscribe(listener)

    async def connect(self) -> None:
        self._client = BleakClient(self._device, disconnected_callback=self._handle_disconnect)
        try:
            await self._client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise ConnectError(f"BLE connect failed for {self.address}: {exc}") from exc

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.disconnect()

    async def discover_characteristics(self, service_uuid: str) -> list[BleakCharacteristic]:
        if self._client is None:
            return []
        service = self._client.services.get_service(normalize_uuid(service_uuid))
        if service is None:
            return []
        return [BleakCharacteristic(self._client, c) for c in service.characteristics]

    def _handle_disconnect(self, _: BleakClient) -> None:
        LOGGER.debug("Peripheral %s disconnected", self.address)
        self._disconnect_events.emit()


class BleakRadioAdapter:
    """RadioAdapter backed by the platform Bluetooth stack.

    bleak has no power-state notifications. The first listener registered
    while the state is not yet powered on triggers a probe scan; a successful
    start/stop reports `poweredOn`, a failure reports `unavailable`.
    """

    def __init__(self) -> None:
        self._state = UNKNOWN
        self._state_events = EventSource()
        self._discover_events = EventSource()
        self._scan_stop_events = EventSource()
        self._scanner: BleakScanner | None = None
        self._allow_duplicates = False
        self._seen: set[str] = set()
        self._peripherals: dict[str, BleakPeripheral] = {}
        self._probe_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> str:
        return self._state

    def on_state_change(self, listener: Callable[[str], None]) -> Subscription:
        subscription = self._state_events.subscribe(listener)
        if self._state != POWERED_ON and self._probe_task is None:
            self._probe_task = asyncio.get_running_loop().create_task(self._probe())
        return subscription

    def on_discover(self, listener: Callable[[BleakPeripheral, bytes], None]) -> Subscription:
        return self._discover_events.subscribe(listener)

    def on_scan_stop(self, listener: Callable[[], None]) -> Subscription:
        return self._scan_stop_events.subscribe(listener)

    async def start_scanning(self, service_uuids: Sequence[str], allow_duplicates: bool) -> None:
        self._allow_duplicates = allow_duplicates
        self._seen.clear()
        # sessions keep their own peripheral; the cache only spans one scan
        self._peripherals.clear()
        scanner = BleakScanner(
            detection_callback=self._handle_detection,
            service_uuids=[normalize_uuid(u) for u in service_uuids],
        )
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            raise ScanStartError(f"BLE scan start failed: {exc}") from exc
        self._scanner = scanner

    async def stop_scanning(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        await scanner.stop()
        self._scan_stop_events.emit()

    async def _probe(self) -> None:
        scanner = BleakScanner()
        try:
            await scanner.start()
            await scanner.stop()
        except (BleakError, OSError) as exc:
            LOGGER.debug("Bluetooth adapter unavailable: %s", exc)
            self._set_state(UNAVAILABLE)
        else:
            self._set_state(POWERED_ON)
        finally:
            self._probe_task = None

    def _set_state(self, state: str) -> None:
        if state == self._state:
            return
        self._state = state
        self._state_events.emit(state)

    def _handle_detection(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        if not self._allow_duplicates:
            if device.address in self._seen:
                return
            self._seen.add(device.address)

        peripheral = self._peripherals.get(device.address)
        if peripheral is None:
            peripheral = BleakPeripheral(device)
            self._peripherals[device.address] = peripheral
        if advertisement.local_name:
            peripheral.name = advertisement.local_name

        for payload in manufacturer_payloads(advertisement) or [b""]:
            self._discover_events.emit(peripheral, payload)
