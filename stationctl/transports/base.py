"""Radio capability interfaces consumed by the core."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

from stationctl.core.events import Subscription


class Characteristic(Protocol):
    uuid: str

    async def subscribe(self) -> None:
        """Enable notifications on this characteristic."""

    async def write(self, data: bytes) -> None:
        """Write with response; returns once the write is acknowledged."""

    def on_data(self, listener: Callable[[bytes, bool], None]) -> Subscription:
        """Deliver `(data, is_notification)` for every value received."""


class Peripheral(Protocol):
    id: str
    address: str
    name: str | None

    @property
    def state(self) -> str:
        """Transport connection state, `"connected"` once connected."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def on_disconnect(self, listener: Callable[[], None]) -> Subscription: ...

    async def discover_characteristics(self, service_uuid: str) -> list[Characteristic]: ...


class RadioAdapter(Protocol):
    @property
    def state(self) -> str:
        """Power state, `"poweredOn"` when scanning is possible."""

    def on_state_change(self, listener: Callable[[str], None]) -> Subscription: ...

    def on_discover(self, listener: Callable[[Peripheral, bytes], None]) -> Subscription:
        """Deliver `(peripheral, manufacturer_data)` for every reported advertisement."""

    def on_scan_stop(self, listener: Callable[[], None]) -> Subscription: ...

    async def start_scanning(self, service_uuids: Sequence[str], allow_duplicates: bool) -> None: ...

    async def stop_scanning(self) -> None: ...
