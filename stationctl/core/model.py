"""Core data models used across loader, scanner, session, and CLI."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from stationctl.core.address import normalize_address

POWERED_ON = "poweredOn"
CONNECTED = "connected"

_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"
_SHORT_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$")


def normalize_uuid(value: str) -> str:
    """Expand 16-bit and 32-bit UUIDs onto the Bluetooth base UUID."""
    normalized = value.strip().lower()
    if _SHORT_UUID_RE.match(normalized):
        return normalized.rjust(8, "0") + _BASE_UUID_SUFFIX
    return normalized


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CHARACTERISTICS_RESOLVED = "characteristics_resolved"
    SUBSCRIBED = "subscribed"
    INITIALIZED = "initialized"


class CharacteristicRole(Enum):
    SETTINGS_WRITE = "settings_write"
    SETTINGS_NOTIFY = "settings_notify"
    DATA_WRITE = "data_write"
    DATA_NOTIFY = "data_notify"


@dataclass(frozen=True)
class DeviceIdentity:
    id: str
    address: str
    name: str | None = None

    @classmethod
    def create(cls, id: str, address: str | None, name: str | None = None) -> DeviceIdentity:
        return cls(id=id, address=normalize_address(address), name=name)


@dataclass(frozen=True)
class AdvertisementPacket:
    data: bytes
    device: DeviceIdentity


@dataclass(frozen=True)
class Reading:
    name: str
    value: Any
    device: DeviceIdentity | None = None


@dataclass(frozen=True)
class ReadingSpec:
    name: str
    type_id: int
    size: int
    signed: bool = False
    scale: float = 1


@dataclass(frozen=True)
class StationProfile:
    id: str
    name: str
    company_id: int
    service_uuid: str
    characteristics: dict[CharacteristicRole, str]
    readings: tuple[ReadingSpec, ...]


@dataclass(frozen=True)
class StationConfig:
    profile: str = "weather_station"
    addresses: tuple[str, ...] = ()
    readings: tuple[str, ...] = ("temperature", "humidity")
    power_on_timeout_s: float = 5.0
    record_timeout_s: float = 10.0
    scan_duration_s: float = 5.0


@dataclass
class PendingCommand:
    expected_code: int
    response: asyncio.Future[bytes]


@dataclass
class ReadingSet:
    """Last-seen reading per name within one aggregation session."""

    _readings: dict[str, Reading] = field(default_factory=dict)

    def add(self, reading: Reading) -> None:
        self._readings[reading.name] = reading

    def get(self, name: str) -> Reading | None:
        return self._readings.get(name)

    @property
    def size(self) -> int:
        return len(self._readings)

    def as_dict(self) -> dict[str, Any]:
        return {name: reading.value for name, reading in self._readings.items()}

    def __len__(self) -> int:
        return len(self._readings)

    def __contains__(self, name: object) -> bool:
        return name in self._readings

    def __iter__(self) -> Iterator[Reading]:
        return iter(self._readings.values())
