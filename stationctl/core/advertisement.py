"""Advertisement validation and decoding."""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterator

from stationctl.core.address import normalize_address
from stationctl.core.model import AdvertisementPacket, Reading
from stationctl.core.readings import ReadingPayloadDecoder

LOGGER = logging.getLogger(__name__)

_HEADER_SIZE = 8
_MIN_PACKET_SIZE = _HEADER_SIZE + 1


class AdvertisementDecoder:
    """Turn raw manufacturer data into readings.

    Layout: bytes [0, 2) little-endian company id, bytes [2, 8) the sender's
    own address in little-endian order, bytes [8, ...) the reading payload.
    Packets failing any check yield nothing.
    """

    def __init__(self, company_id: int, payload_decoder: ReadingPayloadDecoder) -> None:
        self.company_id = company_id
        self._payload_decoder = payload_decoder

    def is_valid(self, packet: AdvertisementPacket) -> bool:
        data = packet.data
        if len(data) < _MIN_PACKET_SIZE:
            return False
        if int.from_bytes(data[0:2], "little") != self.company_id:
            return False

        address = normalize_address(packet.device.address)
        if address and f"{int.from_bytes(data[2:8], 'little'):012x}" != address:
            LOGGER.debug("Dropping packet from %s with mismatched embedded address", address)
            return False
        return True

    def decode(self, packet: AdvertisementPacket) -> Iterator[Reading]:
        if not self.is_valid(packet):
            return
        try:
            for name, value in self._payload_decoder.decode(packet.data[_HEADER_SIZE:]):
                yield Reading(name=name, value=value, device=packet.device)
        except (ValueError, IndexError, struct.error) as exc:
            LOGGER.debug("Malformed reading payload from %s: %s", packet.device.address, exc)
