"""Reading payload decoding.

The vendor payload that follows the advertisement header is a run of
records, each a one-byte type id followed by a little-endian value whose
width, signedness and scale come from the station profile.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any, Protocol

from stationctl.core.model import ReadingSpec


class ReadingPayloadDecoder(Protocol):
    def decode(self, payload: bytes) -> Iterable[tuple[str, Any]]:
        """Yield `(name, value)` pairs packed into one advertisement payload."""


class ProfileReadingDecoder:
    def __init__(self, specs: Iterable[ReadingSpec]) -> None:
        self._specs = {spec.type_id: spec for spec in specs}

    def decode(self, payload: bytes) -> Iterator[tuple[str, Any]]:
        offset = 0
        while offset < len(payload):
            spec = self._specs.get(payload[offset])
            if spec is None:
                # record width unknown, nothing after this can be framed
                return
            start = offset + 1
            end = start + spec.size
            if end > len(payload):
                return
            raw = int.from_bytes(payload[start:end], "little", signed=spec.signed)
            yield spec.name, _scaled(raw, spec.scale)
            offset = end


def _scaled(raw: int, scale: float) -> Any:
    if scale == 1:
        return raw
    # round away binary noise such as 0.1 * 215 == 21.500000000000004
    return round(raw * scale, 6)
