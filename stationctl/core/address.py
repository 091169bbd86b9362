"""Device address normalization and allow-listing."""

from __future__ import annotations

import re
from collections.abc import Iterable

_NON_HEX_RE = re.compile(r"[^0-9a-f]")


def normalize_address(address: str | None) -> str:
    """Lowercase an address and drop separator punctuation.

    `AA:BB:CC:DD:EE:FF`, `aa-bb-cc-dd-ee-ff` and `aabbccddeeff` all map to
    `aabbccddeeff`.
    """
    if not address:
        return ""
    return _NON_HEX_RE.sub("", address.lower())


def normalize_addresses(addresses: Iterable[str] | None) -> frozenset[str] | None:
    if not addresses:
        return None
    normalized = frozenset(normalize_address(a) for a in addresses)
    normalized = normalized - {""}
    return normalized or None


def is_allowed(address: str | None, allowed: frozenset[str] | None) -> bool:
    if allowed is None:
        return True
    return normalize_address(address) in allowed
