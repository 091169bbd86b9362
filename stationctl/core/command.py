"""Command/response correlation over a write + notify characteristic pair."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from stationctl.core.errors import CommandInProgressError, WriteError
from stationctl.core.events import Subscription
from stationctl.core.model import PendingCommand
from stationctl.transports.base import Characteristic

LOGGER = logging.getLogger(__name__)

WriteHook = Callable[[bytes, "Exception | None"], None]


class CommandChannel:
    """Send one command at a time and wait for its notification response.

    A notification answers the pending command when its first byte equals
    the expected response code. Responses are returned verbatim.
    """

    def __init__(
        self,
        write_characteristic: Characteristic,
        notify_characteristic: Characteristic,
        *,
        on_write: WriteHook | None = None,
    ) -> None:
        self._write_characteristic = write_characteristic
        self._notify_characteristic = notify_characteristic
        self._on_write = on_write
        self._pending: PendingCommand | None = None
        self._subscription: Subscription | None = None

    @property
    def busy(self) -> bool:
        return self._pending is not None

    async def send(self, payload: bytes, expected_code: int) -> bytes:
        if self._pending is not None:
            raise CommandInProgressError(
                f"Still waiting for response 0x{self._pending.expected_code:02x}"
            )

        pending = PendingCommand(
            expected_code=expected_code,
            response=asyncio.get_running_loop().create_future(),
        )

        def _on_data(data: bytes, is_notification: bool) -> None:
            if pending.response.done():
                return
            if is_notification and data and data[0] == expected_code:
                subscription.release()
                pending.response.set_result(bytes(data))

        self._pending = pending
        # listener must exist before the write so an immediate response is not lost
        subscription = self._notify_characteristic.on_data(_on_data)
        self._subscription = subscription
        try:
            with subscription:
                await self._write(payload)
                response = await pending.response
        finally:
            self._pending = None
            self._subscription = None

        LOGGER.debug("Response %s for command %s", response.hex(), payload.hex())
        return response

    def close(self, exc: Exception) -> None:
        """Fail the pending command, if any, with `exc` and drop its listener."""
        pending, subscription = self._pending, self._subscription
        if subscription is not None:
            subscription.release()
        if pending is not None and not pending.response.done():
            pending.response.set_exception(exc)

    async def _write(self, payload: bytes) -> None:
        try:
            await self._write_characteristic.write(payload)
        except Exception as exc:
            self._report_write(payload, exc)
            if isinstance(exc, WriteError):
                raise
            raise WriteError(f"Write of {payload.hex()} failed: {exc}") from exc
        self._report_write(payload, None)

    def _report_write(self, payload: bytes, error: Exception | None) -> None:
        if self._on_write is not None:
            self._on_write(payload, error)
