"""USB HID transport to a Ledger device (hidapi).

Blocking hidapi calls run in a worker thread (asyncio.to_thread) so the
event loop keeps serving while the human looks at the device screen.
The read loop polls in short slices so close() can interrupt it.

Requires the `hidapi` package (`pip install walletcore[device]`).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

import hid

from walletcore.device.ledger import HID_PACKET_SIZE, ResponseAssembler, Transport, wrap_apdu
from walletcore.errors import DeviceNotFound, TransportError

log = logging.getLogger("walletcore.device.hid")

LEDGER_VENDOR_ID = 0x2C97
LEDGER_USAGE_PAGE = 0xFFA0

READ_SLICE_MS = 100


def _find_device_path(vendor_id: int) -> bytes:
    devices = hid.enumerate(vendor_id, 0)
    for info in devices:
        if info.get("usage_page") == LEDGER_USAGE_PAGE or info.get("interface_number") == 0:
            return info["path"]
    raise DeviceNotFound("No Ledger device found. Connect and unlock it, then open the Solana app.")


class HIDTransport(Transport):
    """One open HID handle. Closed exactly once."""

    def __init__(self, device: Any):
        self._device = device
        self._io_lock = threading.Lock()
        self._closed = False

    @classmethod
    async def open(cls, vendor_id: int = LEDGER_VENDOR_ID) -> "HIDTransport":
        """Find and open the first matching device.

        Raises:
            DeviceNotFound: nothing connected.
            TransportError: device present but could not be opened.
        """

        def _open() -> Any:
            path = _find_device_path(vendor_id)
            device = hid.device()
            try:
                device.open_path(path)
            except (OSError, IOError) as e:
                raise TransportError(f"Could not open device: {e}") from e
            device.set_nonblocking(False)
            return device

        device = await asyncio.to_thread(_open)
        log.info("Ledger device opened")
        return cls(device)

    def _exchange_blocking(self, apdu: bytes) -> bytes:
        with self._io_lock:
            if self._closed:
                raise TransportError("Transport is closed")
            try:
                for packet in wrap_apdu(apdu):
                    # Report id 0x00 prefix
                    self._device.write(b"\x00" + packet)

                assembler = ResponseAssembler()
                while True:
                    if self._closed:
                        raise TransportError("Transport closed during exchange")
                    chunk = self._device.read(HID_PACKET_SIZE, READ_SLICE_MS)
                    if not chunk:
                        continue
                    response = assembler.feed(bytes(chunk))
                    if response is not None:
                        return response
            except (OSError, IOError, ValueError) as e:
                raise TransportError(f"HID I/O failed: {e}") from e

    async def exchange(self, apdu: bytes) -> bytes:
        return await asyncio.to_thread(self._exchange_blocking, apdu)

    def _close_blocking(self) -> None:
        with self._io_lock:
            self._device.close()
        log.info("Ledger device closed")

    async def close(self) -> None:
        if self._closed:
            return
        # Flag first so an in-flight read loop exits and releases the lock
        self._closed = True
        await asyncio.to_thread(self._close_blocking)
