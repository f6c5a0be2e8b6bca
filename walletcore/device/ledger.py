"""Ledger Solana app protocol — APDU commands and HID framing.

Pure codec + the two calls the signing core needs:
  get_public_key(transport, path)        -> Pubkey
  sign_message(transport, path, message) -> Signature

The transport is anything with `async exchange(apdu) -> response` and
`async close()`. The real one is device/hid.py; tests use a fake.

APDU layout: CLA INS P1 P2 Lc DATA. Payloads over 255 bytes are split:
every chunk but the last carries P2_MORE, every chunk after the first
carries P2_EXTEND. Responses end with a 2-byte status word.
"""

from __future__ import annotations

import logging
import struct
from abc import ABC, abstractmethod

from solders.pubkey import Pubkey
from solders.signature import Signature

from walletcore.errors import DeviceCommunicationError, UserRejected

log = logging.getLogger("walletcore.device")

LEDGER_CLA = 0xE0
INS_GET_PUBKEY = 0x05
INS_SIGN_MESSAGE = 0x06

P1_NON_CONFIRM = 0x00
P1_CONFIRM = 0x01

P2_EXTEND = 0x01
P2_MORE = 0x02

MAX_PAYLOAD = 255

SW_OK = 0x9000
SW_USER_REFUSED = 0x6985

# Status words worth a readable message
KNOWN_STATUS = {
    0x6A80: "invalid data sent to device",
    0x6B00: "incorrect parameters",
    0x6D00: "Solana app not open on device",
    0x6E00: "Solana app not open on device",
    0x5515: "device is locked",
    0x6FAA: "device is locked",
}

BIP44_PURPOSE = 44
SOLANA_COIN_TYPE = 501
HARDENED = 0x80000000

# ── HID framing ─────────────────────────────────────────────────────

LEDGER_CHANNEL = 0x0101
TAG_APDU = 0x05
HID_PACKET_SIZE = 64


class Transport(ABC):
    """Byte pipe to a signing device. Owned by exactly one provider."""

    @abstractmethod
    async def exchange(self, apdu: bytes) -> bytes:
        """Send one APDU, return the response including the status word."""

    @abstractmethod
    async def close(self) -> None:
        """Release the device."""


def harden(index: int) -> int:
    return (index | HARDENED) & 0xFFFFFFFF


def solana_derivation_path(account: int | None = None, change: int | None = None) -> bytes:
    """Path descriptor: length byte + big-endian hardened u32 per level.

    44'/501' by default, 44'/501'/account' or 44'/501'/account'/change'.
    """
    levels = [BIP44_PURPOSE, SOLANA_COIN_TYPE]
    if account is not None:
        levels.append(account)
        if change is not None:
            levels.append(change)
    return bytes([len(levels)]) + b"".join(struct.pack(">I", harden(i)) for i in levels)


def build_apdu(ins: int, p1: int, p2: int, data: bytes) -> bytes:
    if len(data) > MAX_PAYLOAD:
        raise ValueError(f"APDU data too long: {len(data)} > {MAX_PAYLOAD}")
    return bytes([LEDGER_CLA, ins, p1, p2, len(data)]) + data


def split_payload(ins: int, p1: int, payload: bytes) -> list[bytes]:
    """Chunk a payload into APDUs with the P2_MORE / P2_EXTEND flags set."""
    apdus = []
    p2 = 0
    offset = 0
    while len(payload) - offset > MAX_PAYLOAD:
        apdus.append(build_apdu(ins, p1, p2 | P2_MORE, payload[offset:offset + MAX_PAYLOAD]))
        offset += MAX_PAYLOAD
        p2 |= P2_EXTEND
    apdus.append(build_apdu(ins, p1, p2, payload[offset:]))
    return apdus


def check_status(response: bytes) -> bytes:
    """Strip the status word. Raise on anything but 0x9000."""
    if len(response) < 2:
        raise DeviceCommunicationError(f"Short device response ({len(response)} bytes)")
    status = struct.unpack(">H", response[-2:])[0]
    if status == SW_OK:
        return response[:-2]
    if status == SW_USER_REFUSED:
        raise UserRejected("Request rejected on device")
    reason = KNOWN_STATUS.get(status, "unexpected status")
    raise DeviceCommunicationError(
        f"Device error 0x{status:04x}: {reason}", status_word=status
    )


async def send(transport: Transport, ins: int, p1: int, payload: bytes) -> bytes:
    """Send a (possibly chunked) command and return the final response data."""
    apdus = split_payload(ins, p1, payload)
    for apdu in apdus[:-1]:
        data = check_status(await transport.exchange(apdu))
        if data:
            raise DeviceCommunicationError(
                f"Unexpected data in intermediate chunk reply ({len(data)} bytes)"
            )
    return check_status(await transport.exchange(apdus[-1]))


async def get_public_key(transport: Transport, path: bytes | None = None) -> Pubkey:
    """Read the public key at `path` without on-device confirmation."""
    data = await send(transport, INS_GET_PUBKEY, P1_NON_CONFIRM, path or solana_derivation_path())
    if len(data) != 32:
        raise DeviceCommunicationError(f"Public key must be 32 bytes, got {len(data)}")
    return Pubkey.from_bytes(data)


async def sign_message(transport: Transport, path: bytes, message: bytes) -> Signature:
    """Ask the device to sign a serialized transaction message.

    Suspends until the human confirms or refuses on the device.
    """
    payload = bytes([1]) + path + message
    log.info("Requesting device signature (%d byte message)", len(message))
    data = await send(transport, INS_SIGN_MESSAGE, P1_CONFIRM, payload)
    if len(data) != 64:
        raise DeviceCommunicationError(f"Signature must be 64 bytes, got {len(data)}")
    return Signature.from_bytes(data)


def wrap_apdu(apdu: bytes, channel: int = LEDGER_CHANNEL, packet_size: int = HID_PACKET_SIZE) -> list[bytes]:
    """Frame an APDU into fixed-size HID packets."""
    buffer = struct.pack(">H", len(apdu)) + apdu
    packets = []
    seq = 0
    offset = 0
    while offset < len(buffer):
        header = struct.pack(">HBH", channel, TAG_APDU, seq)
        chunk = buffer[offset:offset + packet_size - len(header)]
        offset += len(chunk)
        packets.append((header + chunk).ljust(packet_size, b"\x00"))
        seq += 1
    return packets


class ResponseAssembler:
    """Reassembles HID packets into one APDU response."""

    def __init__(self, channel: int = LEDGER_CHANNEL):
        self.channel = channel
        self._expected: int | None = None
        self._data = b""
        self._seq = 0

    def feed(self, packet: bytes) -> bytes | None:
        """Add one packet. Returns the full response once complete."""
        if len(packet) < 5:
            raise DeviceCommunicationError(f"Short HID packet ({len(packet)} bytes)")
        channel, tag, seq = struct.unpack(">HBH", packet[:5])
        if channel != self.channel or tag != TAG_APDU:
            raise DeviceCommunicationError(f"Unexpected HID packet header {packet[:5].hex()}")
        if seq != self._seq:
            raise DeviceCommunicationError(f"HID packet out of order: got {seq}, want {self._seq}")

        body = packet[5:]
        if seq == 0:
            if len(body) < 2:
                raise DeviceCommunicationError("HID response missing length")
            self._expected = struct.unpack(">H", body[:2])[0]
            body = body[2:]
        self._seq += 1
        self._data += body

        if self._expected is not None and len(self._data) >= self._expected:
            return self._data[:self._expected]
        return None
