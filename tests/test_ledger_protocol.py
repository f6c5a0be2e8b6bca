"""Tests for the Ledger Solana APDU codec and HID framing."""

from __future__ import annotations

import struct

import pytest
from solders.keypair import Keypair

from walletcore.device import ledger
from walletcore.errors import DeviceCommunicationError, UserRejected
from tests.mocks.mock_ledger import FakeLedger


class TestDerivationPath:

    def test_default_is_44_501(self):
        path = ledger.solana_derivation_path()
        assert path == bytes([2]) + struct.pack(">II", 0x8000002C, 0x800001F5)

    def test_account_and_change(self):
        path = ledger.solana_derivation_path(account=3, change=0)
        assert path[0] == 4
        assert struct.unpack(">4I", path[1:]) == (0x8000002C, 0x800001F5, 0x80000003, 0x80000000)

    def test_change_ignored_without_account(self):
        assert ledger.solana_derivation_path(change=1) == ledger.solana_derivation_path()


class TestApduChunking:

    def test_small_payload_single_apdu(self):
        apdus = ledger.split_payload(ledger.INS_SIGN_MESSAGE, ledger.P1_CONFIRM, b"\xAA" * 10)
        assert apdus == [bytes([0xE0, 0x06, 0x01, 0x00, 10]) + b"\xAA" * 10]

    def test_large_payload_flags(self):
        payload = bytes(600)
        apdus = ledger.split_payload(ledger.INS_SIGN_MESSAGE, ledger.P1_CONFIRM, payload)
        assert [a[3] for a in apdus] == [
            ledger.P2_MORE,
            ledger.P2_MORE | ledger.P2_EXTEND,
            ledger.P2_EXTEND,
        ]
        assert [a[4] for a in apdus] == [255, 255, 90]
        assert b"".join(a[5:] for a in apdus) == payload

    def test_exactly_max_payload(self):
        apdus = ledger.split_payload(ledger.INS_GET_PUBKEY, 0, bytes(255))
        assert len(apdus) == 1

    def test_build_apdu_rejects_oversize(self):
        with pytest.raises(ValueError):
            ledger.build_apdu(ledger.INS_GET_PUBKEY, 0, 0, bytes(256))


class TestStatusWords:

    def test_ok(self):
        assert ledger.check_status(b"\x01\x02\x90\x00") == b"\x01\x02"

    def test_user_rejected(self):
        with pytest.raises(UserRejected):
            ledger.check_status(b"\x69\x85")

    def test_app_not_open(self):
        with pytest.raises(DeviceCommunicationError, match="not open") as exc_info:
            ledger.check_status(b"\x6e\x00")
        assert exc_info.value.status_word == 0x6E00

    def test_unknown_status(self):
        with pytest.raises(DeviceCommunicationError, match="0x6f00"):
            ledger.check_status(b"\x6f\x00")

    def test_short_response(self):
        with pytest.raises(DeviceCommunicationError):
            ledger.check_status(b"\x90")


class TestCommands:

    @pytest.mark.asyncio
    async def test_get_public_key(self):
        keypair = Keypair()
        device = FakeLedger(keypair)
        pubkey = await ledger.get_public_key(device)
        assert pubkey == keypair.pubkey()
        assert device.apdus[0][:4] == bytes([0xE0, ledger.INS_GET_PUBKEY, 0, 0])

    @pytest.mark.asyncio
    async def test_sign_long_message_is_chunked(self):
        keypair = Keypair()
        device = FakeLedger(keypair)
        message = bytes(range(256)) * 2
        signature = await ledger.sign_message(device, ledger.solana_derivation_path(), message)
        assert len(device.apdus) == 3
        assert device.signed_messages == [message]
        assert signature.verify(keypair.pubkey(), message)

    @pytest.mark.asyncio
    async def test_wrong_pubkey_length(self):
        class ShortReply(FakeLedger):
            async def exchange(self, apdu):
                return b"\x01" * 31 + b"\x90\x00"

        with pytest.raises(DeviceCommunicationError, match="32 bytes"):
            await ledger.get_public_key(ShortReply(Keypair()))

    @pytest.mark.asyncio
    async def test_intermediate_chunk_with_data(self):
        class ChattyDevice(FakeLedger):
            async def exchange(self, apdu):
                return b"\x00\x90\x00"

        with pytest.raises(DeviceCommunicationError, match="intermediate"):
            await ledger.sign_message(ChattyDevice(Keypair()), ledger.solana_derivation_path(), bytes(400))


class TestHidFraming:

    def test_wrap_single_packet(self):
        apdu = bytes([0xE0, 0x05, 0x00, 0x00, 0x00])
        packets = ledger.wrap_apdu(apdu)
        assert len(packets) == 1
        assert len(packets[0]) == 64
        assert packets[0][:7] == bytes([0x01, 0x01, 0x05, 0x00, 0x00, 0x00, 0x05])
        assert packets[0][7:12] == apdu

    def test_wrap_sequence_numbers(self):
        packets = ledger.wrap_apdu(bytes(200))
        assert len(packets) == 4
        assert [struct.unpack(">H", p[3:5])[0] for p in packets] == [0, 1, 2, 3]

    def test_assemble_response(self):
        response = bytes(range(100)) + b"\x90\x00"
        # Device replies use the same framing as requests
        packets = ledger.wrap_apdu(response)
        assembler = ledger.ResponseAssembler()
        results = [assembler.feed(p) for p in packets]
        assert results[:-1] == [None] * (len(packets) - 1)
        assert results[-1] == response

    def test_assemble_out_of_order(self):
        packets = ledger.wrap_apdu(bytes(200))
        assembler = ledger.ResponseAssembler()
        assembler.feed(packets[0])
        with pytest.raises(DeviceCommunicationError, match="out of order"):
            assembler.feed(packets[2])

    def test_assemble_wrong_channel(self):
        packet = ledger.wrap_apdu(b"\x90\x00", channel=0x0202)[0]
        with pytest.raises(DeviceCommunicationError):
            ledger.ResponseAssembler().feed(packet)
