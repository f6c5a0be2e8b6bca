"""Tests for the signing providers.

Verifies:
1. Local provider signs with the derived key and keeps other signatures
2. Device provider handshake, signing, rejection, timeout
3. One device request at a time (ProviderBusy)
4. close() cancels a pending device request and closes the transport once
5. Only required signers can sign
"""

from __future__ import annotations

import asyncio

import pytest
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams
from solders.system_program import transfer as system_transfer
from solders.transaction import Transaction

from walletcore.device.ledger import INS_SIGN_MESSAGE
from walletcore.errors import (
    DeviceCommunicationError,
    ProviderBusy,
    SeedUnavailable,
    SigningCancelled,
    SigningError,
    TransportError,
    UnsupportedOperation,
    UserRejected,
)
from walletcore.signer.derivation import derive
from walletcore.signer.providers import (
    LocalProvider,
    ProviderKind,
    RemoteDeviceProvider,
    add_signature,
    create_provider,
)
from walletcore.signer.vault import SeedVault
from tests.mocks.mock_ledger import FakeLedger, factory_for
from tests.mocks.mock_solana import BLOCKHASH, TEST_SEED

RECIPIENT = Pubkey(bytes([7] * 32))


def transfer_tx(payer: Pubkey, *co_signers: Pubkey) -> Transaction:
    instructions = [
        system_transfer(TransferParams(from_pubkey=key, to_pubkey=RECIPIENT, lamports=1_000))
        for key in (payer, *co_signers)
    ]
    return Transaction.new_unsigned(Message.new_with_blockhash(instructions, payer, BLOCKHASH))


def signature_of(tx: Transaction, pubkey: Pubkey) -> Signature:
    index = list(tx.message.account_keys).index(pubkey)
    return tx.signatures[index]


def is_valid(tx: Transaction, pubkey: Pubkey) -> bool:
    return signature_of(tx, pubkey).verify(pubkey, bytes(tx.message))


@pytest.fixture
def vault():
    vault = SeedVault()
    vault.unlock_with_seed(TEST_SEED)
    yield vault
    vault.lock()


async def wait_for_prompt(device: FakeLedger) -> None:
    await asyncio.wait_for(device.waiting.wait(), timeout=1.0)


class TestLocalProvider:

    @pytest.mark.asyncio
    async def test_public_key_is_derived(self, vault):
        provider = await LocalProvider(vault, 4).init()
        assert provider.public_key == derive(TEST_SEED, 4).pubkey()
        assert provider.kind is ProviderKind.LOCAL

    @pytest.mark.asyncio
    async def test_signs_transaction(self, vault):
        provider = await LocalProvider(vault, 0).init()
        tx = await provider.sign_transaction(transfer_tx(provider.public_key))
        assert is_valid(tx, provider.public_key)

    @pytest.mark.asyncio
    async def test_preserves_existing_signatures(self, vault):
        provider = await LocalProvider(vault, 0).init()
        co_signer = Keypair()
        tx = transfer_tx(provider.public_key, co_signer.pubkey())
        tx = add_signature(tx, co_signer.pubkey(), co_signer.sign_message(bytes(tx.message)))

        tx = await provider.sign_transaction(tx)

        assert is_valid(tx, co_signer.pubkey())
        assert is_valid(tx, provider.public_key)

    @pytest.mark.asyncio
    async def test_not_a_signer(self, vault):
        provider = await LocalProvider(vault, 0).init()
        with pytest.raises(SigningError):
            await provider.sign_transaction(transfer_tx(Keypair().pubkey()))

    @pytest.mark.asyncio
    async def test_init_while_locked(self):
        with pytest.raises(SeedUnavailable):
            await LocalProvider(SeedVault(), 0).init()

    def test_public_key_before_init(self, vault):
        with pytest.raises(SigningError):
            LocalProvider(vault, 0).public_key

    @pytest.mark.asyncio
    async def test_sign_after_close(self, vault):
        provider = await LocalProvider(vault, 0).init()
        pubkey = provider.public_key
        await provider.close()
        assert provider.public_key == pubkey
        with pytest.raises(SeedUnavailable):
            await provider.sign_transaction(transfer_tx(pubkey))


class TestRemoteDeviceProvider:

    @pytest.mark.asyncio
    async def test_init_reads_public_key(self):
        keypair = Keypair()
        provider = await RemoteDeviceProvider(factory_for(FakeLedger(keypair))).init()
        assert provider.public_key == keypair.pubkey()
        assert provider.kind is ProviderKind.DEVICE

    @pytest.mark.asyncio
    async def test_signs_transaction(self):
        device = FakeLedger(Keypair())
        provider = await RemoteDeviceProvider(factory_for(device)).init()
        tx = transfer_tx(provider.public_key)

        signed = await provider.sign_transaction(tx)

        assert is_valid(signed, provider.public_key)
        assert device.signed_messages == [bytes(tx.message)]

    @pytest.mark.asyncio
    async def test_preserves_existing_signatures(self):
        provider = await RemoteDeviceProvider(factory_for(FakeLedger(Keypair()))).init()
        co_signer = Keypair()
        tx = transfer_tx(provider.public_key, co_signer.pubkey())
        tx = add_signature(tx, co_signer.pubkey(), co_signer.sign_message(bytes(tx.message)))

        tx = await provider.sign_transaction(tx)

        assert is_valid(tx, co_signer.pubkey())
        assert is_valid(tx, provider.public_key)

    @pytest.mark.asyncio
    async def test_user_rejects(self):
        device = FakeLedger(Keypair(), auto_approve=False)
        provider = await RemoteDeviceProvider(factory_for(device)).init()
        task = asyncio.ensure_future(provider.sign_transaction(transfer_tx(provider.public_key)))
        await wait_for_prompt(device)
        device.reject()
        with pytest.raises(UserRejected):
            await task
        assert not provider.busy

    @pytest.mark.asyncio
    async def test_second_request_while_pending(self):
        device = FakeLedger(Keypair(), auto_approve=False)
        provider = await RemoteDeviceProvider(factory_for(device)).init()
        tx = transfer_tx(provider.public_key)
        first = asyncio.ensure_future(provider.sign_transaction(tx))
        await wait_for_prompt(device)

        assert provider.busy
        with pytest.raises(ProviderBusy):
            await provider.sign_transaction(tx)

        device.approve()
        signed = await first
        assert is_valid(signed, provider.public_key)
        assert len(device.signed_messages) == 1

    @pytest.mark.asyncio
    async def test_close_cancels_pending_request(self):
        device = FakeLedger(Keypair(), auto_approve=False)
        provider = await RemoteDeviceProvider(factory_for(device)).init()
        task = asyncio.ensure_future(provider.sign_transaction(transfer_tx(provider.public_key)))
        await wait_for_prompt(device)

        await provider.close()

        with pytest.raises(SigningCancelled):
            await task
        await provider.close()
        assert device.close_count == 1
        assert device.signed_messages == []

    @pytest.mark.asyncio
    async def test_sign_after_close(self):
        provider = await RemoteDeviceProvider(factory_for(FakeLedger(Keypair()))).init()
        pubkey = provider.public_key
        await provider.close()
        with pytest.raises(TransportError):
            await provider.sign_transaction(transfer_tx(pubkey))

    @pytest.mark.asyncio
    async def test_timeout(self):
        device = FakeLedger(Keypair(), auto_approve=False)
        provider = await RemoteDeviceProvider(factory_for(device), timeout=0.05).init()
        with pytest.raises(DeviceCommunicationError, match="No answer"):
            await provider.sign_transaction(transfer_tx(provider.public_key))
        assert not provider.busy
        await provider.close()

    @pytest.mark.asyncio
    async def test_not_a_signer_never_reaches_device(self):
        device = FakeLedger(Keypair())
        provider = await RemoteDeviceProvider(factory_for(device)).init()
        with pytest.raises(SigningError):
            await provider.sign_transaction(transfer_tx(Keypair().pubkey()))
        assert all(apdu[1] != INS_SIGN_MESSAGE for apdu in device.apdus)

    @pytest.mark.asyncio
    async def test_failed_handshake_closes_transport(self):
        class LockedDevice(FakeLedger):
            async def exchange(self, apdu):
                return b"\x55\x15"

        device = LockedDevice(Keypair())
        with pytest.raises(DeviceCommunicationError, match="locked"):
            await RemoteDeviceProvider(factory_for(device)).init()
        assert device.close_count == 1


class TestCreateProvider:

    def test_local(self, vault):
        provider = create_provider("local", 2, vault=vault)
        assert isinstance(provider, LocalProvider)
        assert provider.wallet_index == 2

    def test_local_needs_vault(self):
        with pytest.raises(SeedUnavailable):
            create_provider(ProviderKind.LOCAL)

    @pytest.mark.parametrize("kind", ["device", "ledger", ProviderKind.DEVICE])
    def test_device(self, kind):
        provider = create_provider(kind, transport_factory=factory_for(FakeLedger(Keypair())))
        assert isinstance(provider, RemoteDeviceProvider)

    def test_device_timeout_passed_through(self):
        provider = create_provider(
            "device", transport_factory=factory_for(FakeLedger(Keypair())), device_timeout=30
        )
        assert provider.timeout == 30

    def test_unknown_kind(self):
        with pytest.raises(UnsupportedOperation):
            create_provider("paper")
