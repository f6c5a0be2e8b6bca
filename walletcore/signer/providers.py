"""Signing providers — one contract, two trust models.

    LocalProvider        keypair derived from the unlocked seed, in-process
    RemoteDeviceProvider private key stays on a hardware device; only the
                         public key is ever held here

Both expose:
    await provider.init()                  -> provider
    provider.public_key                    -> Pubkey
    await provider.sign_transaction(tx)    -> Transaction (signature added)
    await provider.close()

Every sign_transaction call is a coroutine and may be rejected, even for
the local variant, so callers handle both variants the same way.

Signing never discards signatures already on the transaction: the new
signature goes into this key's slot among the required signers.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from walletcore.device import ledger
from walletcore.device.ledger import Transport
from walletcore.errors import (
    DeviceCommunicationError,
    ProviderBusy,
    SeedUnavailable,
    SigningCancelled,
    SigningError,
    TransportError,
    UnsupportedOperation,
)
from walletcore.signer.vault import SeedVault

log = logging.getLogger("walletcore.providers")

TransportFactory = Callable[[], Awaitable[Transport]]


class ProviderKind(str, Enum):
    LOCAL = "local"
    DEVICE = "device"

    @classmethod
    def parse(cls, value: "str | ProviderKind") -> "ProviderKind":
        if isinstance(value, ProviderKind):
            return value
        # "ledger" is the name older settings files use
        if value == "ledger":
            return cls.DEVICE
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedOperation(f"Unknown provider kind: {value!r}") from None


def signer_index(tx: Transaction, pubkey: Pubkey) -> int:
    """Slot of `pubkey` among the transaction's required signers."""
    message = tx.message
    required = message.account_keys[:message.header.num_required_signatures]
    for i, key in enumerate(required):
        if key == pubkey:
            return i
    raise SigningError(f"{pubkey} is not a required signer of this transaction")


def add_signature(tx: Transaction, pubkey: Pubkey, signature: Signature) -> Transaction:
    """Return `tx` with `signature` placed in `pubkey`'s slot. Other slots are kept."""
    index = signer_index(tx, pubkey)
    signatures = list(tx.signatures)
    signatures[index] = signature
    return Transaction.populate(tx.message, signatures)


class SigningProvider(ABC):
    """Holds or proxies a private key. Immutable once initialized."""

    kind: ProviderKind

    @abstractmethod
    async def init(self) -> "SigningProvider":
        """Derive the key or complete the device handshake."""

    @property
    @abstractmethod
    def public_key(self) -> Pubkey:
        """The account address this provider signs for."""

    @abstractmethod
    async def sign_transaction(self, tx: Transaction) -> Transaction:
        """Add this provider's signature to `tx`."""

    @abstractmethod
    async def close(self) -> None:
        """Drop key material / release the device. Idempotent."""


class LocalProvider(SigningProvider):
    """Keypair derived from the unlocked seed for one wallet index."""

    kind = ProviderKind.LOCAL

    def __init__(self, vault: SeedVault, wallet_index: int, account_index: int = 0):
        self.vault = vault
        self.wallet_index = wallet_index
        self.account_index = account_index
        self._keypair: Keypair | None = None
        self._public_key: Pubkey | None = None

    async def init(self) -> "LocalProvider":
        """Raises SeedUnavailable if the vault is locked."""
        self._keypair = self.vault.derive_keypair(self.wallet_index, self.account_index)
        self._public_key = self._keypair.pubkey()
        return self

    @property
    def public_key(self) -> Pubkey:
        if self._public_key is None:
            raise SigningError("Provider is not initialized")
        return self._public_key

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        if self._keypair is None:
            raise SeedUnavailable("Wallet is locked")
        signature = self._keypair.sign_message(bytes(tx.message))
        return add_signature(tx, self._keypair.pubkey(), signature)

    def forget(self) -> None:
        """Drop the private key. The public key stays readable."""
        self._keypair = None

    async def close(self) -> None:
        self.forget()


class RemoteDeviceProvider(SigningProvider):
    """Signs on a hardware device over an exclusively owned transport.

    One signing request at a time: a second concurrent request raises
    ProviderBusy. close() cancels a pending request (its caller gets
    SigningCancelled) and closes the transport once.
    """

    kind = ProviderKind.DEVICE

    def __init__(
        self,
        transport_factory: TransportFactory,
        derivation_path: bytes | None = None,
        timeout: float | None = None,
    ):
        self._transport_factory = transport_factory
        self.derivation_path = derivation_path or ledger.solana_derivation_path()
        self.timeout = timeout
        self._transport: Transport | None = None
        self._public_key: Pubkey | None = None
        self._pending: asyncio.Future | None = None
        self._closed = False

    async def init(self) -> "RemoteDeviceProvider":
        """Open the transport and read the public key.

        Raises:
            DeviceNotFound / TransportError: link failure.
            DeviceCommunicationError: protocol failure.
        """
        self._transport = await self._transport_factory()
        try:
            self._public_key = await ledger.get_public_key(self._transport, self.derivation_path)
        except BaseException:
            await self.close()
            raise
        log.info("Device provider ready: %s", self._public_key)
        return self

    @property
    def public_key(self) -> Pubkey:
        if self._public_key is None:
            raise SigningError("Provider is not initialized")
        return self._public_key

    @property
    def busy(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        """Send the message to the device and wait for the human.

        Raises:
            ProviderBusy: another request is in flight.
            UserRejected: declined on the device.
            DeviceCommunicationError: protocol failure or timeout.
            SigningCancelled: provider closed while waiting.
        """
        if self._closed or self._transport is None:
            raise TransportError("Device provider is closed")
        if self.busy:
            raise ProviderBusy("A device signing request is already pending")

        public_key = self.public_key
        signer_index(tx, public_key)
        message = bytes(tx.message)

        task = asyncio.ensure_future(
            ledger.sign_message(self._transport, self.derivation_path, message)
        )
        self._pending = task
        try:
            if self.timeout:
                signature = await asyncio.wait_for(task, self.timeout)
            else:
                signature = await task
        except asyncio.TimeoutError:
            raise DeviceCommunicationError(
                f"No answer from device after {self.timeout}s"
            ) from None
        except asyncio.CancelledError:
            if self._closed:
                raise SigningCancelled("Signing cancelled: provider closed") from None
            raise
        finally:
            self._pending = None

        return add_signature(tx, public_key, signature)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.busy:
            self._pending.cancel()
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()
            log.info("Device provider closed")


def create_provider(
    kind: str | ProviderKind,
    wallet_index: int = 0,
    vault: SeedVault | None = None,
    transport_factory: TransportFactory | None = None,
    device_timeout: float | None = None,
) -> SigningProvider:
    """Construct (but do not init) the provider for `kind`."""
    kind = ProviderKind.parse(kind)
    if kind is ProviderKind.LOCAL:
        if vault is None:
            raise SeedUnavailable("Local provider needs a seed vault")
        return LocalProvider(vault, wallet_index)

    if transport_factory is None:
        from walletcore.device.hid import HIDTransport

        transport_factory = HIDTransport.open
    return RemoteDeviceProvider(transport_factory, timeout=device_timeout)
