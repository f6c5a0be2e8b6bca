"""Error taxonomy for walletcore.

Every failure raised by the signing core is a WalletError. None of them is
fatal: the caller can always retry the action that triggered it.

Messages NEVER contain seed bytes, private keys, or passwords.
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all walletcore errors."""


class SeedUnavailable(WalletError):
    """No unlocked seed when local derivation or signing was requested."""


class AuthError(WalletError):
    """Wrong password for the stored seed."""


class DerivationError(WalletError):
    """Seed or path is malformed. Never silently yields a key."""


class TransportError(WalletError):
    """Hardware link failure (open, read, write)."""


class DeviceNotFound(TransportError):
    """No signing device is connected."""


class DeviceCommunicationError(WalletError):
    """Protocol-level failure while talking to the device."""

    def __init__(self, message: str, status_word: int = 0):
        super().__init__(message)
        self.status_word = status_word


class UserRejected(WalletError):
    """The human declined the confirmation on the device."""


class UnsupportedOperation(WalletError):
    """Operation is not possible in this context (e.g. memo on a SOL transfer)."""


class ProviderBusy(WalletError):
    """A signing (or activation) request is already in flight."""


class SigningCancelled(WalletError):
    """The provider was closed while a signing request was pending."""


class SigningError(WalletError):
    """The provider cannot sign this transaction (not a required signer)."""
