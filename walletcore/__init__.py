"""walletcore — deterministic Solana keys and a uniform signing interface.

Derivation: walletcore/signer/derivation.py (m/501'/{wallet}'/0/{account})
Vault:      walletcore/signer/vault.py      (encrypted seed, lock/unlock)
Providers:  walletcore/signer/providers.py  (local key or hardware device)
Session:    walletcore/wallet/session.py    (transfers, token accounts)
Registry:   walletcore/wallet/registry.py   (login/logout, wallet selection)
"""

from walletcore.errors import (
    AuthError,
    DerivationError,
    DeviceCommunicationError,
    DeviceNotFound,
    ProviderBusy,
    SeedUnavailable,
    SigningCancelled,
    SigningError,
    TransportError,
    UnsupportedOperation,
    UserRejected,
    WalletError,
)
from walletcore.signer.derivation import derive, derivation_path, mnemonic_to_secret_key
from walletcore.signer.providers import (
    LocalProvider,
    ProviderKind,
    RemoteDeviceProvider,
    SigningProvider,
    create_provider,
)
from walletcore.signer.vault import SeedStore, SeedVault
from walletcore.wallet.registry import RegistryState, WalletRegistry
from walletcore.wallet.session import WalletSession
