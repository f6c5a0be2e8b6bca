"""Key derivation — seed + wallet index -> Ed25519 keypair.

THIS IS THE MOST SAFETY-CRITICAL FUNCTION IN THE PACKAGE.
A wrong derivation silently sends funds to an address nobody controls.

Scheme (bit-exact with the Solana web wallets that use this layout):
  1. BIP32 over secp256k1 from the 64-byte BIP39 seed
  2. Walk m/501'/{wallet_index}'/0/{account_index}
  3. The 32-byte private key of that node is the Ed25519 seed
  4. Keypair.from_seed() gives the signing keypair

Only 501' and the wallet index are hardened. The trailing 0/{account_index}
levels are NOT hardened. Changing that changes every address.

Pure functions only. The seed is always passed in explicitly; nothing here
touches the vault.
"""

from __future__ import annotations

from bip_utils import Bip32KeyError, Bip32PathError, Bip32Secp256k1
from mnemonic import Mnemonic
from solders.keypair import Keypair

from walletcore.errors import DerivationError

SOLANA_PURPOSE = 501

# BIP32 seed bounds: 128..512 bits
MIN_SEED_BYTES = 16
MAX_SEED_BYTES = 64


def derivation_path(wallet_index: int, account_index: int = 0) -> str:
    """Build the derivation path for a wallet index."""
    for name, value in (("wallet_index", wallet_index), ("account_index", account_index)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise DerivationError(f"{name} must be an int, got {type(value).__name__}")
        if value < 0 or value >= 0x80000000:
            raise DerivationError(f"{name} out of range: {value}")
    return f"m/{SOLANA_PURPOSE}'/{wallet_index}'/0/{account_index}"


def derive_secret(seed: bytes, path: str) -> bytes:
    """Return the 32-byte BIP32 (secp256k1) private key at `path`."""
    if not isinstance(seed, (bytes, bytearray)):
        raise DerivationError(f"Seed must be bytes, got {type(seed).__name__}")
    if not MIN_SEED_BYTES <= len(seed) <= MAX_SEED_BYTES:
        raise DerivationError(
            f"Seed must be {MIN_SEED_BYTES}-{MAX_SEED_BYTES} bytes, got {len(seed)}"
        )
    try:
        node = Bip32Secp256k1.FromSeedAndPath(bytes(seed), path)
    except (Bip32KeyError, Bip32PathError, ValueError) as e:
        raise DerivationError(f"BIP32 derivation failed for {path}: {e}") from e
    return node.PrivateKey().Raw().ToBytes()


def keypair_from_secret(secret: bytes) -> Keypair:
    """Ed25519 keypair from a 32-byte seed (RFC 8032 secret key)."""
    if len(secret) != 32:
        raise DerivationError(f"Ed25519 seed must be 32 bytes, got {len(secret)}")
    return Keypair.from_seed(bytes(secret))


def derive(seed: bytes, wallet_index: int, account_index: int = 0) -> Keypair:
    """Derive the signing keypair for (seed, wallet_index, account_index).

    Same inputs always give a bit-identical keypair.

    Raises:
        DerivationError: malformed seed or index.
    """
    path = derivation_path(wallet_index, account_index)
    return keypair_from_secret(derive_secret(seed, path))


def mnemonic_to_secret_key(mnemonic: str, passphrase: str = "") -> bytes:
    """Export helper: 64-byte secret key of wallet 0 for a BIP39 mnemonic.

    The result (private half + public half) is what other Solana wallets
    accept as an imported secret key.
    """
    if not Mnemonic("english").check(mnemonic):
        raise DerivationError("Invalid mnemonic")
    root_seed = Mnemonic.to_seed(mnemonic, passphrase)
    return bytes(derive(root_seed, 0))
