"""Seed vault — the unlocked master seed and its encrypted store.

THIS MODULE OWNS THE MASTER SEED.

Two pieces:
  SeedStore  — the seed at rest: a JSON file encrypted with a password
               (PBKDF2-HMAC-SHA256 -> NaCl SecretBox)
  SeedVault  — the seed in memory for one session, between unlock() and lock()

CRITICAL INVARIANTS:
  - Only SeedVault.derive_keypair() hands the seed to the key deriver
  - lock() zeroes the in-memory seed before dropping it
  - The seed, mnemonic and password are NEVER logged or put in an error message
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Callable

import nacl.utils
from mnemonic import Mnemonic
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox
from solders.keypair import Keypair

from walletcore.errors import AuthError, SeedUnavailable
from walletcore.signer.derivation import derive
from walletcore.utils.file_lock import safe_read_json, safe_write_json

log = logging.getLogger("walletcore.vault")

DEFAULT_ITERATIONS = 100_000
KDF_DIGEST = "sha256"
SALT_BYTES = 16

# Owner read/write only
SECURE_FILE_MODE = 0o600


def generate_mnemonic_and_seed(strength: int = 256) -> tuple[str, bytes]:
    """Fresh BIP39 mnemonic and its 64-byte seed."""
    words = Mnemonic("english").generate(strength=strength)
    return words, Mnemonic.to_seed(words)


def _derive_encryption_key(password: str, salt: bytes, iterations: int, digest: str) -> bytes:
    return hashlib.pbkdf2_hmac(
        digest, password.encode("utf-8"), salt, iterations, SecretBox.KEY_SIZE
    )


class SeedStore:
    """Password-encrypted seed file.

    File format (all binary fields hex):
        {"kdf": "pbkdf2", "digest": "sha256", "iterations": 100000,
         "salt": ..., "nonce": ..., "encrypted": ...}
    """

    def __init__(self, path: Path, iterations: int = DEFAULT_ITERATIONS):
        self.path = Path(path)
        self.iterations = iterations

    def exists(self) -> bool:
        return self.path.exists()

    def store(self, mnemonic: str | None, seed: bytes, password: str) -> None:
        """Encrypt and write the mnemonic + seed."""
        plaintext = json.dumps({"mnemonic": mnemonic, "seed": bytes(seed).hex()}).encode()
        salt = nacl.utils.random(SALT_BYTES)
        nonce = nacl.utils.random(SecretBox.NONCE_SIZE)
        key = _derive_encryption_key(password, salt, self.iterations, KDF_DIGEST)
        encrypted = SecretBox(key).encrypt(plaintext, nonce).ciphertext

        safe_write_json(
            self.path,
            {
                "kdf": "pbkdf2",
                "digest": KDF_DIGEST,
                "iterations": self.iterations,
                "salt": salt.hex(),
                "nonce": nonce.hex(),
                "encrypted": encrypted.hex(),
            },
            mode=SECURE_FILE_MODE,
        )
        log.info("Seed stored at %s", self.path)

    def load(self, password: str) -> tuple[str | None, bytes]:
        """Decrypt the stored mnemonic + seed.

        Raises:
            SeedUnavailable: nothing stored.
            AuthError: wrong password or tampered file.
        """
        data = safe_read_json(self.path)
        if not data:
            raise SeedUnavailable(f"No stored seed at {self.path}")

        try:
            salt = bytes.fromhex(data["salt"])
            nonce = bytes.fromhex(data["nonce"])
            encrypted = bytes.fromhex(data["encrypted"])
            iterations = int(data.get("iterations", DEFAULT_ITERATIONS))
            digest = data.get("digest", KDF_DIGEST)
        except (KeyError, ValueError) as e:
            raise SeedUnavailable(f"Stored seed at {self.path} is malformed") from e

        key = _derive_encryption_key(password, salt, iterations, digest)
        try:
            plaintext = SecretBox(key).decrypt(encrypted, nonce)
        except CryptoError as e:
            raise AuthError("Incorrect password") from e

        payload: dict[str, Any] = json.loads(plaintext)
        return payload.get("mnemonic"), bytes.fromhex(payload["seed"])

    def clear(self) -> None:
        """Delete the stored seed (and its backup)."""
        for path in (self.path, self.path.with_suffix(self.path.suffix + ".bak")):
            if path.exists():
                path.unlink()


class SeedVault:
    """The unlocked seed for the current session.

    Usage:
        vault = SeedVault(SeedStore(path))
        vault.unlock("password")
        keypair = vault.derive_keypair(wallet_index=0)
        vault.lock()
    """

    def __init__(self, store: SeedStore | None = None):
        self._store = store
        self._seed: bytearray | None = None
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_unlocked(self) -> bool:
        return self._seed is not None

    def add_listener(self, callback: Callable[[bool], None]) -> None:
        """Register a callback fired with the new unlocked state on every change."""
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self.is_unlocked)

    def unlock(self, password: str) -> None:
        """Decrypt the stored seed into memory.

        Raises:
            SeedUnavailable: no store configured or nothing stored.
            AuthError: wrong password.
        """
        if self._store is None:
            raise SeedUnavailable("No seed store configured")
        _mnemonic, seed = self._store.load(password)
        self.unlock_with_seed(seed)

    async def unlock_async(self, password: str) -> None:
        """unlock() with the key stretching run in a worker thread.

        The vault only changes once the decrypted seed is back on the loop,
        so cancelling the caller leaves it as it was.
        """
        if self._store is None:
            raise SeedUnavailable("No seed store configured")
        _mnemonic, seed = await asyncio.to_thread(self._store.load, password)
        self.unlock_with_seed(seed)

    def unlock_with_seed(self, seed: bytes) -> None:
        """Hold `seed` as the unlocked seed (replaces and zeroes any previous one)."""
        self._wipe()
        self._seed = bytearray(seed)
        log.info("Seed vault unlocked")
        self._notify()

    def lock(self) -> None:
        """Zero and drop the seed. Safe to call when already locked."""
        was_unlocked = self.is_unlocked
        self._wipe()
        if was_unlocked:
            log.info("Seed vault locked")
            self._notify()

    def _wipe(self) -> None:
        if self._seed is not None:
            for i in range(len(self._seed)):
                self._seed[i] = 0
            self._seed = None

    def current_seed(self) -> bytes | None:
        """Copy of the unlocked seed, or None when locked."""
        return bytes(self._seed) if self._seed is not None else None

    def derive_keypair(self, wallet_index: int, account_index: int = 0) -> Keypair:
        """Derive a keypair from the unlocked seed.

        Raises:
            SeedUnavailable: vault is locked.
            DerivationError: seed or index malformed.
        """
        if self._seed is None:
            raise SeedUnavailable("Wallet is locked")
        return derive(self._seed, wallet_index, account_index)
