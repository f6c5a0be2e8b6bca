"""Wallet registry — login/logout lifecycle and wallet selection.

State machine:

    LOGGED_OUT --login()--> ACTIVATING --ok--> LOGGED_IN
                                  |                |
                                  +--failure-------+--logout()--> LOGGED_OUT

A failed or cancelled activation always lands back in LOGGED_OUT and
re-raises the error. Selecting another wallet index while logged in with
a local key builds a NEW provider; providers are never mutated.
"""

from __future__ import annotations

import logging
from enum import Enum

from solders.pubkey import Pubkey

from walletcore.errors import ProviderBusy, SigningCancelled, UnsupportedOperation
from walletcore.settings import Settings, SettingsStore
from walletcore.signer.providers import (
    LocalProvider,
    ProviderKind,
    TransportFactory,
    create_provider,
)
from walletcore.signer.vault import SeedVault
from walletcore.wallet.session import Connection, WalletSession

log = logging.getLogger("walletcore.registry")


class RegistryState(str, Enum):
    LOGGED_OUT = "logged_out"
    ACTIVATING = "activating"
    LOGGED_IN = "logged_in"


class WalletRegistry:
    """Tracks the active wallet index and holds the active session."""

    def __init__(
        self,
        connection: Connection,
        vault: SeedVault,
        settings: SettingsStore | None = None,
        transport_factory: TransportFactory | None = None,
        device_timeout: float | None = None,
    ):
        self.connection = connection
        self.vault = vault
        self._settings_store = settings
        self._selection = settings.load() if settings else Settings()
        self._transport_factory = transport_factory
        self._device_timeout = device_timeout
        self._state = RegistryState.LOGGED_OUT
        self._kind: ProviderKind | None = None
        self._session: WalletSession | None = None
        # Bumped by logout() so an activation that finishes late is discarded
        self._generation = 0
        self.vault.add_listener(self._on_vault_change)

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def wallet_index(self) -> int:
        return self._selection.wallet_index

    @property
    def wallet_count(self) -> int:
        return self._selection.wallet_count

    def active_session(self) -> WalletSession | None:
        return self._session

    # ── Lifecycle ───────────────────────────────────────────────────

    async def login(self, kind: str | ProviderKind, password: str | None = None) -> WalletSession:
        """Unlock (local) or connect (device) and activate a session.

        Re-logging in with a local key and no password reuses the seed of
        the current session; the vault stays unlocked across the switch.

        Raises:
            ProviderBusy: another login is in progress.
            AuthError / SeedUnavailable / DeviceNotFound / TransportError /
            DeviceCommunicationError: activation failed; state is LOGGED_OUT.
        """
        if self._state is RegistryState.ACTIVATING:
            raise ProviderBusy("Login already in progress")
        kind = ProviderKind.parse(kind)
        if self._state is RegistryState.LOGGED_IN:
            keep_seed = kind is ProviderKind.LOCAL and password is None
            await self._end_session(lock_vault=not keep_seed)

        self._state = RegistryState.ACTIVATING
        generation = self._generation
        try:
            if kind is ProviderKind.LOCAL and password is not None:
                await self.vault.unlock_async(password)
            session = await self._activate(kind, self.wallet_index)
        except BaseException as e:
            # Includes CancelledError from a caller's timeout
            if self._generation == generation:
                self._state = RegistryState.LOGGED_OUT
                if kind is ProviderKind.LOCAL:
                    self.vault.lock()
            log.error("Login failed (%s): %r", kind.value, e)
            raise

        if self._generation != generation:
            # logout() ran while we were activating
            await session.provider.close()
            raise SigningCancelled("Login cancelled by logout")

        self._session = session
        self._kind = kind
        self._state = RegistryState.LOGGED_IN
        log.info("Logged in with %s provider: %s", kind.value, session.public_key)
        return session

    async def logout(self) -> None:
        """Lock the vault and discard the session. Safe to call anytime."""
        await self._end_session(lock_vault=True)

    async def _end_session(self, lock_vault: bool) -> None:
        self._generation += 1
        session, self._session = self._session, None
        self._kind = None
        self._state = RegistryState.LOGGED_OUT
        if lock_vault:
            self.vault.lock()
        if session is not None:
            await session.provider.close()
            log.info("Logged out")

    async def _activate(self, kind: ProviderKind, wallet_index: int) -> WalletSession:
        provider = create_provider(
            kind,
            wallet_index,
            vault=self.vault,
            transport_factory=self._transport_factory,
            device_timeout=self._device_timeout,
        )
        try:
            return await WalletSession.create(self.connection, provider, wallet_index)
        except BaseException:
            await provider.close()
            raise

    def _on_vault_change(self, unlocked: bool) -> None:
        # Locking the vault behind our back invalidates a local session
        if unlocked or self._kind is not ProviderKind.LOCAL or self._session is None:
            return
        provider = self._session.provider
        if isinstance(provider, LocalProvider):
            provider.forget()
        self._generation += 1
        self._session = None
        self._kind = None
        self._state = RegistryState.LOGGED_OUT
        log.info("Vault locked, local session discarded")

    # ── Wallet selection ────────────────────────────────────────────

    async def select_wallet(self, wallet_index: int) -> None:
        """Switch the active wallet index, growing the wallet count if needed."""
        if isinstance(wallet_index, bool) or not isinstance(wallet_index, int) or wallet_index < 0:
            raise UnsupportedOperation(f"Invalid wallet index: {wallet_index!r}")
        if self._state is RegistryState.ACTIVATING:
            raise ProviderBusy("Login in progress")

        if self._state is RegistryState.LOGGED_IN and self._kind is ProviderKind.LOCAL:
            new_session = await self._activate(ProviderKind.LOCAL, wallet_index)
            old_session, self._session = self._session, new_session
            if old_session is not None:
                await old_session.provider.close()

        self._save_selection(
            wallet_index=wallet_index,
            wallet_count=max(self.wallet_count, wallet_index + 1),
        )
        log.info("Selected wallet %d", wallet_index)

    def _save_selection(self, **changes: int) -> None:
        if self._settings_store is not None:
            self._selection = self._settings_store.update(**changes)
        else:
            self._selection = self._selection.model_copy(update=changes)

    def list_derived_addresses(self, count: int) -> list[Pubkey]:
        """Addresses of wallet indices 0..count-1. Empty while locked.

        Does not activate anything.
        """
        if not self.vault.is_unlocked:
            return []
        return [self.vault.derive_keypair(i).pubkey() for i in range(count)]

    def addresses(self) -> list[Pubkey]:
        """Derived addresses for every wallet the user has opened."""
        return self.list_derived_addresses(self.wallet_count)
