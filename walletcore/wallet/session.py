"""Wallet session — an activated identity plus its signed operations.

Every operation that moves funds goes through the same path:
  1. Build instructions with this wallet as fee payer
  2. Fetch a recent blockhash
  3. Sign with any extra signers first (e.g. a fresh token account)
  4. Sign with the provider (local key or device)
  5. Submit raw bytes, return the transaction signature

Provider errors (UserRejected, DeviceCommunicationError, SeedUnavailable,
ProviderBusy, SigningCancelled) propagate unchanged. No retries here.
"""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, TransferParams, create_account
from solders.system_program import transfer as system_transfer
from solders.transaction import Transaction

from walletcore.clients.solana_rpc import AccountInfo
from walletcore.errors import UnsupportedOperation
from walletcore.signer.providers import SigningProvider, add_signature
from walletcore.tokens import instructions as token_ix
from walletcore.tokens.data import (
    ACCOUNT_SIZE,
    TokenAccountData,
    TokenAccountInfo,
    parse_token_account_data,
)

log = logging.getLogger("walletcore.session")


class Connection(Protocol):
    """What a session needs from the network. SolanaRPCClient satisfies it."""

    async def get_latest_blockhash(self) -> Hash: ...

    async def get_account_info(self, address: Pubkey) -> AccountInfo | None: ...

    async def get_owned_token_accounts(self, owner: Pubkey) -> list[tuple[Pubkey, AccountInfo]]: ...

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int: ...

    async def send_raw_transaction(self, raw: bytes) -> str: ...


class WalletSession:
    """Usage:
        session = await WalletSession.create(rpc, LocalProvider(vault, 0), wallet_index=0)
        sig = await session.transfer_sol(destination, 1_000_000)
    """

    def __init__(self, connection: Connection, provider: SigningProvider, wallet_index: int = 0):
        self.connection = connection
        self.provider = provider
        self.wallet_index = wallet_index

    @classmethod
    async def create(
        cls, connection: Connection, provider: SigningProvider, wallet_index: int = 0
    ) -> "WalletSession":
        """Initialize `provider` and bind it to a new session."""
        await provider.init()
        return cls(connection, provider, wallet_index)

    @property
    def public_key(self) -> Pubkey:
        return self.provider.public_key

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        return await self.provider.sign_transaction(tx)

    # ── Reads ───────────────────────────────────────────────────────

    async def get_token_account_info(self) -> list[TokenAccountInfo]:
        """Token accounts owned by this wallet. No signing."""
        accounts = await self.connection.get_owned_token_accounts(self.public_key)
        return [
            TokenAccountInfo(address=address, parsed=parse_token_account_data(info.data))
            for address, info in accounts
        ]

    async def get_public_keys(self) -> list[Pubkey]:
        """Wallet address followed by its token account addresses."""
        accounts = await self.get_token_account_info()
        return [self.public_key] + [account.address for account in accounts]

    async def address_for_mint(self, mint: Pubkey) -> Pubkey | None:
        """First token account of this wallet holding `mint`."""
        for account in await self.get_token_account_info():
            if account.parsed.mint == mint:
                return account.address
        return None

    async def token_account_cost(self) -> int:
        """Lamports needed to make a new token account rent exempt."""
        return await self.connection.get_minimum_balance_for_rent_exemption(ACCOUNT_SIZE)

    # ── Signed operations ───────────────────────────────────────────

    async def create_token_account(self, mint: Pubkey) -> Pubkey:
        """Allocate and initialize a token account for `mint`. Returns its address."""
        new_account = Keypair()
        lamports = await self.token_account_cost()
        instructions = [
            create_account(CreateAccountParams(
                from_pubkey=self.public_key,
                to_pubkey=new_account.pubkey(),
                lamports=lamports,
                space=ACCOUNT_SIZE,
                owner=token_ix.TOKEN_PROGRAM_ID,
            )),
            token_ix.initialize_account(new_account.pubkey(), mint, self.public_key),
        ]
        await self._sign_and_send(instructions, "create token account", signers=[new_account])
        return new_account.pubkey()

    async def transfer_token(
        self,
        source: Pubkey,
        destination: Pubkey,
        amount: int,
        decimals: int,
        memo: str | None = None,
    ) -> str:
        """Transfer tokens out of `source`.

        A transfer whose source is the wallet address itself is a SOL
        transfer. Memos are not supported on that path.
        """
        if source == self.public_key:
            if memo:
                raise UnsupportedOperation("Memo is not supported for SOL transfers")
            return await self.transfer_sol(destination, amount)

        parsed = await self._owned_token_account(source)
        instructions = [
            token_ix.transfer_checked(
                source, parsed.mint, destination, self.public_key, amount, decimals
            )
        ]
        if memo:
            instructions.append(token_ix.memo(memo))
        return await self._sign_and_send(instructions, "token transfer")

    async def transfer_sol(self, destination: Pubkey, amount: int) -> str:
        """Transfer `amount` lamports to `destination`."""
        instruction = system_transfer(TransferParams(
            from_pubkey=self.public_key,
            to_pubkey=destination,
            lamports=amount,
        ))
        return await self._sign_and_send([instruction], "SOL transfer")

    async def close_token_account(self, address: Pubkey) -> str:
        """Close a token account of this wallet and reclaim its rent."""
        await self._owned_token_account(address)
        instruction = token_ix.close_account(address, self.public_key, self.public_key)
        return await self._sign_and_send([instruction], "close token account")

    # ── Internals ───────────────────────────────────────────────────

    async def _owned_token_account(self, address: Pubkey) -> TokenAccountData:
        info = await self.connection.get_account_info(address)
        if info is None or info.owner != token_ix.TOKEN_PROGRAM_ID:
            raise UnsupportedOperation(f"{address} is not a token account")
        try:
            parsed = parse_token_account_data(info.data)
        except ValueError as e:
            raise UnsupportedOperation(f"{address} is not a token account") from e
        if parsed.owner != self.public_key:
            raise UnsupportedOperation(f"Token account {address} is not owned by this wallet")
        return parsed

    async def _sign_and_send(
        self,
        instructions: list[Instruction],
        label: str,
        signers: Sequence[Keypair] = (),
    ) -> str:
        blockhash = await self.connection.get_latest_blockhash()
        tx = Transaction.new_unsigned(
            Message.new_with_blockhash(instructions, self.public_key, blockhash)
        )
        for signer in signers:
            tx = add_signature(tx, signer.pubkey(), signer.sign_message(bytes(tx.message)))
        tx = await self.sign_transaction(tx)

        signature = await self.connection.send_raw_transaction(bytes(tx))
        log.info("Sent %s from %s: %s", label, self.public_key, signature)
        return signature
