"""Binary layouts of SPL token accounts and mints."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from solders.pubkey import Pubkey

# Token account: mint(32) owner(32) amount(u64) ... = 165 bytes
ACCOUNT_SIZE = 165
# Mint: authority option(u32) authority(32) supply(u64) decimals(u8) ... = 82 bytes
MINT_SIZE = 82
MINT_DECIMALS_OFFSET = 44


@dataclass(frozen=True)
class TokenAccountData:
    mint: Pubkey
    owner: Pubkey
    amount: int


@dataclass(frozen=True)
class MintData:
    decimals: int


@dataclass(frozen=True)
class TokenAccountInfo:
    """A token account owned by the wallet: its address + parsed contents."""

    address: Pubkey
    parsed: TokenAccountData


def parse_token_account_data(data: bytes) -> TokenAccountData:
    if len(data) < 72:
        raise ValueError(f"Token account data too short: {len(data)} bytes")
    amount = struct.unpack_from("<Q", data, 64)[0]
    return TokenAccountData(
        mint=Pubkey.from_bytes(data[0:32]),
        owner=Pubkey.from_bytes(data[32:64]),
        amount=amount,
    )


def parse_mint_data(data: bytes) -> MintData:
    if len(data) < MINT_SIZE:
        raise ValueError(f"Mint data too short: {len(data)} bytes")
    return MintData(decimals=data[MINT_DECIMALS_OFFSET])
