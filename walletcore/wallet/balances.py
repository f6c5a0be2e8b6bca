"""Balance info for one address: native SOL or an SPL token account.

An address with no account on chain is an empty SOL balance. Returns
None only for a token account whose mint could not be fetched yet; None
means "unknown yet", not an error.
"""

from __future__ import annotations

from dataclasses import dataclass

from solders.pubkey import Pubkey

from walletcore.tokens.data import parse_mint_data, parse_token_account_data
from walletcore.tokens.instructions import TOKEN_PROGRAM_ID, WRAPPED_SOL_MINT
from walletcore.tokens.names import token_name
from walletcore.wallet.session import Connection

SOL_DECIMALS = 9


@dataclass(frozen=True)
class BalanceInfo:
    amount: int
    decimals: int
    mint: Pubkey | None
    owner: Pubkey
    token_name: str | None
    token_symbol: str | None
    valid: bool = True


async def get_balance_info(connection: Connection, address: Pubkey) -> BalanceInfo | None:
    account = await connection.get_account_info(address)
    if account is None or account.owner != TOKEN_PROGRAM_ID:
        return BalanceInfo(
            amount=account.lamports if account is not None else 0,
            decimals=SOL_DECIMALS,
            mint=None,
            owner=address,
            token_name="SOL",
            token_symbol="SOL",
        )

    parsed = parse_token_account_data(account.data)
    if parsed.mint == WRAPPED_SOL_MINT:
        return BalanceInfo(
            amount=parsed.amount,
            decimals=SOL_DECIMALS,
            mint=parsed.mint,
            owner=parsed.owner,
            token_name="Wrapped SOL",
            token_symbol="SOL",
        )

    mint_account = await connection.get_account_info(parsed.mint)
    if mint_account is None:
        return None

    name, symbol = token_name(parsed.mint)
    try:
        decimals = parse_mint_data(mint_account.data).decimals
    except ValueError:
        return BalanceInfo(
            amount=parsed.amount,
            decimals=0,
            mint=parsed.mint,
            owner=parsed.owner,
            token_name="Invalid",
            token_symbol="INVALID",
            valid=False,
        )
    return BalanceInfo(
        amount=parsed.amount,
        decimals=decimals,
        mint=parsed.mint,
        owner=parsed.owner,
        token_name=name,
        token_symbol=symbol,
    )
