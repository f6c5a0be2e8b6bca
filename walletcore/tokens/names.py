"""Display names for well-known mainnet mints."""

from __future__ import annotations

from solders.pubkey import Pubkey

TOKEN_NAMES: dict[str, tuple[str, str]] = {
    "So11111111111111111111111111111111111111112": ("Wrapped SOL", "SOL"),
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": ("USD Coin", "USDC"),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": ("USDT", "USDT"),
    "SRMuApVNdxXokk5GT7XD5cUUgXMBCoAz2LHeuAoKWRt": ("Serum", "SRM"),
    "9n4nbM75f5Ui33ZbPYXn59EwSgE8CGsHtAeTH5YFeJ9E": ("Wrapped Bitcoin (Sollet)", "BTC"),
    "2FPyTwcZLUg1MDrwsyoP4D6s1tM7hAkHYRjkNb5w6Pxk": ("Wrapped Ethereum (Sollet)", "ETH"),
}


def token_name(mint: Pubkey | None) -> tuple[str | None, str | None]:
    """(name, symbol) for a mint, (None, None) when unknown."""
    if mint is None:
        return None, None
    return TOKEN_NAMES.get(str(mint), (None, None))
