"""Solana JSON-RPC client — the wallet's view of the ledger.

Provides:
- Recent blockhash for new transactions
- Account info (base64 data)
- Token accounts owned by a wallet
- Rent-exemption minimums
- Raw transaction submission
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey

from walletcore.clients.base import APIError, RPCFallbackClient
from walletcore.tokens.data import ACCOUNT_SIZE
from walletcore.tokens.instructions import TOKEN_PROGRAM_ID


class RPCError(APIError):
    """JSON-RPC error object returned by the node."""

    def __init__(self, message: str, code: int = 0):
        super().__init__(message, provider="solana_rpc", retryable=False)
        self.code = code


@dataclass(frozen=True)
class AccountInfo:
    owner: Pubkey
    lamports: int
    data: bytes
    executable: bool = False


def _parse_account(value: dict[str, Any]) -> AccountInfo:
    data_field = value.get("data") or ["", "base64"]
    return AccountInfo(
        owner=Pubkey.from_string(value["owner"]),
        lamports=int(value.get("lamports", 0)),
        data=base64.b64decode(data_field[0]),
        executable=bool(value.get("executable", False)),
    )


class SolanaRPCClient:
    """Async JSON-RPC client over an endpoint fallback chain."""

    def __init__(
        self,
        endpoints: list[dict[str, Any]],
        commitment: str = "confirmed",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.commitment = commitment
        self._rpc = RPCFallbackClient(endpoints, transport=transport)
        self._request_id = 0

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        response = await self._rpc.request({
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        })
        if "error" in response:
            error = response["error"] or {}
            raise RPCError(
                f"{method} failed: {error.get('message', error)}",
                code=int(error.get("code", 0)),
            )
        return response.get("result")

    async def get_latest_blockhash(self) -> Hash:
        result = await self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    async def get_account_info(self, address: Pubkey) -> AccountInfo | None:
        """Account at `address`, or None if it does not exist."""
        result = await self._call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = result.get("value") if result else None
        return _parse_account(value) if value else None

    async def get_owned_token_accounts(self, owner: Pubkey) -> list[tuple[Pubkey, AccountInfo]]:
        """All SPL token accounts whose owner field is `owner`."""
        result = await self._call(
            "getProgramAccounts",
            [
                str(TOKEN_PROGRAM_ID),
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "filters": [
                        {"memcmp": {"offset": 32, "bytes": str(owner)}},
                        {"dataSize": ACCOUNT_SIZE},
                    ],
                },
            ],
        )
        return [
            (Pubkey.from_string(item["pubkey"]), _parse_account(item["account"]))
            for item in result or []
        ]

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return int(await self._call("getMinimumBalanceForRentExemption", [size]))

    async def send_raw_transaction(self, raw: bytes) -> str:
        """Submit a signed transaction. Returns its signature (base58)."""
        return await self._call(
            "sendTransaction",
            [
                base64.b64encode(raw).decode("ascii"),
                {"encoding": "base64", "preflightCommitment": self.commitment},
            ],
        )

    async def close(self) -> None:
        await self._rpc.close()
