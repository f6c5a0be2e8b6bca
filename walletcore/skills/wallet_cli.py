"""Wallet CLI — create, inspect, and move funds from the local wallet.

Usage:
    python3 -m walletcore.skills.wallet_cli init
    python3 -m walletcore.skills.wallet_cli init --mnemonic "word1 word2 ..."
    python3 -m walletcore.skills.wallet_cli addresses --count 5
    python3 -m walletcore.skills.wallet_cli balances --wallet 0
    python3 -m walletcore.skills.wallet_cli balances --device
    python3 -m walletcore.skills.wallet_cli send-sol --to <ADDRESS> --lamports 1000000

Password comes from WALLET_PASSWORD (env or .env) or an interactive prompt.

Output:
    JSON on stdout. Exit code 1 on any failure.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import sys
from typing import Any

from dotenv import load_dotenv
from mnemonic import Mnemonic
from solders.pubkey import Pubkey

from walletcore.clients.solana_rpc import SolanaRPCClient
from walletcore.config import load_wallet_config, resolve_path, rpc_endpoints
from walletcore.errors import WalletError
from walletcore.settings import SettingsStore
from walletcore.signer.vault import DEFAULT_ITERATIONS, SeedStore, SeedVault, generate_mnemonic_and_seed
from walletcore.wallet.balances import get_balance_info
from walletcore.wallet.registry import WalletRegistry

log = logging.getLogger("walletcore.cli")


def _password(prompt: str = "Wallet password: ") -> str:
    return os.environ.get("WALLET_PASSWORD") or getpass.getpass(prompt)


def _seed_store(config: dict[str, Any]) -> SeedStore:
    section = config.get("seed_store", {})
    return SeedStore(
        resolve_path(section.get("path"), "state/seed.json"),
        iterations=int(section.get("iterations", DEFAULT_ITERATIONS)),
    )


def build_registry(config: dict[str, Any]) -> WalletRegistry:
    """Wire RPC client, vault, and settings from config/wallet.yaml."""
    return WalletRegistry(
        connection=SolanaRPCClient(rpc_endpoints(config)),
        vault=SeedVault(_seed_store(config)),
        settings=SettingsStore(
            resolve_path(config.get("settings", {}).get("path"), "state/settings.json")
        ),
        device_timeout=config.get("device", {}).get("timeout_seconds"),
    )


def init_wallet(config: dict[str, Any], mnemonic: str | None) -> dict[str, Any]:
    """Create (or restore from `mnemonic`) the encrypted seed."""
    store = _seed_store(config)
    if store.exists():
        return {"status": "FAILED", "error": f"A wallet already exists at {store.path}"}

    if mnemonic:
        if not Mnemonic("english").check(mnemonic):
            return {"status": "FAILED", "error": "Invalid mnemonic"}
        seed = Mnemonic.to_seed(mnemonic)
        generated = False
    else:
        mnemonic, seed = generate_mnemonic_and_seed()
        generated = True

    password = _password("New wallet password: ")
    store.store(mnemonic, seed, password)

    vault = SeedVault(store)
    vault.unlock_with_seed(seed)
    address = str(vault.derive_keypair(0).pubkey())
    vault.lock()

    result: dict[str, Any] = {"status": "OK", "address": address, "seed_path": str(store.path)}
    if generated:
        # Shown once so the user can write it down
        result["mnemonic"] = mnemonic
    return result


async def list_addresses(registry: WalletRegistry, count: int) -> dict[str, Any]:
    registry.vault.unlock(_password())
    try:
        addresses = registry.list_derived_addresses(count)
    finally:
        registry.vault.lock()
    return {
        "status": "OK",
        "selected": registry.wallet_index,
        "addresses": [str(a) for a in addresses],
    }


async def show_balances(registry: WalletRegistry, wallet: int | None, device: bool) -> dict[str, Any]:
    if device:
        session = await registry.login("device")
    else:
        if wallet is not None:
            await registry.select_wallet(wallet)
        session = await registry.login("local", _password())

    try:
        balances = []
        for address in await session.get_public_keys():
            info = await get_balance_info(registry.connection, address)
            balances.append({
                "address": str(address),
                "amount": info.amount if info else None,
                "decimals": info.decimals if info else None,
                "symbol": info.token_symbol if info else None,
                "mint": str(info.mint) if info and info.mint else None,
            })
        return {"status": "OK", "wallet": str(session.public_key), "balances": balances}
    finally:
        await registry.logout()


async def send_sol(registry: WalletRegistry, destination: str, lamports: int, device: bool) -> dict[str, Any]:
    if device:
        session = await registry.login("device")
    else:
        session = await registry.login("local", _password())
    try:
        signature = await session.transfer_sol(Pubkey.from_string(destination), lamports)
        return {"status": "OK", "tx_signature": signature}
    finally:
        await registry.logout()


async def _run(args: argparse.Namespace, config: dict[str, Any]) -> dict[str, Any]:
    registry = build_registry(config)
    try:
        if args.command == "addresses":
            return await list_addresses(registry, args.count)
        if args.command == "balances":
            return await show_balances(registry, args.wallet, args.device)
        return await send_sol(registry, args.to, args.lamports, args.device)
    finally:
        await registry.connection.close()


def main() -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="walletcore — Solana wallet")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init", help="Create or restore the encrypted seed")
    p_init.add_argument("--mnemonic", help="Restore from an existing BIP39 mnemonic")

    p_addr = sub.add_parser("addresses", help="List derived wallet addresses")
    p_addr.add_argument("--count", type=int, default=5)

    p_bal = sub.add_parser("balances", help="Show SOL and token balances")
    p_bal.add_argument("--wallet", type=int, help="Wallet index to select first")
    p_bal.add_argument("--device", action="store_true", help="Use the hardware device")

    p_send = sub.add_parser("send-sol", help="Transfer SOL")
    p_send.add_argument("--to", required=True, help="Destination address")
    p_send.add_argument("--lamports", required=True, type=int)
    p_send.add_argument("--device", action="store_true", help="Sign on the hardware device")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    config = load_wallet_config()
    try:
        if args.command == "init":
            result = init_wallet(config, args.mnemonic)
        else:
            result = asyncio.run(_run(args, config))
    except WalletError as e:
        result = {"status": "FAILED", "error": f"{type(e).__name__}: {e}"}
    except Exception as e:
        log.debug("Unhandled error", exc_info=True)
        result = {"status": "FAILED", "error": str(e)}

    print(json.dumps(result, indent=2))
    sys.exit(0 if result["status"] == "OK" else 1)


if __name__ == "__main__":
    main()
