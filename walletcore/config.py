"""Configuration loader for walletcore.

Loads config/wallet.yaml. Missing file or keys fall back to defaults.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

WORKSPACE = Path(__file__).resolve().parent.parent
CONFIG_DIR = WORKSPACE / "config"

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"


def load_wallet_config(path: Path | None = None) -> dict[str, Any]:
    """Load config/wallet.yaml."""
    path = path or CONFIG_DIR / "wallet.yaml"
    if not path.exists():
        return {}
    return yaml.safe_load(path.read_text()) or {}


def rpc_endpoints(config: dict[str, Any]) -> list[dict[str, Any]]:
    """RPC fallback chain. SOLANA_RPC_URL env var goes first when set."""
    endpoints = list(config.get("rpc", {}).get("endpoints") or [])
    override = os.environ.get("SOLANA_RPC_URL", "")
    if override:
        endpoints.insert(0, {"provider": "env", "url": override})
    if not endpoints:
        endpoints = [{"provider": "public", "url": DEFAULT_RPC_URL}]
    return endpoints


def resolve_path(value: str | None, default: str) -> Path:
    """Relative paths in the config are relative to the workspace root."""
    path = Path(os.path.expanduser(value or default))
    return path if path.is_absolute() else WORKSPACE / path
