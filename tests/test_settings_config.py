"""Tests for persisted settings, config loading, and the CLI helpers."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from walletcore.config import DEFAULT_RPC_URL, load_wallet_config, resolve_path, rpc_endpoints, WORKSPACE
from walletcore.settings import Settings, SettingsStore
from walletcore.signer.derivation import derive
from walletcore.signer.vault import SeedStore
from walletcore.skills import wallet_cli

ABANDON_MNEMONIC = "abandon " * 11 + "about"


class TestSettings:

    def test_defaults_when_missing(self, tmp_path):
        settings = SettingsStore(tmp_path / "settings.json").load()
        assert settings == Settings(wallet_index=0, wallet_count=1)

    def test_update_persists(self, tmp_path):
        path = tmp_path / "settings.json"
        SettingsStore(path).update(wallet_index=2, wallet_count=3)
        assert SettingsStore(path).load() == Settings(wallet_index=2, wallet_count=3)

    def test_update_validates(self, tmp_path):
        store = SettingsStore(tmp_path / "settings.json")
        with pytest.raises(ValidationError):
            store.update(wallet_count=0)
        assert store.load() == Settings()


class TestConfig:

    def test_missing_file(self, tmp_path):
        assert load_wallet_config(tmp_path / "nope.yaml") == {}

    def test_shipped_config(self):
        config = load_wallet_config()
        assert config["seed_store"]["iterations"] == 100_000
        assert config["rpc"]["endpoints"][0]["url"] == DEFAULT_RPC_URL

    def test_env_endpoint_goes_first(self, monkeypatch):
        monkeypatch.setenv("SOLANA_RPC_URL", "https://private.test")
        endpoints = rpc_endpoints({"rpc": {"endpoints": [{"provider": "a", "url": "https://a.test"}]}})
        assert [e["url"] for e in endpoints] == ["https://private.test", "https://a.test"]

    def test_default_endpoint(self, monkeypatch):
        monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
        assert rpc_endpoints({}) == [{"provider": "public", "url": DEFAULT_RPC_URL}]

    def test_resolve_path(self, tmp_path):
        assert resolve_path(None, "state/seed.json") == WORKSPACE / "state/seed.json"
        assert resolve_path(str(tmp_path / "x.json"), "unused") == tmp_path / "x.json"


class TestCli:

    @pytest.fixture
    def config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WALLET_PASSWORD", "pw")
        monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
        return {
            "seed_store": {"path": str(tmp_path / "seed.json"), "iterations": 1_000},
            "settings": {"path": str(tmp_path / "settings.json")},
        }

    def test_init_restores_mnemonic(self, config):
        from mnemonic import Mnemonic

        result = wallet_cli.init_wallet(config, ABANDON_MNEMONIC)

        expected = derive(Mnemonic.to_seed(ABANDON_MNEMONIC), 0).pubkey()
        assert result["status"] == "OK"
        assert result["address"] == str(expected)
        assert "mnemonic" not in result
        _, seed = SeedStore(config["seed_store"]["path"]).load("pw")
        assert seed == Mnemonic.to_seed(ABANDON_MNEMONIC)

    def test_init_generates_mnemonic(self, config):
        result = wallet_cli.init_wallet(config, None)
        assert result["status"] == "OK"
        assert len(result["mnemonic"].split()) == 24

    def test_init_refuses_overwrite(self, config):
        wallet_cli.init_wallet(config, ABANDON_MNEMONIC)
        result = wallet_cli.init_wallet(config, None)
        assert result["status"] == "FAILED"
        assert "already exists" in result["error"]

    def test_init_invalid_mnemonic(self, config):
        result = wallet_cli.init_wallet(config, "abandon " * 12)
        assert result == {"status": "FAILED", "error": "Invalid mnemonic"}

    @pytest.mark.asyncio
    async def test_list_addresses_relocks(self, config):
        from mnemonic import Mnemonic

        wallet_cli.init_wallet(config, ABANDON_MNEMONIC)
        registry = wallet_cli.build_registry(config)

        result = await wallet_cli.list_addresses(registry, 2)

        seed = Mnemonic.to_seed(ABANDON_MNEMONIC)
        assert result["addresses"] == [str(derive(seed, i).pubkey()) for i in range(2)]
        assert not registry.vault.is_unlocked
        await registry.connection.close()
