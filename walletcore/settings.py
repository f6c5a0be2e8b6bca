"""Persistent wallet settings.

Reads and writes state/settings.json: which wallet index is selected and
how many indices the user has opened. No secrets live here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from walletcore.utils.file_lock import safe_read_json, safe_update_json


class Settings(BaseModel):
    """Wallet selection — serialized to state/settings.json."""

    wallet_index: int = Field(default=0, ge=0)
    wallet_count: int = Field(default=1, ge=1)


class SettingsStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Settings:
        """Load settings. Returns defaults if the file doesn't exist."""
        data = safe_read_json(self.path)
        return Settings(**data) if data else Settings()

    def update(self, **changes: Any) -> Settings:
        """Apply `changes` atomically and return the saved settings."""

        def _apply(current: dict[str, Any]) -> dict[str, Any]:
            merged = Settings(**current).model_copy(update=changes)
            # Re-validate the merged values
            return Settings(**merged.model_dump()).model_dump()

        return Settings(**safe_update_json(self.path, _apply))
