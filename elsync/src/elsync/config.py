"""
Configuration management using pydantic-settings.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ELSYNC_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: Literal["mainnet", "testnet", "signet", "regtest"] = "mainnet"
    # defaults to the public instance of the network when unset
    esplora_url: str | None = None

    stop_gap: int = Field(default=20, ge=1)
    verify_unspent: bool = False

    data_dir: Path = Path.home() / ".elsync"
    wallet_name: str = "default"

    request_timeout: float = Field(default=30.0, gt=0)
    max_concurrent_requests: int = Field(default=8, ge=1)

    log_level: str = "INFO"

    @property
    def wallet_path(self) -> Path:
        return self.data_dir / f"{self.wallet_name}.json"


def get_settings() -> Settings:
    return Settings()
