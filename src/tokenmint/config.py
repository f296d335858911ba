"""
Configuration management using pydantic-settings.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tokenmint.backends import MempoolBackend, TrackerIndexer
from tokenmint.constants import (
    DUST_THRESHOLD,
    GUARD_POSTAGE,
    MAX_TOKEN_INPUTS,
    MERGE_FAN_IN_THRESHOLD,
    MIN_MINTER_SUPPLY,
    MINTER_POSTAGE,
    RETRY_BACKOFF_SEC,
    TOKEN_POSTAGE,
)
from tokenmint.retry import RetryPolicy
from tokenmint.spend import MemorySpendTracker
from tokenmint.tx_builder import BuildPolicy


class TokenMintSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TOKENMINT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_url: str = "https://mempool.space/api"
    tracker_url: str = "http://127.0.0.1:3000"
    http_timeout: float = Field(default=30.0, gt=0)

    minter_postage: int = Field(default=MINTER_POSTAGE, ge=0)
    token_postage: int = Field(default=TOKEN_POSTAGE, ge=0)
    guard_postage: int = Field(default=GUARD_POSTAGE, ge=0)
    dust_threshold: int = Field(default=DUST_THRESHOLD, ge=0)

    # Selections larger than this are merged before sending
    merge_fan_in: int = Field(default=MERGE_FAN_IN_THRESHOLD, ge=1)
    max_token_inputs: int = Field(default=MAX_TOKEN_INPUTS, ge=2)
    successor_minters: int = Field(default=1, ge=1)

    retry_backoff_sec: float = Field(default=RETRY_BACKOFF_SEC, ge=0)
    max_attempts: int = Field(default=10, ge=1)

    # Minter shards are tried from this offset onwards
    shard_start_offset: int = Field(default=0, ge=0)
    min_minter_supply: int = Field(default=MIN_MINTER_SUPPLY, ge=0)

    fee_rate: float | None = Field(default=None, gt=0, description="sat/vB, overrides estimation")
    fee_conf_target: int = Field(default=1, ge=1)
    min_fee_rate: float = Field(default=1.0, gt=0)

    verify: bool = False
    log_level: str = "INFO"
    spends_file: Path | None = None

    @model_validator(mode="after")
    def check_fan_in(self) -> TokenMintSettings:
        if self.merge_fan_in > self.max_token_inputs:
            raise ValueError(
                f"merge_fan_in ({self.merge_fan_in}) cannot exceed "
                f"max_token_inputs ({self.max_token_inputs})"
            )
        return self

    def build_policy(self) -> BuildPolicy:
        return BuildPolicy(
            dust_threshold=self.dust_threshold,
            minter_postage=self.minter_postage,
            token_postage=self.token_postage,
            guard_postage=self.guard_postage,
            verify=self.verify,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_attempts, backoff_sec=self.retry_backoff_sec)

    def chain_backend(self) -> MempoolBackend:
        return MempoolBackend(self.api_url, timeout=self.http_timeout)

    def token_indexer(self) -> TrackerIndexer:
        return TrackerIndexer(self.tracker_url, timeout=self.http_timeout)

    def spend_tracker(self) -> MemorySpendTracker:
        return MemorySpendTracker(self.spends_file)


def get_settings() -> TokenMintSettings:
    return TokenMintSettings()
