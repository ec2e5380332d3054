from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_env_once() -> None:
    """
    Loads .env from:
      1) ENV_PATH if provided
      2) backend/api/.env (project default)
      3) current working directory .env (fallback)
    Variables already in the environment win.
    """
    env_path = os.getenv("ENV_PATH")
    if env_path and Path(env_path).exists():
        load_dotenv(Path(env_path), override=False)
        return

    api_env = Path(__file__).resolve().parents[1] / ".env"  # .../backend/api/.env
    if api_env.exists():
        load_dotenv(api_env, override=False)
        return

    cwd_env = Path.cwd() / ".env"
    if cwd_env.exists():
        load_dotenv(cwd_env, override=False)


class Settings(BaseSettings):
    """Runtime settings, read from the process environment (after load_env_once)."""

    # Persistence
    database_url: Optional[str] = Field(None, validate_default=True)

    # Review policy
    review_window_days: int = Field(7, ge=1)
    min_votes: int = Field(3, ge=1)
    approve_ratio: float = Field(0.6, ge=0.0, le=1.0)
    flag_threshold: int = Field(3, ge=1)
    sweep_interval_seconds: int = Field(300, ge=1)

    # Uploaded files live here; file references anywhere else are refused.
    file_storage_base_url: str = ""

    # Content store (Pinata)
    pinata_jwt: str = ""
    pinata_api_url: str = "https://api.pinata.cloud"
    pinata_gateway: str = ""
    content_store_timeout_seconds: float = Field(30.0, gt=0)

    # Ledger (Substrate)
    chain_rpc_url: str = ""
    anchor_seed: str = ""
    chain_network: str = "paseo"
    chain_explorer_url: str = "https://paseo.subscan.io/extrinsic/"
    anchor_remark_prefix: str = "CURATE"
    anchor_inclusion_timeout_seconds: float = Field(120.0, gt=0)
    anchor_mortality_blocks: int = Field(64, ge=4)

    system_wallet: str = "SYSTEM"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def _fallback_db_url(cls, v):
        # DB_URL is accepted for older deployments.
        if v:
            return v
        return os.getenv("DB_URL") or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_env_once()
    return Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
