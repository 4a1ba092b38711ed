"""Configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError


class CoinDCXConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    api_key: str = ""
    api_secret: str = ""
    base_url: str = "https://api.coindcx.com"
    public_url: str = "https://public.coindcx.com"
    timeout_sec: float = Field(default=10.0, gt=0)


class TradingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    symbol: str = Field(default="BTCUSDT", min_length=1)
    default_timeframe: str = Field(default="1h", pattern=r"^\d+[mhdwM]$")
    candle_limit: int = Field(default=100, ge=1, le=1000)


class SignalsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    history_capacity: int = Field(default=20, ge=2)
    min_history: int = Field(default=10, ge=2)
    rsi_period: int = Field(default=14, ge=1)
    volatility_threshold: float = Field(default=0.05, ge=0)
    partition_by_symbol: bool = True


class FeedConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    interval_sec: float = Field(default=5.0, gt=0)


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: str = Field(default="paper", pattern=r"^(paper|live)$")
    coindcx: CoinDCXConfig = Field(default_factory=CoinDCXConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    signals: SignalsConfig = Field(default_factory=SignalsConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log_dir: str = "logs"


def _apply_env(raw_data: dict) -> dict:
    """Overlay credentials and mock toggle from environment (.env supported)."""
    load_dotenv()
    api_key = os.getenv("COINDCX_API_KEY")
    api_secret = os.getenv("COINDCX_SECRET")
    if api_key or api_secret:
        creds = dict(raw_data.get("coindcx") or {})
        if api_key:
            creds["api_key"] = api_key
        if api_secret:
            creds["api_secret"] = api_secret
        raw_data["coindcx"] = creds
    if os.getenv("USE_MOCK_DATA", "").lower() == "true":
        raw_data["mode"] = "paper"
    return raw_data


def load_config(path: str | Path = "config.yml") -> AppConfig:
    """Load configuration from YAML file and validate schema."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file '{config_path}' not found. Copy config.yml.example to config.yml first."
        )

    with config_path.open("r", encoding="utf-8") as fh:
        raw_data = yaml.safe_load(fh) or {}

    if not isinstance(raw_data, dict):
        raise ValueError(f"Invalid config '{config_path}': top level must be a mapping")

    try:
        return AppConfig.model_validate(_apply_env(raw_data))
    except ValidationError as exc:
        raise ValueError(f"Invalid config '{config_path}': {exc}") from exc
