"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``CLTV_``, nested via ``__``)
2. YAML config file (``config_path`` / ``CLTV_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class Network(enum.StrEnum):
    """Supported networks."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def hrp(self) -> str:
        """Bech32 human-readable part for addresses on this network."""
        if self is Network.MAINNET:
            return "bc"
        if self is Network.REGTEST:
            return "bcrt"
        return "tb"

    @property
    def is_test(self) -> bool:
        return self is not Network.MAINNET


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class EsploraConfig(BaseSettings):
    """Esplora-compatible ledger API settings (lookup / broadcast)."""

    model_config = SettingsConfigDict(
        env_prefix="CLTV_ESPLORA__",
        case_sensitive=False,
    )

    url: str = "https://mempool.space/signet/api"
    timeout: float = 30.0


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``CLTV_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLTV_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    log_level: str = "INFO"
    config_path: str = ""

    network: Network = Field(default=Network.SIGNET, description="Target network")
    tx_version: int = Field(default=2, ge=1, le=2)
    default_sequence: int = Field(
        default=0xFFFFFFFE,
        ge=0,
        le=0xFFFFFFFF,
        description="Sequence for new inputs; must be non-final for CLTV spends",
    )
    locktime_safety_margin_seconds: int = Field(default=0, ge=0)
    sighash_flag: int = 0x01

    esplora: EsploraConfig = Field(default_factory=EsploraConfig)

    @property
    def effective_log_level(self) -> str:
        """Log level to configure; ``debug`` forces ``DEBUG``."""
        return "DEBUG" if self.debug else self.log_level

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            msg = f"invalid log level: {value}"
            raise ValueError(msg)
        return level

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                # Merge nested dicts: YAML fills in missing keys
                merged = {**val, **values[key]}
                values[key] = merged
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
