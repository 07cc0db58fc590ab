"""
Configuration loader for omni-ignition.

- Reads environment variables (optionally from `.env`) via pydantic-settings.
- Exposes a cached `get_settings()` accessor and `Settings.with_overrides()`
  for CLI flags.

Environment variables (prefix IGNITION_):
    IGNITION_NETWORK              (str, default "memory")   - "memory" or a named JSON-RPC network
    IGNITION_RPC_URL              (str)                      - Node JSON-RPC endpoint (http/https)
    IGNITION_CHAIN_ID             (int or 0x-hex, default 31337)
    IGNITION_ARTIFACTS_DIR        (path, default "./artifacts")
    IGNITION_DEPLOYMENTS_DIR      (path, default "./ignition/deployments")
    IGNITION_JOURNAL_BACKEND      ("json" | "sqlite", default "json")
    IGNITION_CONFIRM_TIMEOUT_S    (float, default 120)       - bounded receipt wait per node
    IGNITION_POLL_INTERVAL_S      (float, default 1.0)
    IGNITION_MAX_CONCURRENCY      (int, default 4)           - in-flight nodes per batch
    IGNITION_REQUEST_TIMEOUT_S    (float, default 10)
    IGNITION_MAX_RETRIES          (int, default 3)
    IGNITION_BACKOFF_BASE_S       (float, default 0.25)
    IGNITION_LOG_LEVEL            (str, default "INFO")
    IGNITION_LOG_FORMAT           ("console" | "json", default "console")
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MEMORY_NETWORK = "memory"

_HEX_RE = re.compile(r"^0x[0-9a-fA-F]+$")


def _parse_chain_id(val: Any, default: int = 31337) -> int:
    """
    Accepts int, decimal str, or 0x-hex str and returns int.
    """
    if val is None or val == "":
        return int(default)
    if isinstance(val, int):
        return val
    s = str(val).strip()
    if _HEX_RE.match(s):
        return int(s, 16)
    return int(s, 10)


class Settings(BaseSettings):
    # Network
    network: str = Field(MEMORY_NETWORK, description="'memory' or the name of a JSON-RPC network")
    rpc_url: str = Field("http://127.0.0.1:8545", description="Node JSON-RPC endpoint")
    chain_id: int = Field(31337, description="Chain id of the target network")

    # Paths
    artifacts_dir: Path = Field(Path("./artifacts"), description="Compiled artifact root")
    deployments_dir: Path = Field(
        Path("./ignition/deployments"), description="Per-deployment journal directories"
    )
    journal_backend: Literal["json", "sqlite"] = "json"

    # Engine behavior
    confirm_timeout_s: float = Field(120.0, gt=0)
    poll_interval_s: float = Field(1.0, gt=0)
    max_concurrency: int = Field(4, ge=1)

    # RPC transport
    request_timeout_s: float = Field(10.0, gt=0)
    max_retries: int = Field(3, ge=0)
    backoff_base_s: float = Field(0.25, ge=0)

    # Logging
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_format: Literal["console", "json"] = "console"

    model_config = SettingsConfigDict(
        env_prefix="IGNITION_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    @field_validator("chain_id", mode="before")
    @classmethod
    def _coerce_chain_id(cls, v):
        return _parse_chain_id(v)

    @field_validator("rpc_url")
    @classmethod
    def _check_scheme(cls, v: str) -> str:
        lower = v.lower()
        if not (lower.startswith("http://") or lower.startswith("https://")):
            raise ValueError(f"rpc_url must start with http:// or https://, got: {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def is_memory_network(self) -> bool:
        return self.network.lower() == MEMORY_NETWORK

    def default_deployment_id(self) -> str:
        return f"chain-{self.chain_id}"

    def deployment_dir(self, deployment_id: Optional[str] = None) -> Path:
        return self.deployments_dir / (deployment_id or self.default_deployment_id())

    def with_overrides(self, **overrides: Any) -> "Settings":
        """
        Copy with keyword overrides applied and validated.
        Unknown keys and None values are ignored.
        """
        data = self.model_dump()
        data.update(
            {k: v for k, v in overrides.items() if k in data and v is not None}
        )
        return type(self).model_validate(data)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # pydantic-settings will read .env automatically


__all__ = ["Settings", "get_settings", "MEMORY_NETWORK"]
