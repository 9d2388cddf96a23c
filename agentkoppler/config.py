"""Configuration models and loaders for agentkoppler.

Values are read from an optional YAML file and then overridden by environment
variables, so the gateway can run from env vars alone.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_CONFIG_PATH = "agentkoppler/config.yaml"
DEFAULT_CLAUDE_MODELS = ["haiku", "sonnet", "opus"]

_TRUE_VALUES = {"1", "true", "yes", "on"}


class LoggingConfig(BaseModel):
    """Logging-related configuration."""

    model_config = ConfigDict(populate_by_name=True)

    level: str = "INFO"
    json_logs: bool = Field(default=False, alias="json")


class GatewayConfig(BaseModel):
    """Top-level gateway configuration."""

    model_config = ConfigDict(extra="forbid")

    service_base_url: str = "http://127.0.0.1:8080"
    service_api_key: str | None = None

    claude_bin: str = "claude"
    claude_models: list[str] = Field(default_factory=lambda: list(DEFAULT_CLAUDE_MODELS))

    codex_bin: str = "codex"
    codex_models: list[str] = Field(default_factory=list)
    codex_models_cache_seconds: int | None = None
    codex_turn_timeout_seconds: float | None = None
    rpc_queue_size: int | None = None

    stream_keepalive_seconds: float | None = None
    bypass_approvals: bool = False
    require_subscription_auth: bool = True
    logging: LoggingConfig | None = None

    @model_validator(mode="after")
    def _validate_and_fill_defaults(self) -> "GatewayConfig":
        """Validate service_base_url and fill unset tunables."""
        parsed = urlparse(self.service_base_url)
        if not parsed.hostname or parsed.port is None:
            raise ValueError("service_base_url must include host and port, e.g. http://127.0.0.1:8080")
        if self.codex_models_cache_seconds is None:
            self.codex_models_cache_seconds = 300
        if self.codex_turn_timeout_seconds is None:
            self.codex_turn_timeout_seconds = 900.0
        if self.rpc_queue_size is None:
            self.rpc_queue_size = 256
        if self.stream_keepalive_seconds is None:
            self.stream_keepalive_seconds = 10.0
        if self.logging is None:
            self.logging = LoggingConfig()
        if not self.claude_models:
            self.claude_models = list(DEFAULT_CLAUDE_MODELS)
        return self

    @field_validator("claude_models", "codex_models", mode="before")
    @classmethod
    def _split_model_lists(cls, value: Any) -> Any:
        """Accept `null` and comma separated strings for model lists."""
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, list):
            return [str(part).strip() for part in value if str(part).strip()]
        return value

    @field_validator("rpc_queue_size")
    @classmethod
    def _validate_queue_size(cls, value: int | None) -> int | None:
        """Bounded queues need a positive capacity."""
        if value is not None and value < 1:
            raise ValueError("rpc_queue_size must be >= 1")
        return value


def _load_yaml(path: str | None) -> dict[str, Any]:
    """Load a YAML file into a dictionary.

    Missing files are treated as empty config for environment-only deployments.
    """
    if not path:
        return {}
    cfg_path = Path(path)
    if not cfg_path.exists():
        return {}
    with cfg_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be object: {path}")
    return data


_ENV_MAP: dict[str, tuple[str, ...]] = {
    "service_base_url": ("AGENTKOPPLER_SERVICE_BASE_URL",),
    "service_api_key": ("AGENTKOPPLER_SERVICE_API_KEY",),
    "claude_bin": ("AGENTKOPPLER_CLAUDE_BIN", "CLAUDE_BIN"),
    "claude_models": ("AGENTKOPPLER_CLAUDE_MODELS", "CLAUDE_MODELS"),
    "codex_bin": ("AGENTKOPPLER_CODEX_BIN", "CODEX_BIN"),
    "codex_models": ("AGENTKOPPLER_CODEX_MODELS",),
    "codex_models_cache_seconds": ("AGENTKOPPLER_CODEX_MODELS_CACHE_SECONDS",),
    "codex_turn_timeout_seconds": ("AGENTKOPPLER_CODEX_TURN_TIMEOUT_SECONDS",),
    "rpc_queue_size": ("AGENTKOPPLER_RPC_QUEUE_SIZE",),
    "stream_keepalive_seconds": ("AGENTKOPPLER_STREAM_KEEPALIVE_SECONDS",),
    "bypass_approvals": ("AGENTKOPPLER_BYPASS_APPROVALS",),
    "require_subscription_auth": ("AGENTKOPPLER_REQUIRE_SUBSCRIPTION_AUTH",),
    "logging.level": ("AGENTKOPPLER_LOG_LEVEL",),
    "logging.json_logs": ("AGENTKOPPLER_LOG_JSON",),
}


def _first_env(names: tuple[str, ...]) -> str | None:
    """Return the first non-blank environment value among `names`."""
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value
    return None


def _override_from_env(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides on top of file configuration."""
    out = dict(data)
    logging_section = dict(out.get("logging") or {})

    for key, env_names in _ENV_MAP.items():
        value = _first_env(env_names)
        if value is None:
            continue

        if key in {"codex_models_cache_seconds", "rpc_queue_size"}:
            out[key] = int(value)
        elif key in {"codex_turn_timeout_seconds", "stream_keepalive_seconds"}:
            out[key] = float(value)
        elif key in {"bypass_approvals", "require_subscription_auth"}:
            out[key] = value.strip().lower() in _TRUE_VALUES
        elif key == "logging.json_logs":
            logging_section["json"] = value.strip().lower() in _TRUE_VALUES
        elif key == "logging.level":
            logging_section["level"] = value
        else:
            out[key] = value

    if logging_section:
        out["logging"] = logging_section
    return out


def config_file_path(path: str | None = None) -> Path:
    """Resolve the config file path from argument, environment or default."""
    return Path(path or os.getenv("AGENTKOPPLER_CONFIG") or DEFAULT_CONFIG_PATH)


def load_config(path: str | None = None) -> GatewayConfig:
    """Load, merge, and validate gateway configuration."""
    raw = _load_yaml(str(config_file_path(path)))
    raw = _override_from_env(raw)
    return GatewayConfig.model_validate(raw)
