"""Configuration loading utilities for the memory agent worker."""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ai_mem_agent.providers.llm.base import ConfigurationError, ProviderConfig, WIRE_FORMATS

from .constants import (
    DEFAULT_LEASE_SECONDS,
    DEFAULT_MAX_CONTEXT_MESSAGES,
    DEFAULT_MAX_ESTIMATED_TOKENS,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_MODEL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TEMPERATURE,
)


CONFIG_FILENAMES: tuple[str, ...] = (".ai-mem.toml", "ai-mem.toml")
DEFAULT_CONFIG_PATHS = (
    Path.home() / ".config" / "ai-mem" / "config.toml",
    Path.home() / ".ai-mem.toml",
)
ENV_PREFIX = "AI_MEM_"


def find_config_in_parents(
    start_path: Path, config_name: str | Sequence[str] = ".ai-mem.toml"
) -> Optional[Path]:
    """Search parent directories starting from ``start_path`` for configuration files."""

    if isinstance(config_name, str):
        candidate_names: tuple[str, ...] = (config_name,)
    else:
        candidate_names = tuple(config_name)

    current = start_path.resolve()
    if current.is_file():
        current = current.parent

    while True:
        for name in candidate_names:
            candidate = current / name
            if candidate.is_file():
                return candidate.resolve()
        if current.parent == current:
            break
        current = current.parent
    return None


@dataclass
class Settings:
    """Runtime configuration for the worker."""

    # Primary provider
    provider_name: str = "custom"
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    api_format: str = "auto"
    # Fallback provider (optional)
    fallback_provider_name: str = "fallback"
    fallback_api_url: Optional[str] = None
    fallback_api_key: Optional[str] = None
    fallback_model: Optional[str] = None
    fallback_api_format: str = "auto"
    max_failovers: int = 1
    # Remote deployments cannot reach the fallback provider.
    remote_mode: bool = False
    # Request shaping
    max_context_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES
    max_estimated_tokens: int = DEFAULT_MAX_ESTIMATED_TOKENS
    pin_first_turn: bool = False
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_retries: int = 1
    # Storage and scheduling
    database_path: Path = Path.home() / ".ai-mem" / "ai-mem.db"
    lease_seconds: int = DEFAULT_LEASE_SECONDS
    max_workers: int = DEFAULT_MAX_WORKERS
    log_level: str = "INFO"
    structured_logging: bool = False

    def ensure_database_dir(self) -> None:
        """Ensure the directory for the database file exists."""
        if not self.database_path.parent.exists():
            self.database_path.parent.mkdir(parents=True, exist_ok=True)


_BOOL_FIELDS = {"remote_mode", "pin_first_turn", "structured_logging"}
_INT_FIELDS = {
    "max_failovers",
    "max_context_messages",
    "max_estimated_tokens",
    "max_output_tokens",
    "max_retries",
    "lease_seconds",
    "max_workers",
}
_FLOAT_FIELDS = {"temperature", "request_timeout"}
_PATH_FIELDS = {"database_path"}


def _cast_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in {"1", "true", "on", "yes", "y"}
    return bool(value)


def _coerce(field: str, value: Any) -> Any:
    if field in _BOOL_FIELDS:
        return _cast_bool(value)
    if field in _INT_FIELDS:
        return int(value)
    if field in _FLOAT_FIELDS:
        return float(value)
    if field in _PATH_FIELDS:
        return Path(value).expanduser()
    return value


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        return {}
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    return {k.replace("-", "_"): v for k, v in data.items()}


def _load_from_env(prefix: str = ENV_PREFIX) -> Dict[str, Any]:
    env: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        env[key[len(prefix) :].lower()] = value
    return env


def load_settings(explicit_path: Optional[Path] = None) -> Settings:
    """Load configuration: environment overrides the settings file, which overrides defaults."""

    file_data: Dict[str, Any] = {}
    if explicit_path:
        file_data.update(_load_from_file(explicit_path))
    else:
        search_paths = []
        cwd = Path.cwd()
        project_config = find_config_in_parents(cwd, CONFIG_FILENAMES)
        if project_config:
            search_paths.append(project_config)
        search_paths.extend(DEFAULT_CONFIG_PATHS)
        for candidate in search_paths:
            file_data = _load_from_file(candidate)
            if file_data:
                break

    merged: Dict[str, Any] = {**file_data, **_load_from_env()}

    known_fields = set(Settings.__dataclass_fields__)
    init_kwargs = {key: _coerce(key, value) for key, value in merged.items() if key in known_fields}
    return Settings(**init_kwargs)


def _provider_config(
    settings: Settings,
    *,
    name: str,
    endpoint: Optional[str],
    credential: Optional[str],
    model: str,
    wire_format: str,
    key_prefix: str = "",
) -> ProviderConfig:
    if not endpoint:
        raise ConfigurationError(
            f"API URL for provider '{name}' is not configured. Set {key_prefix}api_url in the "
            f"settings file or {ENV_PREFIX}{key_prefix.upper()}API_URL in the environment."
        )
    if not credential:
        raise ConfigurationError(
            f"API key for provider '{name}' is not configured. Set {key_prefix}api_key in the "
            f"settings file or {ENV_PREFIX}{key_prefix.upper()}API_KEY in the environment."
        )
    wire_format = (wire_format or "auto").lower()
    if wire_format not in WIRE_FORMATS:
        raise ConfigurationError(
            f"Unsupported API format '{wire_format}' for provider '{name}'; "
            f"expected one of {', '.join(WIRE_FORMATS)}"
        )
    return ProviderConfig(
        name=name,
        endpoint=endpoint,
        credential=credential,
        model=model,
        wire_format=wire_format,
        max_context_messages=settings.max_context_messages,
        max_estimated_tokens=settings.max_estimated_tokens,
        pin_first_turn=settings.pin_first_turn,
        temperature=settings.temperature,
        max_output_tokens=settings.max_output_tokens,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
    )


def resolve_provider_configs(settings: Settings) -> List[ProviderConfig]:
    """Resolve the ordered provider list (primary first) from settings.

    The fallback entry is only produced when its endpoint is configured. It
    needs its own credential and inherits the primary model unless overridden.
    """

    configs = [
        _provider_config(
            settings,
            name=settings.provider_name,
            endpoint=settings.api_url,
            credential=settings.api_key,
            model=settings.model,
            wire_format=settings.api_format,
        )
    ]
    if settings.fallback_api_url:
        configs.append(
            _provider_config(
                settings,
                name=settings.fallback_provider_name,
                endpoint=settings.fallback_api_url,
                credential=settings.fallback_api_key,
                model=settings.fallback_model or settings.model,
                wire_format=settings.fallback_api_format,
                key_prefix="fallback_",
            )
        )
    return configs


__all__ = [
    "Settings",
    "find_config_in_parents",
    "load_settings",
    "resolve_provider_configs",
]
