"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml: Static defaults checked into the repo
#   2. .env file         : Local developer overrides (not committed)
#   3. Environment vars  : Set at deploy time
#
# load_config() reads the YAML file, then deep-merges values that were
# explicitly set in the environment on top.  Settings fields left at
# their defaults do NOT override YAML, so config.yaml stays meaningful.
#
# The "queue" and "chunking" sections feed QueueConfig.from_config() and
# ChunkingConfig.from_config() in src/main.py.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from src.config.settings import Settings
from src.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

# YAML section/key for each Settings field that may be overridden.
_SETTINGS_TO_YAML: dict[str, tuple[str, str]] = {
    "queue_concurrency": ("queue", "concurrency"),
    "queue_poll_interval_ms": ("queue", "poll_interval_ms"),
    "queue_max_retries": ("queue", "max_retries"),
    "queue_retry_delay_ms": ("queue", "retry_delay_ms"),
    "queue_exponential_backoff": ("queue", "exponential_backoff"),
    "queue_retry_jitter": ("queue", "jitter_ratio"),
    "chunking_poll_interval_ms": ("chunking", "poll_interval_ms"),
    "chunking_max_chunk_tokens": ("chunking", "max_chunk_tokens"),
    "chunking_retry_delay_ms": ("chunking", "retry_delay_ms"),
    "max_pdf_size_mb": ("workers", "max_pdf_size_mb"),
    "fetch_timeout_seconds": ("workers", "fetch_timeout_seconds"),
    "job_retention_days": ("maintenance", "job_retention_days"),
    "db_path": ("storage", "db_path"),
    "pdf_storage_dir": ("storage", "pdf_storage_dir"),
    "chromadb_persist_dir": ("storage", "chromadb_persist_dir"),
    "chromadb_collection": ("storage", "chromadb_collection"),
    "log_level": ("logging", "level"),
    "app_env": ("app", "env"),
}


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  A missing file is not
              an error; a file that does not contain a mapping is.
        settings: Pre-built settings (tests); read from the environment
                  when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(
                message=f"{config_path} must contain a mapping at the top level",
                provider_name="yaml",
            )
    else:
        yaml_config = {}

    settings = settings or Settings()
    defaults = _default_config(settings)
    _deep_merge(defaults, yaml_config)
    _deep_merge(defaults, _explicit_overrides(settings))
    logger.debug("config_loaded", path=str(config_path), from_file=config_path.exists())
    return defaults


def _default_config(settings: Settings) -> dict[str, Any]:
    """Every mapped key, populated from *settings* (defaults included)."""
    config: dict[str, Any] = {}
    for field_name, (section, key) in _SETTINGS_TO_YAML.items():
        config.setdefault(section, {})[key] = getattr(settings, field_name)
    return config


def _explicit_overrides(settings: Settings) -> dict[str, Any]:
    """Only the values set explicitly through env vars or .env."""
    overrides: dict[str, Any] = {}
    for field_name in settings.model_fields_set:
        if field_name not in _SETTINGS_TO_YAML:
            continue
        section, key = _SETTINGS_TO_YAML[field_name]
        overrides.setdefault(section, {})[key] = getattr(settings, field_name)
    return overrides


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
