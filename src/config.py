"""Unified configuration loaded from .villacms.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".villacms.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
]
GLOBAL_CONFIG = Path.home() / ".config" / "villacms" / "config.toml"


class StorageConfig(BaseModel):
    """[storage] section — where the live and draft slots are kept."""

    directory: str = "./.villacms"
    max_document_bytes: int = 5_000_000


class SnapshotConfig(BaseModel):
    """[snapshot] section — the last published export."""

    url: str = ""
    path: str = ""
    timeout: float = 10


class LegacyConfig(BaseModel):
    """[legacy] section — content saved by the retired storage scheme."""

    directory: str = ""


class AssistantConfig(BaseModel):
    """[assistant] section."""

    model: str = "gemini-2.5-flash"
    api_key: str = ""


class LoggingConfig(BaseModel):
    """[logging] section."""

    level: str = "WARNING"


class SiteConfig(BaseModel):
    """Top-level configuration for the content store and its tools."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    legacy: LegacyConfig = Field(default_factory=LegacyConfig)
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path | None = None) -> SiteConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .villacms.toml in CWD
    3. ~/.config/villacms/config.toml

    Then overlay environment variables.
    """
    data: dict[str, object] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break
        if not data and GLOBAL_CONFIG.exists():
            data = _load_toml(GLOBAL_CONFIG)
            logger.info("Loaded config from %s", GLOBAL_CONFIG)

    config = SiteConfig.model_validate(data) if data else SiteConfig()
    return _apply_env_vars(config)


def merge_cli_overrides(config: SiteConfig, **cli_kwargs: object) -> SiteConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "storage_dir": ("storage", "directory"),
        "max_bytes": ("storage", "max_document_bytes"),
        "snapshot_url": ("snapshot", "url"),
        "snapshot_path": ("snapshot", "path"),
        "legacy_dir": ("legacy", "directory"),
        "log_level": ("logging", "level"),
    }

    for key, value in cli_kwargs.items():
        if value is None or key not in mapping:
            continue
        section, field = mapping[key]
        data[section][field] = value

    return SiteConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: SiteConfig) -> SiteConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "VILLACMS_STORAGE_DIR": ("storage", "directory"),
        "VILLACMS_SNAPSHOT_URL": ("snapshot", "url"),
        "VILLACMS_SNAPSHOT_PATH": ("snapshot", "path"),
        "VILLACMS_LEGACY_DIR": ("legacy", "directory"),
        "VILLACMS_LOG_LEVEL": ("logging", "level"),
        "VILLACMS_ASSISTANT_MODEL": ("assistant", "model"),
        "GOOGLE_AI_API_KEY": ("assistant", "api_key"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value

    max_raw = os.environ.get("VILLACMS_MAX_DOCUMENT_BYTES")
    if max_raw is not None:
        try:
            data["storage"]["max_document_bytes"] = int(max_raw)
        except ValueError:
            logger.warning("Ignoring non-integer VILLACMS_MAX_DOCUMENT_BYTES=%r", max_raw)

    return SiteConfig.model_validate(data)
