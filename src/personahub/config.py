"""Store configuration (``.personahub/config.yaml``)."""

from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .constants import PERSONAHUB_DIR
from .errors import ConfigError
from .utils import atomic_write_text


DEFAULT_INCLUDE = [
    "**/*.md",
    "**/*.yaml",
    "**/*.yml",
    "**/*.json",
    "**/*.txt",
]

DEFAULT_EXCLUDE = [
    f"{PERSONAHUB_DIR}/",
    "node_modules/",
    ".git/",
    "dist/",
    "build/",
    "*.log",
    ".DS_Store",
    "Thumbs.db",
    "package-lock.json",
    "yarn.lock",
]


class RetentionPolicy(BaseModel):
    """Age limits applied by ``personahub cleanup``."""

    auto_snapshot_days: int = Field(7, ge=0)
    manual_snapshot_days: int = Field(30, ge=0)
    min_snapshots: int = Field(5, ge=0)


class PersonaHubConfig(BaseModel):
    """Which files are tracked and how long snapshots are kept."""

    version: int = 1
    include: List[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE))
    exclude: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    include_hidden: bool = False
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)

    @field_validator("exclude")
    @classmethod
    def _always_exclude_store(cls, patterns: List[str]) -> List[str]:
        # The store must never snapshot itself
        if not any(PERSONAHUB_DIR in p for p in patterns):
            patterns = list(patterns) + [f"{PERSONAHUB_DIR}/"]
        return patterns


def load_config(config_path: Path) -> PersonaHubConfig:
    """Load and validate the configuration file.

    Raises:
        ConfigError: If the file is missing, not YAML, or fails validation
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config {config_path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {config_path} must be a mapping")

    try:
        return PersonaHubConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e


def save_config(config: PersonaHubConfig, config_path: Path) -> None:
    """Save configuration atomically."""
    config_text = yaml.safe_dump(config.model_dump(), default_flow_style=False, sort_keys=False)
    atomic_write_text(config_path, config_text)
