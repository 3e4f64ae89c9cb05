"""Vault configuration and per-input effective settings."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from srcvault.models.spec import RepositorySpec, is_numeric

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600

GIT_INPUT_SECTION = "git-input"
GIT_TREE_SECTION = "git-tree"

_TRUTHY = {"1", "true", "yes", "on"}


class EffectiveConfig(BaseModel):
    """Settings for one input after all configuration layers are merged."""

    timeout: int = Field(default=DEFAULT_TIMEOUT, description="Timeout for remote VCS operations")
    cache_period: int | None = Field(
        default=None, description="Seconds to reuse fetched information (None disables)"
    )
    extra: dict[str, Any] = Field(default_factory=dict)

    @property
    def caching_enabled(self) -> bool:
        return self.cache_period is not None


class VaultConfig(BaseModel):
    """Top-level configuration passed explicitly to every component."""

    scm_cache_dir: Path = Field(default=Path("./data/scm"), description="Mirror directory")
    store_dir: Path = Field(default=Path("./data/store"), description="Content store root")
    database: Path = Field(default=Path("./data/srcvault.db"), description="Durable cache")
    debug: bool = Field(default=False, description="Verbose diagnostic logging")
    force_send_mail: bool = Field(
        default=False, description="Consumed by the notification component"
    )
    lock_backend: str = Field(default="file", description="'file' or 'local'")
    lock_timeout: float | None = Field(
        default=None, description="Seconds to wait for a mirror lock (None waits forever)"
    )

    model_config = {"extra": "allow"}

    def section(self, name: str) -> dict[str, Any] | None:
        """Get a plugin section such as ``git-input``."""
        extra = self.model_extra or {}
        value = extra.get(name)
        return value if isinstance(value, dict) else None

    @property
    def lock_dir(self) -> Path:
        return self.scm_cache_dir / "locks"

    @classmethod
    def from_yaml(cls, path: Path) -> "VaultConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    @classmethod
    def load(cls, path: Path | None = None) -> "VaultConfig":
        """Load configuration and apply the environment toggles once."""
        config = cls.from_yaml(path) if path is not None else cls()
        updates: dict[str, bool] = {}
        if os.environ.get("SRCVAULT_DEBUG", "").lower() in _TRUTHY:
            updates["debug"] = True
        if os.environ.get("SRCVAULT_FORCE_SEND_MAIL", "").lower() in _TRUTHY:
            updates["force_send_mail"] = True
        return config.model_copy(update=updates) if updates else config


def _coerce(value: Any) -> Any:
    if isinstance(value, str) and is_numeric(value):
        return int(value)
    return value


def resolve_config(
    section: dict[str, Any] | None,
    project: str,
    jobset: str,
    input_name: str,
    spec: RepositorySpec | None = None,
    section_name: str = "",
) -> EffectiveConfig:
    """Merge defaults, section, input block and spec options.

    Precedence, lowest first: built-in defaults, section-level keys, the
    ``project:jobset:input`` block within the section, the spec's positional
    timeout, the spec's ``key=value`` options.
    """
    input_block = f"{project}:{jobset}:{input_name}"
    merged: dict[str, Any] = {}

    if section is None:
        logger.debug(f"No {section_name or 'plugin'} section, using default values")
    else:
        merged.update({k: v for k, v in section.items() if not isinstance(v, dict)})
        block = section.get(input_block)
        if isinstance(block, dict) and block:
            logger.debug(f"Merging settings from {input_block}")
            merged.update(block)

    if spec is not None:
        if spec.timeout is not None:
            merged["timeout"] = spec.timeout
        for name, value in spec.options.items():
            value = _coerce(value)
            logger.debug(f"'{input_name}': override '{name}' with input value: {value}")
            merged[name] = value

    timeout = int(merged.pop("timeout", DEFAULT_TIMEOUT))
    cache_period = merged.pop("cache_period", None)
    if cache_period is not None:
        cache_period = int(cache_period)
        logger.debug(f"Caching fetched information for {input_block} for {cache_period} seconds")
    else:
        logger.debug(f"Caching disabled for {input_block}")

    return EffectiveConfig(
        timeout=timeout,
        cache_period=cache_period,
        extra={k: _coerce(v) for k, v in merged.items()},
    )
