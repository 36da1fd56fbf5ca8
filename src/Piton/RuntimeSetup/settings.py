# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.settings",
#   "purpose": "Environment-driven configuration for the runtime bootstrapper",
#   "sections": [
#     {"id": "constants", "name": "File & Directory Conventions", "anchor": "CON", "kind": "constants"},
#     {"id": "models", "name": "Settings Models", "anchor": "MOD", "kind": "api"},
#     {"id": "cache", "name": "Settings Cache", "anchor": "CCH", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Configuration for the runtime bootstrapper.

Defaults follow the on-disk conventions of the bootstrapper: the descriptor
file and the runtime directory live next to the application binary.  Every
field can be overridden with a ``PITON_``-prefixed environment variable, e.g.
``PITON_CONNECT_TIMEOUT_SEC=3`` or ``PITON_RUNTIME_DIR_NAMES='["rt", "rt2"]'``.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "DESCRIPTOR_FILENAME",
    "IDENTITY_FILENAME",
    "RUNTIME_DIR_NAMES",
    "LOGGER_NAME",
    "UIDriver",
    "BootstrapSettings",
    "get_settings",
    "invalidate_settings_cache",
]

DESCRIPTOR_FILENAME = "piton-runtime.yaml"
IDENTITY_FILENAME = "piton-runtime-id.txt"
RUNTIME_DIR_NAMES = ("piton-runtime",)

LOGGER_NAME = "Piton.RuntimeSetup"


class UIDriver(str, Enum):
    """Presentation surface used while the setup pipeline runs."""

    NONE = "none"
    CLI = "cli"


class BootstrapSettings(BaseSettings):
    """Runtime bootstrapper settings sourced from ``PITON_*`` environment variables."""

    descriptor_file: str = Field(
        default=DESCRIPTOR_FILENAME,
        description="Descriptor file name, resolved relative to the install directory",
    )
    runtime_dir_names: List[str] = Field(
        default_factory=lambda: list(RUNTIME_DIR_NAMES),
        min_length=1,
        description="Candidate runtime directories; the first one is (re)built when none is compatible",
    )
    connect_timeout_sec: float = Field(default=10.0, gt=0, le=300)
    read_timeout_sec: float = Field(default=60.0, gt=0, le=3600)
    chunk_size: int = Field(default=64 * 1024, gt=0, description="Streaming read size in bytes")
    prescan_tar: bool = Field(
        default=True,
        description="Count tar entries up front so extraction progress has a denominator",
    )
    ui: UIDriver = Field(default=UIDriver.CLI)
    log_level: str = Field(default="INFO")
    log_dir: Optional[Path] = Field(default=None, description="Directory for JSON log files")
    quiet: bool = Field(default=False, description="Suppress console log output")

    model_config = SettingsConfigDict(
        env_prefix="PITON_",
        case_sensitive=False,
        extra="ignore",
        validate_assignment=True,
    )

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        """Normalise logging levels and ensure they match the supported set."""

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return upper

    @field_validator("runtime_dir_names")
    @classmethod
    def validate_dir_names(cls, value: List[str]) -> List[str]:
        cleaned = [name.strip() for name in value]
        if any(not name or name in {".", ".."} for name in cleaned):
            raise ValueError("runtime_dir_names entries must be non-empty directory names")
        return cleaned

    def descriptor_path(self, install_dir: Path) -> Path:
        """Return the descriptor file location for ``install_dir``."""

        return install_dir / self.descriptor_file

    def runtime_dirs(self, install_dir: Path) -> List[Path]:
        """Return candidate runtime directories under ``install_dir`` in priority order."""

        return [install_dir / name for name in self.runtime_dir_names]


_SETTINGS_CACHE: Optional[BootstrapSettings] = None
_SETTINGS_LOCK = threading.Lock()


def get_settings() -> BootstrapSettings:
    """Return memoised :class:`BootstrapSettings` read from the environment."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        if _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = BootstrapSettings()
            logging.getLogger(LOGGER_NAME).debug(
                "loaded bootstrap settings",
                extra={"stage": "config", "settings": _SETTINGS_CACHE.model_dump(mode="json")},
            )
        return _SETTINGS_CACHE


def invalidate_settings_cache() -> None:
    """Drop the cached settings so the next call re-reads the environment."""

    global _SETTINGS_CACHE  # noqa: PLW0603

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None
