# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.descriptors",
#   "purpose": "Parse runtime descriptor files and derive the current target identifier",
#   "sections": [
#     {"id": "models", "name": "Descriptor Models", "anchor": "MOD", "kind": "api"},
#     {"id": "target", "name": "Target Identifier", "anchor": "TGT", "kind": "helpers"},
#     {"id": "store", "name": "Descriptor Store", "anchor": "STO", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Runtime descriptor loading.

A descriptor file maps target identifiers (``"<os>-<arch>"``) to the runtime
that should be installed for that target::

    linux-x86_64:
      version: "8.0.5"
      download: https://example.org/dotnet-runtime-8.0.5-linux-x64.tar.gz
      download-sha512: 9c1f...e0
      download-format: targz

The file is read fresh on every run and never written by the bootstrapper;
:func:`dump_descriptors` exists so tooling can emit files in the same schema.
"""

from __future__ import annotations

import platform
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import DescriptorParseError, UnsupportedTargetError

__all__ = [
    "ArchiveFormat",
    "RuntimeDescriptor",
    "current_target_id",
    "load_descriptors",
    "load_descriptor",
    "dump_descriptors",
]

SHA512_DIGEST_SIZE = 64

_OS_NAMES = {
    "linux": "linux",
    "windows": "windows",
    "darwin": "macos",
    "freebsd": "freebsd",
}

_ARCH_NAMES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv7l": "arm",
    "armv6l": "arm",
    "arm": "arm",
}


class ArchiveFormat(str, Enum):
    """Archive container used for a runtime download."""

    TARGZ = "targz"
    ZIP = "zip"


class RuntimeDescriptor(BaseModel):
    """Declarative record of one runtime build for a single target."""

    version: str
    download_url: str = Field(validation_alias=AliasChoices("download", "download_url"))
    download_sha512: bytes = Field(
        validation_alias=AliasChoices("download-sha512", "download-hash", "download_sha512")
    )
    download_format: ArchiveFormat = Field(
        validation_alias=AliasChoices("download-format", "download_format")
    )

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("version", "download_url")
    @classmethod
    def require_single_token(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        if any(char.isspace() for char in stripped):
            raise ValueError("must not contain whitespace")
        return stripped

    @field_validator("download_sha512", mode="before")
    @classmethod
    def decode_digest(cls, value: Any) -> bytes:
        if isinstance(value, (bytes, bytearray)):
            digest = bytes(value)
        elif isinstance(value, str):
            try:
                digest = bytes.fromhex(value.strip())
            except ValueError as exc:
                raise ValueError("digest must be a hexadecimal string") from exc
        else:
            raise ValueError("digest must be a hexadecimal string")
        if len(digest) != SHA512_DIGEST_SIZE:
            raise ValueError(
                f"digest must be {SHA512_DIGEST_SIZE} bytes, got {len(digest)} bytes"
            )
        return digest

    @property
    def sha512_hex(self) -> str:
        """Return the expected digest as lowercase hex."""

        return self.download_sha512.hex()

    def to_mapping(self) -> Dict[str, str]:
        """Return the descriptor in the on-disk key layout."""

        return {
            "version": self.version,
            "download": self.download_url,
            "download-sha512": self.sha512_hex,
            "download-format": self.download_format.value,
        }


def current_target_id() -> str:
    """Return the target identifier for the running host, e.g. ``linux-x86_64``."""

    system = platform.system().lower()
    machine = platform.machine().lower()
    os_name = _OS_NAMES.get(system, system or "unknown")
    arch = _ARCH_NAMES.get(machine, machine or "unknown")
    return f"{os_name}-{arch}"


def load_descriptors(path: Path) -> Dict[str, RuntimeDescriptor]:
    """Parse every entry of the descriptor file at ``path``."""

    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle)
    except OSError as exc:
        raise DescriptorParseError(
            f"Failed to read the runtime descriptor file '{path}': {exc}"
        ) from exc
    except yaml.YAMLError as exc:
        raise DescriptorParseError(
            f"Runtime descriptor file '{path}' contains invalid YAML: {exc}"
        ) from exc

    if not isinstance(raw, Mapping):
        raise DescriptorParseError(
            f"Runtime descriptor file '{path}' must contain a mapping at the root"
        )

    descriptors: Dict[str, RuntimeDescriptor] = {}
    for target, entry in raw.items():
        if not isinstance(entry, Mapping):
            raise DescriptorParseError(
                f"Runtime descriptor for target '{target}' in '{path}' must be a mapping"
            )
        try:
            descriptors[str(target)] = RuntimeDescriptor.model_validate(dict(entry))
        except PydanticValidationError as exc:
            raise DescriptorParseError(
                f"Invalid runtime descriptor for target '{target}' in '{path}': {exc}"
            ) from exc
    return descriptors


def load_descriptor(path: Path, target: str) -> RuntimeDescriptor:
    """Return the descriptor for ``target`` from the file at ``path``.

    Raises:
        DescriptorParseError: If the file is missing, unreadable, or malformed.
        UnsupportedTargetError: If the file has no entry for ``target``.
    """

    descriptors = load_descriptors(path)
    try:
        return descriptors[target]
    except KeyError:
        raise UnsupportedTargetError(target) from None


def dump_descriptors(descriptors: Mapping[str, RuntimeDescriptor]) -> str:
    """Serialise ``descriptors`` to YAML in the layout accepted by :func:`load_descriptors`."""

    payload = {target: descriptor.to_mapping() for target, descriptor in descriptors.items()}
    return yaml.safe_dump(payload, sort_keys=True, default_flow_style=False)
