"""Compatibility gate deciding whether an existing runtime can be reused.

:func:`check_runtime_install` is a pure decision function.  Only
:attr:`RuntimeCheckStatus.COMPATIBLE` lets the caller skip provisioning;
every other classification means "wipe the directory and reinstall", never
an incremental repair.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .descriptors import RuntimeDescriptor
from .identity import InstallIdentity, identity_path

__all__ = ["RuntimeCheckStatus", "RuntimeCheck", "check_runtime_install"]


class RuntimeCheckStatus(str, Enum):
    NOT_INSTALLED = "not_installed"
    MALFORMED_IDENTITY = "malformed_identity"
    WRONG_TARGET = "wrong_target"
    WRONG_VERSION = "wrong_version"
    COMPATIBLE = "compatible"


@dataclass(slots=True, frozen=True)
class RuntimeCheck:
    """Classification of a runtime directory against a descriptor.

    Attributes:
        status: Outcome of the comparison.
        found: Target or version token read from the marker when ``status``
            is ``WRONG_TARGET`` or ``WRONG_VERSION``; ``None`` otherwise.
    """

    status: RuntimeCheckStatus
    found: Optional[str] = None

    @property
    def is_compatible(self) -> bool:
        return self.status is RuntimeCheckStatus.COMPATIBLE

    def describe(self) -> str:
        if self.found is None:
            return self.status.value
        return f"{self.status.value}({self.found})"


def check_runtime_install(
    runtime_dir: Path, descriptor: RuntimeDescriptor, target: str
) -> RuntimeCheck:
    """Classify ``runtime_dir`` against ``descriptor`` for ``target``."""

    try:
        text = identity_path(runtime_dir).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return RuntimeCheck(RuntimeCheckStatus.NOT_INSTALLED)

    identity = InstallIdentity.parse(text)
    if identity is None:
        return RuntimeCheck(RuntimeCheckStatus.MALFORMED_IDENTITY)
    if identity.target != target:
        return RuntimeCheck(RuntimeCheckStatus.WRONG_TARGET, identity.target)
    if identity.version != descriptor.version:
        return RuntimeCheck(RuntimeCheckStatus.WRONG_VERSION, identity.version)
    return RuntimeCheck(RuntimeCheckStatus.COMPATIBLE)
