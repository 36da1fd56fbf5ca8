"""Install identity marker written after a fully successful setup.

The marker is a single line ``"<target> <version>"`` stored in
``piton-runtime-id.txt`` inside the runtime directory.  Its presence and
exact content are the only evidence that a directory holds a complete
runtime, so it is written last and never speculatively.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .descriptors import RuntimeDescriptor
from .errors import FinalizationError
from .settings import IDENTITY_FILENAME, LOGGER_NAME

__all__ = ["InstallIdentity", "identity_path", "write_runtime_identity"]

# Separators are ASCII only; other Unicode spaces stay inside a token.
_ASCII_WHITESPACE = re.compile(r"[ \t\n\f\r]+")


@dataclass(slots=True, frozen=True)
class InstallIdentity:
    """Target and version recorded for an installed runtime."""

    target: str
    version: str

    @classmethod
    def parse(cls, text: str) -> Optional["InstallIdentity"]:
        """Return the identity encoded in ``text`` or ``None`` unless it has exactly two tokens."""

        tokens = [token for token in _ASCII_WHITESPACE.split(text) if token]
        if len(tokens) != 2:
            return None
        return cls(target=tokens[0], version=tokens[1])

    def format(self) -> str:
        return f"{self.target} {self.version}"


def identity_path(runtime_dir: Path) -> Path:
    """Return the location of the identity marker inside ``runtime_dir``."""

    return Path(runtime_dir) / IDENTITY_FILENAME


def write_runtime_identity(
    runtime_dir: Path,
    target: str,
    descriptor: RuntimeDescriptor,
    *,
    logger: Optional[logging.Logger] = None,
) -> Path:
    """Persist the identity of ``descriptor`` for ``target`` into ``runtime_dir``."""

    log = logger or logging.getLogger(LOGGER_NAME)
    identity = InstallIdentity(target=target, version=descriptor.version)
    path = identity_path(runtime_dir)
    try:
        path.write_text(identity.format(), encoding="utf-8")
    except OSError as exc:
        log.error(
            "failed to write runtime identity",
            extra={"stage": "finalize", "path": str(path), "error": str(exc)},
        )
        raise FinalizationError(f"Failed to write the runtime identity file '{path}': {exc}") from exc
    log.debug(
        "wrote runtime identity",
        extra={"stage": "finalize", "path": str(path), "identity": identity.format()},
    )
    return path
