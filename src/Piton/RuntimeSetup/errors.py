# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.errors",
#   "purpose": "Define the exception hierarchy used across descriptor loading, download, verification, and extraction",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "descriptor", "name": "Descriptor Errors", "anchor": "DSC", "kind": "api"},
#     {"id": "transfer", "name": "Transfer & Integrity Errors", "anchor": "TRF", "kind": "api"},
#     {"id": "extraction", "name": "Extraction & Finalization Errors", "anchor": "EXT", "kind": "api"},
#     {"id": "launch", "name": "Launch Errors", "anchor": "LCH", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared across runtime acquisition and verification.

The setup pipeline spans descriptor parsing, a connectivity probe, HTTP
retrieval, digest verification, archive unpacking, and identity
finalisation.  Every failure mode gets its own subclass so callers (and test
harnesses) can branch on the kind of failure instead of parsing messages.
Each class exposes a stable ``kind`` string for the same purpose.

User cancellation has no exception here; it is a pipeline outcome.
"""

from __future__ import annotations

__all__ = [
    "RuntimeSetupError",
    "DescriptorParseError",
    "UnsupportedTargetError",
    "ServerUnreachable",
    "TransferError",
    "HashMismatchError",
    "PathTraversalError",
    "DecompressionError",
    "FinalizationError",
    "RuntimeRemovalError",
    "HostingError",
]


class RuntimeSetupError(RuntimeError):
    """Base exception for runtime provisioning failures."""

    kind = "runtime_setup_error"


class DescriptorParseError(RuntimeSetupError):
    """Raised when the runtime descriptor file is missing, unreadable, or malformed."""

    kind = "descriptor_parse_error"


class UnsupportedTargetError(RuntimeSetupError):
    """Raised when the descriptor file has no entry for the current target."""

    kind = "unsupported_target"

    def __init__(self, target: str) -> None:
        super().__init__(f"Current runtime target '{target}' is not supported")
        self.target = target


class ServerUnreachable(RuntimeSetupError):
    """Raised when the pre-flight connection to the download server fails.

    Distinct from :class:`TransferError`; usually means the user is offline.
    """

    kind = "server_unreachable"

    def __init__(self, server: str, reason: object = None) -> None:
        message = f"Unable to connect to the runtime download server '{server}'"
        if reason is not None:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.server = server
        self.reason = reason


class TransferError(RuntimeSetupError):
    """Raised when the runtime download fails after the connection was established."""

    kind = "transfer_error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HashMismatchError(RuntimeSetupError):
    """Raised when the downloaded payload does not match the expected SHA-512 digest."""

    kind = "hash_mismatch"

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(
            "Mismatching runtime hash - this might indicate that the download has been "
            f"tampered with! (expected {expected}, got {actual})"
        )
        self.expected = expected
        self.actual = actual


class PathTraversalError(RuntimeSetupError):
    """Raised when an archive entry would be written outside the destination."""

    kind = "path_traversal"

    def __init__(self, entry_path: str) -> None:
        super().__init__(f"Detected attempted file traversal through archive path '{entry_path}'")
        self.entry_path = entry_path


class DecompressionError(RuntimeSetupError):
    """Raised when the runtime archive cannot be decompressed or unpacked."""

    kind = "decompression_error"


class FinalizationError(RuntimeSetupError):
    """Raised when writing the install identity (or creating directories) fails."""

    kind = "finalization_error"


class RuntimeRemovalError(RuntimeSetupError):
    """Raised when a stale runtime directory cannot be removed before a rebuild."""

    kind = "runtime_removal_error"


class HostingError(RuntimeSetupError):
    """Raised by a launcher when the runtime host itself could not start the app."""

    kind = "hosting_error"

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
