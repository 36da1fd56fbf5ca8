"""SHA-512 verification of downloaded runtime payloads.

The expected digest comes from the runtime descriptor.  Verification runs
once the whole payload is buffered and before any of it reaches the
extractor; a mismatch is a security event (tampering or a corrupted mirror),
so it is always fatal and never retried.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional, Union

from .errors import HashMismatchError
from .settings import LOGGER_NAME

__all__ = ["compute_sha512", "verify_payload"]

Payload = Union[bytes, bytearray, memoryview]


def compute_sha512(payload: Payload) -> bytes:
    """Return the raw SHA-512 digest of ``payload``."""

    return hashlib.sha512(payload).digest()


def verify_payload(
    payload: Payload,
    expected: bytes,
    *,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Check ``payload`` against the ``expected`` SHA-512 digest.

    Args:
        payload: Complete downloaded archive bytes.
        expected: Raw 64-byte digest from the runtime descriptor.
        logger: Optional logger for the verification outcome.

    Returns:
        The hex digest of ``payload`` when it matches.

    Raises:
        HashMismatchError: If the digests differ; both are included hex-encoded.
    """

    log = logger or logging.getLogger(LOGGER_NAME)
    actual = compute_sha512(payload)
    if not hmac.compare_digest(actual, bytes(expected)):
        log.error(
            "runtime download hash mismatch",
            extra={
                "stage": "verify",
                "expected_sha512": bytes(expected).hex(),
                "actual_sha512": actual.hex(),
                "payload_bytes": len(payload),
            },
        )
        raise HashMismatchError(bytes(expected).hex(), actual.hex())
    log.info(
        "downloaded runtime hash matches expected hash",
        extra={"stage": "verify", "sha512": actual.hex()},
    )
    return actual.hex()
