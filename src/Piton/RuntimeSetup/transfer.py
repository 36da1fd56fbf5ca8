# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.transfer",
#   "purpose": "Pre-flight connectivity probe and streaming runtime download",
#   "sections": [
#     {"id": "models", "name": "Transfer Results & Progress", "anchor": "MOD", "kind": "api"},
#     {"id": "helpers", "name": "Formatting & Memory Helpers", "anchor": "HLP", "kind": "helpers"},
#     {"id": "probe", "name": "Connectivity Probe", "anchor": "PRB", "kind": "api"},
#     {"id": "download", "name": "Streaming Download", "anchor": "DWN", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Transfer engine for runtime archives.

Two steps make up a transfer.  :func:`probe_server` opens a raw TCP
connection to the download host before any HTTP exchange so that "you are
offline" can be reported separately from a broken download.
:func:`download_runtime` then streams the archive into memory, reporting
byte-level progress after every chunk and honouring cooperative
cancellation between chunks.  The whole payload is buffered because it has
to be hashed before anything touches the disk.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx
import psutil

from .descriptors import RuntimeDescriptor
from .errors import ServerUnreachable, TransferError
from .net import get_http_client
from .progress import ProgressSink
from .settings import LOGGER_NAME, BootstrapSettings, get_settings

__all__ = [
    "TransferProgress",
    "DownloadResult",
    "format_bytes",
    "probe_server",
    "download_runtime",
]

_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(slots=True, frozen=True)
class TransferProgress:
    """Byte-level download progress pushed to the progress sink."""

    bytes_received: int
    bytes_total: int
    message: str

    @property
    def fraction(self) -> float:
        if self.bytes_total <= 0:
            return 0.0
        return self.bytes_received / self.bytes_total


@dataclass(slots=True)
class DownloadResult:
    """Outcome of :func:`download_runtime`.

    Attributes:
        payload: Complete archive bytes; empty when ``cancelled``.
        bytes_total: ``Content-Length`` declared by the server.
        bytes_received: Bytes read before the transfer finished or stopped.
        cancelled: ``True`` when the user aborted mid-transfer.
    """

    payload: bytes
    bytes_total: int
    bytes_received: int
    cancelled: bool = False


def format_bytes(num: int) -> str:
    """Return a human-readable representation for ``num`` bytes."""

    value = float(num)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024.0 or unit == "TB":
            return f"{value:.2f} {unit}"
        value /= 1024.0
    return f"{value:.2f} TB"


def _log_memory(logger: logging.Logger, event: str) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    process = psutil.Process()
    memory_mb = process.memory_info().rss / (1024**2)
    logger.debug(
        "memory usage",
        extra={"stage": "download", "event": event, "memory_mb": round(memory_mb, 2)},
    )


def probe_server(
    url: str,
    *,
    timeout: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    """Open and close a TCP connection to the host serving ``url``.

    Returns:
        The probed host name, or ``None`` when the URL carries no host or no
        known port (the HTTP request will then report the problem itself).

    Raises:
        ServerUnreachable: If the host cannot be resolved or connected to.
        TransferError: If ``url`` cannot be parsed.
    """

    log = logger or logging.getLogger(LOGGER_NAME)
    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError as exc:
        raise TransferError(f"Invalid runtime download URL '{url}': {exc}") from exc

    host = parsed.hostname
    if not host:
        return None
    if port is None:
        port = _DEFAULT_PORTS.get(parsed.scheme.lower())
        if port is None:
            return None

    connect_timeout = timeout if timeout is not None else get_settings().connect_timeout_sec
    try:
        with socket.create_connection((host, port), timeout=connect_timeout):
            pass
    except OSError as exc:
        log.error(
            "failed to connect to the download server",
            extra={"stage": "connect", "host": host, "port": port, "error": str(exc)},
        )
        raise ServerUnreachable(host, exc) from exc

    log.debug("download server reachable", extra={"stage": "connect", "host": host, "port": port})
    return host


def _declared_length(response: httpx.Response) -> int:
    header = response.headers.get("Content-Length")
    if header is None:
        raise TransferError("Download response has no Content-Length")
    try:
        length = int(header)
    except ValueError:
        raise TransferError(f"Download response has an invalid Content-Length: {header!r}") from None
    if length < 0:
        raise TransferError(f"Download response has an invalid Content-Length: {header!r}")
    return length


def download_runtime(
    target: str,
    descriptor: RuntimeDescriptor,
    sink: ProgressSink,
    *,
    settings: Optional[BootstrapSettings] = None,
    client: Optional[httpx.Client] = None,
    logger: Optional[logging.Logger] = None,
) -> DownloadResult:
    """Stream the runtime archive described by ``descriptor`` into memory.

    The body is read as sent, without undoing any ``Content-Encoding``, so
    its size matches ``Content-Length``.  Progress is reported through
    ``sink`` after every chunk, and ``sink.is_cancelled()`` is checked right
    after; a cancelled transfer returns a result with ``cancelled=True``
    instead of raising.

    Raises:
        TransferError: On HTTP errors, transport failures, a missing
            ``Content-Length``, or a body whose size differs from it.
    """

    cfg = settings or get_settings()
    log = logger or logging.getLogger(LOGGER_NAME)
    http = client or get_http_client(cfg)
    url = descriptor.download_url

    buffer = bytearray()
    try:
        with http.stream("GET", url, headers={"Accept-Encoding": "identity"}) as response:
            if response.status_code >= 400:
                raise TransferError(
                    f"Runtime download from '{url}' failed with HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            total = _declared_length(response)
            sink.log(f"Downloading runtime '{target}' from '{url}' ({format_bytes(total)})...")
            log.info(
                "downloading runtime",
                extra={"stage": "download", "url": url, "target": target, "total_bytes": total},
            )

            for chunk in response.iter_raw(cfg.chunk_size):
                if not chunk:
                    continue
                buffer.extend(chunk)
                if len(buffer) > total:
                    raise TransferError(
                        f"Download response exceeded its declared Content-Length of {total} bytes"
                    )
                progress = TransferProgress(
                    bytes_received=len(buffer),
                    bytes_total=total,
                    message=(
                        f"Downloading runtime '{target}': "
                        f"{format_bytes(len(buffer))}/{format_bytes(total)}"
                    ),
                )
                sink.report_progress(progress.message, progress.fraction)
                if sink.is_cancelled():
                    log.info(
                        "download cancelled",
                        extra={
                            "stage": "download",
                            "bytes_downloaded": len(buffer),
                            "total_bytes": total,
                        },
                    )
                    return DownloadResult(
                        payload=b"",
                        bytes_total=total,
                        bytes_received=len(buffer),
                        cancelled=True,
                    )
    except httpx.HTTPError as exc:
        log.error(
            "runtime download failed",
            extra={"stage": "download", "url": url, "error": str(exc)},
        )
        raise TransferError(f"Failed to download the runtime from '{url}': {exc}") from exc

    if len(buffer) != total:
        log.error(
            "runtime download ended early",
            extra={"stage": "download", "url": url, "bytes_downloaded": len(buffer), "total_bytes": total},
        )
        raise TransferError(
            f"Download response ended after {len(buffer)} of its declared {total} bytes"
        )
    _log_memory(log, "download_complete")
    return DownloadResult(payload=bytes(buffer), bytes_total=total, bytes_received=len(buffer))
