"""Testing utilities for exercising the runtime bootstrapper end-to-end.

Provides in-memory archive builders, descriptor helpers, a loopback HTTP
server that serves runtime payloads, an HTTPX mock-client hook, a recording
progress sink with scripted cancellation, and a fake application launcher.
"""

from __future__ import annotations

import contextlib
import hashlib
import http.server
import io
import socket
import stat
import tarfile
import threading
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import httpx

from ..cancellation import CancellationToken
from ..descriptors import ArchiveFormat, RuntimeDescriptor, dump_descriptors
from ..errors import HostingError
from ..net import configure_http_client, reset_http_client
from ..settings import DESCRIPTOR_FILENAME

__all__ = [
    "ArchiveEntry",
    "make_targz",
    "make_zip",
    "make_archive",
    "descriptor_for",
    "write_descriptor_file",
    "use_mock_http_client",
    "payload_transport",
    "streamed_response",
    "RuntimeServer",
    "closed_port",
    "RecordingProgressSink",
    "FakeLauncher",
]


# --- Archives -------------------------------------------------------------------


@dataclass
class ArchiveEntry:
    """One member of a synthetic runtime archive.

    ``kind`` is one of ``file``, ``dir``, ``symlink``, ``hardlink`` or
    ``fifo``; ``linkname`` is the link target for the two link kinds.
    """

    name: str
    data: bytes = b""
    kind: str = "file"
    linkname: str = ""
    mode: int = 0o644


def make_targz(entries: Iterable[ArchiveEntry]) -> bytes:
    """Build a gzip-compressed tar archive in memory."""

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for entry in entries:
            info = tarfile.TarInfo(entry.name)
            info.mode = entry.mode
            info.mtime = int(time.time())
            if entry.kind == "dir":
                info.type = tarfile.DIRTYPE
                info.mode = entry.mode | 0o111
                archive.addfile(info)
            elif entry.kind == "symlink":
                info.type = tarfile.SYMTYPE
                info.linkname = entry.linkname
                archive.addfile(info)
            elif entry.kind == "hardlink":
                info.type = tarfile.LNKTYPE
                info.linkname = entry.linkname
                archive.addfile(info)
            elif entry.kind == "fifo":
                info.type = tarfile.FIFOTYPE
                archive.addfile(info)
            else:
                info.size = len(entry.data)
                archive.addfile(info, io.BytesIO(entry.data))
    return buffer.getvalue()


def make_zip(entries: Iterable[ArchiveEntry]) -> bytes:
    """Build a deflate-compressed ZIP archive in memory.

    Member names are written verbatim, so unsafe names survive into the
    central directory.
    """

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for entry in entries:
            if entry.kind == "dir":
                name = entry.name if entry.name.endswith("/") else f"{entry.name}/"
                info = zipfile.ZipInfo(name)
                info.external_attr = ((stat.S_IFDIR | entry.mode | 0o111) << 16) | 0x10
                archive.writestr(info, b"")
                continue
            info = zipfile.ZipInfo(entry.name)
            info.compress_type = zipfile.ZIP_DEFLATED
            if entry.kind == "symlink":
                info.external_attr = (stat.S_IFLNK | 0o777) << 16
                archive.writestr(info, entry.linkname.encode("utf-8"))
            else:
                info.external_attr = (stat.S_IFREG | entry.mode) << 16
                archive.writestr(info, entry.data)
    return buffer.getvalue()


def make_archive(archive_format: ArchiveFormat, entries: Iterable[ArchiveEntry]) -> bytes:
    if archive_format is ArchiveFormat.ZIP:
        return make_zip(entries)
    return make_targz(entries)


# --- Descriptors ----------------------------------------------------------------


def descriptor_for(
    payload: bytes,
    url: str,
    *,
    archive_format: ArchiveFormat = ArchiveFormat.TARGZ,
    version: str = "8.0.5",
) -> RuntimeDescriptor:
    """Return a descriptor whose digest matches ``payload``."""

    return RuntimeDescriptor(
        version=version,
        download_url=url,
        download_sha512=hashlib.sha512(payload).digest(),
        download_format=archive_format,
    )


def write_descriptor_file(
    install_dir: Path, descriptors: Mapping[str, RuntimeDescriptor]
) -> Path:
    """Write ``descriptors`` as the descriptor file of ``install_dir``."""

    install_dir.mkdir(parents=True, exist_ok=True)
    path = install_dir / DESCRIPTOR_FILENAME
    path.write_text(dump_descriptors(descriptors), encoding="utf-8")
    return path


# --- Network --------------------------------------------------------------------


@contextlib.contextmanager
def use_mock_http_client(transport: httpx.BaseTransport, **client_kwargs):
    """Temporarily install an HTTPX client backed by ``transport``."""

    client = httpx.Client(transport=transport, **client_kwargs)
    configure_http_client(client)
    try:
        yield client
    finally:
        reset_http_client()
        client.close()


def payload_transport(
    payload: bytes,
    *,
    status: int = 200,
    chunked: bool = False,
    headers: Optional[Mapping[str, str]] = None,
) -> httpx.MockTransport:
    """Return a transport answering every request with ``payload``.

    The body is always streamed so it can be read raw.  ``Content-Length``
    is the payload size unless ``headers`` overrides it; ``chunked=True``
    omits the header.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        return streamed_response(payload, status=status, chunked=chunked, headers=headers)

    return httpx.MockTransport(handler)


def streamed_response(
    body: bytes,
    *,
    status: int = 200,
    chunked: bool = False,
    headers: Optional[Mapping[str, str]] = None,
) -> httpx.Response:
    """Build an unread response streaming ``body``, as a live transport would."""

    merged: Dict[str, str] = {} if chunked else {"Content-Length": str(len(body))}
    merged.update(headers or {})
    return httpx.Response(status, content=iter([body]), headers=merged)


def closed_port(host: str = "127.0.0.1") -> int:
    """Return a local port that nothing is listening on."""

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind((host, 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class _ThreadedHTTPServer(http.server.ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, server_address, RequestHandlerClass, *, routes) -> None:
        super().__init__(server_address, RequestHandlerClass)
        self.routes = routes
        self.request_log: List[str] = []


class _RequestHandler(http.server.BaseHTTPRequestHandler):
    server_version = "PitonRuntimeTestServer/1.0"

    def log_message(self, format, *args):  # noqa: D401  (silence default logging)
        return

    def do_GET(self):  # noqa: D401
        server: _ThreadedHTTPServer = self.server  # type: ignore[assignment]
        path = self.path.split("?", 1)[0]
        server.request_log.append(path)
        route = server.routes.get(path)
        if route is None:
            self.send_error(404, "No payload registered for path")
            return
        status, body = route
        self.send_response(status)
        self.send_header("Content-Type", "application/octet-stream")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class RuntimeServer(contextlib.AbstractContextManager["RuntimeServer"]):
    """Loopback HTTP server serving runtime archives from memory."""

    def __init__(self, host: str = "127.0.0.1") -> None:
        self._routes: Dict[str, Tuple[int, bytes]] = {}
        self._server = _ThreadedHTTPServer((host, 0), _RequestHandler, routes=self._routes)
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="piton-test-http", daemon=True
        )

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    @property
    def requests(self) -> Sequence[str]:
        return tuple(self._server.request_log)

    def serve(self, path: str, body: bytes, *, status: int = 200) -> str:
        """Register ``body`` under ``path`` and return its absolute URL."""

        if not path.startswith("/"):
            path = f"/{path}"
        self._routes[path] = (status, body)
        return self.url(path)

    def url(self, path: str) -> str:
        host = self._server.server_address[0]
        return f"http://{host}:{self.port}{path}"

    def __enter__(self) -> "RuntimeServer":
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)


# --- Progress & launch ----------------------------------------------------------


@dataclass
class RecordingProgressSink:
    """Progress sink recording every call.

    Set ``cancel_after`` to request cancellation once that many progress
    reports have been received; :attr:`token` can also be cancelled directly.
    """

    cancel_after: Optional[int] = None
    token: CancellationToken = field(default_factory=CancellationToken)
    reports: List[Tuple[str, float]] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)

    def report_progress(self, message: str, fraction: float) -> None:
        self.reports.append((message, fraction))
        if self.cancel_after is not None and len(self.reports) >= self.cancel_after:
            self.token.cancel()

    def is_cancelled(self) -> bool:
        return self.token.is_cancelled()

    def log(self, message: str) -> None:
        self.messages.append(message)

    def fractions(self) -> List[float]:
        return [fraction for _, fraction in self.reports]


@dataclass
class FakeLauncher:
    """Launcher returning a canned exit code (or raising a hosting failure)."""

    exit_code: int = 0
    error: Optional[Union[HostingError, str]] = None
    calls: List[Tuple[Optional[Path], Path, Tuple[str, ...]]] = field(default_factory=list)

    def launch(self, runtime_dir: Optional[Path], app_path: Path, args: Sequence[str]) -> int:
        self.calls.append((runtime_dir, Path(app_path), tuple(args)))
        if isinstance(self.error, HostingError):
            raise self.error
        if self.error is not None:
            raise HostingError(self.error)
        return self.exit_code
