# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.net",
#   "purpose": "Provide the shared HTTPX client used for runtime downloads",
#   "sections": [
#     {"id": "constants", "name": "Constants & globals", "anchor": "CONST", "kind": "constants"},
#     {"id": "helpers", "name": "Client construction helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "api", "name": "Public API", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Shared HTTPX client used by the transfer engine.

The client is created lazily, verifies TLS against the ``certifi`` bundle,
and follows redirects (runtime CDNs commonly redirect to a mirror).  Tests
swap it out with :func:`configure_http_client` or
:func:`Piton.RuntimeSetup.testing.use_mock_http_client`.
"""

from __future__ import annotations

import logging
import ssl
import threading
from typing import Optional

import certifi
import httpx

from .settings import LOGGER_NAME, BootstrapSettings, get_settings

LOGGER = logging.getLogger(f"{LOGGER_NAME}.net")

# --- Constants & globals -------------------------------------------------------

USER_AGENT = "piton-bootstrap/1.0"
_CLIENT_LOCK = threading.RLock()
_HTTP_CLIENT: Optional[httpx.Client] = None

# --- Client construction helpers ----------------------------------------------


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


def _build_http_client(settings: BootstrapSettings) -> httpx.Client:
    timeout = httpx.Timeout(
        connect=settings.connect_timeout_sec,
        read=settings.read_timeout_sec,
        write=settings.read_timeout_sec,
        pool=settings.connect_timeout_sec,
    )
    client = httpx.Client(
        timeout=timeout,
        follow_redirects=True,
        verify=_build_ssl_context(),
        headers={"User-Agent": USER_AGENT},
    )
    LOGGER.debug(
        "HTTPX client created",
        extra={
            "stage": "download",
            "connect_timeout_sec": settings.connect_timeout_sec,
            "read_timeout_sec": settings.read_timeout_sec,
        },
    )
    return client


def _close_client_unlocked() -> None:
    global _HTTP_CLIENT
    if _HTTP_CLIENT is not None:
        _HTTP_CLIENT.close()
    _HTTP_CLIENT = None


# --- Public API ----------------------------------------------------------------


def get_http_client(settings: Optional[BootstrapSettings] = None) -> httpx.Client:
    """Return the shared HTTPX client, creating it if necessary."""

    global _HTTP_CLIENT

    with _CLIENT_LOCK:
        if _HTTP_CLIENT is None:
            _HTTP_CLIENT = _build_http_client(settings or get_settings())
        return _HTTP_CLIENT


def configure_http_client(client: Optional[httpx.Client]) -> None:
    """Install ``client`` as the shared client (``None`` drops the current one)."""

    global _HTTP_CLIENT

    with _CLIENT_LOCK:
        if client is not _HTTP_CLIENT:
            _close_client_unlocked()
        _HTTP_CLIENT = client


def reset_http_client() -> None:
    """Close the shared client; the next :func:`get_http_client` call rebuilds it."""

    with _CLIENT_LOCK:
        _close_client_unlocked()


__all__ = [
    "USER_AGENT",
    "get_http_client",
    "configure_http_client",
    "reset_http_client",
]
