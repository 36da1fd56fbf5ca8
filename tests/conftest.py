# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {
#       "id": "isolate-environment",
#       "name": "_isolate_environment",
#       "anchor": "function-isolate-environment",
#       "kind": "function"
#     },
#     {
#       "id": "reset-package-logger",
#       "name": "_reset_package_logger",
#       "anchor": "function-reset-package-logger",
#       "kind": "function"
#     },
#     {
#       "id": "settings",
#       "name": "settings",
#       "anchor": "function-settings",
#       "kind": "function"
#     },
#     {
#       "id": "runtime-server",
#       "name": "runtime_server",
#       "anchor": "function-runtime-server",
#       "kind": "function"
#     },
#     {
#       "id": "runtime-entries",
#       "name": "runtime_entries",
#       "anchor": "function-runtime-entries",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Shared fixtures for the runtime bootstrapper suite: every test runs with a
clean ``PITON_*`` environment, a fresh settings cache and no shared HTTP
client, so nothing leaks between tests.

Key Scenarios:
- Headless settings with small chunks and short timeouts
- A loopback HTTP server serving runtime archives
- A representative runtime archive layout
"""

from __future__ import annotations

import logging
import os
from typing import Iterator, List

import pytest

from Piton.RuntimeSetup.net import reset_http_client
from Piton.RuntimeSetup.settings import LOGGER_NAME, BootstrapSettings, UIDriver, invalidate_settings_cache
from Piton.RuntimeSetup.testing import ArchiveEntry, RuntimeServer

_PROXY_VARIABLES = ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy")


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key in list(os.environ):
        if key.upper().startswith("PITON_"):
            monkeypatch.delenv(key, raising=False)
    for key in _PROXY_VARIABLES:
        monkeypatch.delenv(key, raising=False)
    invalidate_settings_cache()
    reset_http_client()
    yield
    reset_http_client()
    invalidate_settings_cache()
    _reset_package_logger()


def _reset_package_logger() -> None:
    # CLI runs install handlers bound to streams that CliRunner closes afterwards.
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_piton_managed", False):
            logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def settings() -> BootstrapSettings:
    """Headless settings tuned for fast, chunk-granular tests."""

    return BootstrapSettings(
        ui=UIDriver.NONE,
        chunk_size=1024,
        connect_timeout_sec=2,
        read_timeout_sec=5,
    )


@pytest.fixture
def runtime_server() -> Iterator[RuntimeServer]:
    with RuntimeServer() as server:
        yield server


@pytest.fixture
def runtime_entries() -> List[ArchiveEntry]:
    """A small runtime layout using the ``./`` prefix common in release tarballs."""

    return [
        ArchiveEntry("./", kind="dir", mode=0o755),
        ArchiveEntry("./dotnet", data=b"#!/bin/sh\nexit 0\n", mode=0o755),
        ArchiveEntry("./shared/", kind="dir", mode=0o755),
        ArchiveEntry("./shared/Microsoft.NETCore.App/", kind="dir", mode=0o755),
        ArchiveEntry("./shared/Microsoft.NETCore.App/8.0.5/", kind="dir", mode=0o755),
        ArchiveEntry(
            "./shared/Microsoft.NETCore.App/8.0.5/System.Private.CoreLib.dll",
            data=os.urandom(8192),
        ),
        ArchiveEntry("./LICENSE.txt", data=b"MIT\n"),
    ]
