"""Launch collaborator handing control to the managed application.

The bootstrapper only needs "run this entry point with this runtime and give
me an exit code, or tell me the host failed".  :class:`DotnetLauncher` does
that through the runtime's ``dotnet`` host executable.

The integer it returns is whatever the host process exited with.  An
application's own exit code and a host failure code share the same number
space there, and no attempt is made to tell them apart; only failures to
start the host at all become :class:`~Piton.RuntimeSetup.errors.HostingError`.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Protocol, Sequence

from .errors import HostingError
from .settings import LOGGER_NAME

__all__ = ["AppLauncher", "DotnetLauncher", "host_executable_name"]


class AppLauncher(Protocol):
    """Narrow interface for starting a managed entry point."""

    def launch(self, runtime_dir: Optional[Path], app_path: Path, args: Sequence[str]) -> int:
        """Run ``app_path`` with ``args``; ``runtime_dir=None`` means the system runtime."""


def host_executable_name() -> str:
    return "dotnet.exe" if os.name == "nt" else "dotnet"


class DotnetLauncher:
    """Launch applications through the ``dotnet`` host of a runtime directory."""

    def __init__(
        self,
        *,
        env: Optional[Mapping[str, str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._env = dict(env) if env is not None else None
        self._logger = logger or logging.getLogger(LOGGER_NAME)

    def _resolve_host(self, runtime_dir: Optional[Path]) -> Path:
        if runtime_dir is None:
            search_path = (self._env if self._env is not None else os.environ).get("PATH")
            found = shutil.which(host_executable_name(), path=search_path)
            if found is None:
                raise HostingError("No system-installed runtime host was found on PATH")
            return Path(found)
        host = Path(runtime_dir) / host_executable_name()
        if not host.is_file():
            raise HostingError(f"Runtime host '{host}' does not exist")
        return host

    def _build_env(self, runtime_dir: Optional[Path]) -> dict:
        env = dict(self._env if self._env is not None else os.environ)
        if runtime_dir is not None:
            root = str(runtime_dir)
            env["DOTNET_ROOT"] = root
            # Anything that shells out to ``dotnet`` should find this runtime first.
            existing = env.get("PATH", "")
            env["PATH"] = root if not existing else os.pathsep.join([root, existing])
        return env

    def launch(self, runtime_dir: Optional[Path], app_path: Path, args: Sequence[str]) -> int:
        app_path = Path(app_path)
        if not app_path.is_file():
            raise HostingError(f"Failed to find managed application binary '{app_path}'")
        host = self._resolve_host(runtime_dir)
        command = [str(host), str(app_path), *args]
        self._logger.info(
            "launching application",
            extra={"stage": "launch", "host": str(host), "app": str(app_path), "argc": len(args)},
        )
        try:
            completed = subprocess.run(command, env=self._build_env(runtime_dir), check=False)
        except OSError as exc:
            raise HostingError(f"Failed to start the runtime host '{host}': {exc}") from exc
        self._logger.debug(
            "application exited",
            extra={"stage": "launch", "exit_code": completed.returncode},
        )
        return completed.returncode
