# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup",
#   "purpose": "Package initialization for Piton.RuntimeSetup",
#   "sections": [
#     {
#       "id": "getattr",
#       "name": "__getattr__",
#       "anchor": "function-getattr",
#       "kind": "function"
#     },
#     {
#       "id": "dir",
#       "name": "__dir__",
#       "anchor": "function-dir",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Public API for the Piton runtime bootstrapper.

The bootstrapper keeps a private .NET runtime next to an application: it
reads the runtime descriptor for the current target, decides whether the
installed runtime is still compatible, and otherwise downloads, verifies and
unpacks a fresh one before handing it to the application launcher.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any, Dict, Tuple

__version__ = "1.0.0"

_EXPORT_MAP: Dict[str, Tuple[str, str]] = {
    "ArchiveFormat": (".descriptors", "ArchiveFormat"),
    "RuntimeDescriptor": (".descriptors", "RuntimeDescriptor"),
    "current_target_id": (".descriptors", "current_target_id"),
    "load_descriptor": (".descriptors", "load_descriptor"),
    "load_descriptors": (".descriptors", "load_descriptors"),
    "dump_descriptors": (".descriptors", "dump_descriptors"),
    "RuntimeCheck": (".compatibility", "RuntimeCheck"),
    "RuntimeCheckStatus": (".compatibility", "RuntimeCheckStatus"),
    "check_runtime_install": (".compatibility", "check_runtime_install"),
    "InstallIdentity": (".identity", "InstallIdentity"),
    "write_runtime_identity": (".identity", "write_runtime_identity"),
    "probe_server": (".transfer", "probe_server"),
    "download_runtime": (".transfer", "download_runtime"),
    "DownloadResult": (".transfer", "DownloadResult"),
    "verify_payload": (".checksums", "verify_payload"),
    "extract_runtime": (".extraction", "extract_runtime"),
    "ExtractionResult": (".extraction", "ExtractionResult"),
    "SetupStage": (".pipeline", "SetupStage"),
    "PipelineOutcome": (".pipeline", "PipelineOutcome"),
    "OutcomeStatus": (".pipeline", "OutcomeStatus"),
    "SetupPipeline": (".pipeline", "SetupPipeline"),
    "SetupWorker": (".pipeline", "SetupWorker"),
    "run_setup": (".pipeline", "run_setup"),
    "ProgressSink": (".progress", "ProgressSink"),
    "NullProgressSink": (".progress", "NullProgressSink"),
    "ConsoleProgressSink": (".progress", "ConsoleProgressSink"),
    "ProgressState": (".progress", "ProgressState"),
    "CancellationToken": (".cancellation", "CancellationToken"),
    "AppLauncher": (".launcher", "AppLauncher"),
    "DotnetLauncher": (".launcher", "DotnetLauncher"),
    "BootstrapResult": (".bootstrap", "BootstrapResult"),
    "prepare_runtime": (".bootstrap", "prepare_runtime"),
    "launch_app": (".bootstrap", "launch_app"),
    "BootstrapSettings": (".settings", "BootstrapSettings"),
    "get_settings": (".settings", "get_settings"),
    "RuntimeSetupError": (".errors", "RuntimeSetupError"),
}

__all__ = ["__version__", *_EXPORT_MAP]


def __getattr__(name: str) -> Any:
    """Lazily import API exports so ``import Piton.RuntimeSetup`` stays cheap."""

    target = _EXPORT_MAP.get(name)
    if target is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    module = import_module(target[0], __name__)
    value = getattr(module, target[1])
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    """Expose lazily-populated attributes in ``dir()`` results."""

    return sorted(set(globals()) | set(_EXPORT_MAP))
