# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.bootstrap",
#   "purpose": "Top-level caller: reuse a compatible runtime or rebuild one, then launch the app",
#   "sections": [
#     {"id": "results", "name": "Bootstrap Results", "anchor": "RES", "kind": "api"},
#     {"id": "discovery", "name": "Runtime Discovery & Removal", "anchor": "DSC", "kind": "helpers"},
#     {"id": "presentation", "name": "Console Presentation Loop", "anchor": "PRS", "kind": "helpers"},
#     {"id": "api", "name": "prepare_runtime / launch_app", "anchor": "API", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Bootstrap flow tying the gate, the setup pipeline, and the launcher together.

1. Load the descriptor for the current target (fatal on any parse error).
2. Consult the compatibility gate for each candidate runtime directory and
   reuse the first compatible one.
3. Otherwise wipe the primary runtime directory and run the setup pipeline,
   either headless or with a console progress bar fed by a worker thread.
4. Hand the directory to the launch collaborator, unless setup was cancelled.
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import httpx

from .compatibility import RuntimeCheck, check_runtime_install
from .descriptors import RuntimeDescriptor, current_target_id, load_descriptor
from .errors import RuntimeRemovalError
from .launcher import AppLauncher, DotnetLauncher
from .pipeline import PipelineOutcome, SetupWorker, run_setup
from .progress import ConsoleProgressSink, NullProgressSink
from .settings import LOGGER_NAME, BootstrapSettings, UIDriver, get_settings

__all__ = [
    "BootstrapResult",
    "find_compatible_runtime",
    "remove_runtime_dir",
    "run_setup_with_console",
    "prepare_runtime",
    "launch_app",
]

_POLL_INTERVAL_SEC = 0.05


@dataclass(slots=True)
class BootstrapResult:
    """What :func:`prepare_runtime` decided and did.

    Attributes:
        target: Target identifier the descriptor was selected for.
        descriptor: Runtime descriptor for ``target``.
        runtime_dir: Directory that holds (or should hold) the runtime.
        checks: Gate classification of every candidate directory inspected.
        outcome: Setup pipeline outcome, or ``None`` when an existing
            runtime was reused.
    """

    target: str
    descriptor: RuntimeDescriptor
    runtime_dir: Path
    checks: List[Tuple[Path, RuntimeCheck]] = field(default_factory=list)
    outcome: Optional[PipelineOutcome] = None

    @property
    def reused(self) -> bool:
        return self.outcome is None

    @property
    def ready(self) -> bool:
        return self.outcome is None or self.outcome.ok

    @property
    def cancelled(self) -> bool:
        return self.outcome is not None and self.outcome.cancelled


def find_compatible_runtime(
    runtime_dirs: Sequence[Path],
    descriptor: RuntimeDescriptor,
    target: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> Tuple[Optional[Path], List[Tuple[Path, RuntimeCheck]]]:
    """Return the first compatible directory (or ``None``) and every classification made."""

    log = logger or logging.getLogger(LOGGER_NAME)
    checks: List[Tuple[Path, RuntimeCheck]] = []
    for runtime_dir in runtime_dirs:
        check = check_runtime_install(runtime_dir, descriptor, target)
        checks.append((runtime_dir, check))
        if check.is_compatible:
            log.info(
                f"Detected compatible existing runtime '{runtime_dir}'",
                extra={"stage": "check", "runtime_dir": str(runtime_dir)},
            )
            return runtime_dir, checks
        log.info(
            f"Existing runtime isn't compatible: {check.describe()}",
            extra={"stage": "check", "runtime_dir": str(runtime_dir), "status": check.status.value},
        )
    return None, checks


def remove_runtime_dir(runtime_dir: Path, *, logger: Optional[logging.Logger] = None) -> None:
    """Recursively delete ``runtime_dir`` if it exists."""

    log = logger or logging.getLogger(LOGGER_NAME)
    if not runtime_dir.exists() and not runtime_dir.is_symlink():
        return
    try:
        if runtime_dir.is_dir() and not runtime_dir.is_symlink():
            shutil.rmtree(runtime_dir)
        else:
            runtime_dir.unlink()
    except OSError as exc:
        raise RuntimeRemovalError(
            f"Failed to remove existing runtime '{runtime_dir}': {exc}"
        ) from exc
    log.info("removed existing runtime", extra={"stage": "check", "runtime_dir": str(runtime_dir)})


def run_setup_with_console(
    target: str,
    descriptor: RuntimeDescriptor,
    runtime_dir: Path,
    *,
    settings: Optional[BootstrapSettings] = None,
    client: Optional[httpx.Client] = None,
    logger: Optional[logging.Logger] = None,
    disable_bar: bool = False,
) -> PipelineOutcome:
    """Run the pipeline on a worker thread while this thread renders progress.

    ``Ctrl+C`` on the console requests cooperative cancellation.
    """

    description = f"Setting up the .NET {descriptor.version} runtime, please wait..."
    worker = SetupWorker(
        target,
        descriptor,
        runtime_dir,
        description=description,
        settings=settings,
        client=client,
        logger=logger,
    )
    with ConsoleProgressSink(description, disable=disable_bar) as console:
        worker.start()
        while True:
            try:
                finished = not worker.is_alive()
                snapshot = worker.state.snapshot()
                for line in snapshot.log_lines:
                    console.log(line)
                if snapshot.dirty:
                    console.report_progress(snapshot.text, snapshot.fraction)
                if finished:
                    break
                time.sleep(_POLL_INTERVAL_SEC)
            except KeyboardInterrupt:
                worker.cancel()
    outcome = worker.join()
    assert outcome is not None
    return outcome


def prepare_runtime(
    install_dir: Path,
    *,
    target: Optional[str] = None,
    settings: Optional[BootstrapSettings] = None,
    force: bool = False,
    client: Optional[httpx.Client] = None,
    logger: Optional[logging.Logger] = None,
) -> BootstrapResult:
    """Make sure a compatible runtime exists under ``install_dir``.

    Raises:
        DescriptorParseError: If the descriptor file cannot be parsed.
        UnsupportedTargetError: If the descriptor has no entry for ``target``.
        RuntimeRemovalError: If the stale runtime directory cannot be deleted.
    """

    cfg = settings or get_settings()
    log = logger or logging.getLogger(LOGGER_NAME)
    install_dir = Path(install_dir)
    target_id = target or current_target_id()

    descriptor = load_descriptor(cfg.descriptor_path(install_dir), target_id)
    log.info(
        f"Read runtime descriptor for target '{target_id}': version {descriptor.version}",
        extra={"stage": "config", "target": target_id, "version": descriptor.version},
    )

    runtime_dirs = cfg.runtime_dirs(install_dir)
    checks: List[Tuple[Path, RuntimeCheck]] = []
    if not force:
        compatible, checks = find_compatible_runtime(runtime_dirs, descriptor, target_id, logger=log)
        if compatible is not None:
            return BootstrapResult(target_id, descriptor, compatible, checks)

    log.info(
        "Unable to locate existing compatible runtime, setting up new one",
        extra={"stage": "setup", "force": force},
    )
    runtime_dir = runtime_dirs[0]
    remove_runtime_dir(runtime_dir, logger=log)

    if cfg.ui is UIDriver.CLI:
        outcome = run_setup_with_console(
            target_id, descriptor, runtime_dir, settings=cfg, client=client, logger=log
        )
    else:
        outcome = run_setup(
            target_id,
            descriptor,
            runtime_dir,
            sink=NullProgressSink(),
            settings=cfg,
            client=client,
            logger=log,
        )
    return BootstrapResult(target_id, descriptor, runtime_dir, checks, outcome)


def launch_app(
    result: BootstrapResult,
    app_path: Path,
    args: Sequence[str],
    *,
    launcher: Optional[AppLauncher] = None,
) -> int:
    """Launch ``app_path`` with the runtime prepared in ``result``."""

    if not result.ready:
        raise ValueError("cannot launch an application without a ready runtime")
    active = launcher if launcher is not None else DotnetLauncher()
    return active.launch(result.runtime_dir, Path(app_path), list(args))
