# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.pipeline",
#   "purpose": "Sequence probe, download, verification, extraction, and finalisation into one setup run",
#   "sections": [
#     {"id": "stages", "name": "Stages & Outcomes", "anchor": "STG", "kind": "api"},
#     {"id": "pipeline", "name": "SetupPipeline State Machine", "anchor": "PIP", "kind": "api"},
#     {"id": "worker", "name": "Background Worker", "anchor": "WRK", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Setup orchestrator for the runtime acquisition pipeline.

A run walks ``IDLE → CONNECTIVITY_CHECK → DOWNLOADING → VERIFYING →
EXTRACTING → FINALIZING → DONE`` strictly forward.  The first
:class:`~Piton.RuntimeSetup.errors.RuntimeSetupError` ends the run in
``FAILED`` with the error attached verbatim; a user abort observed while
downloading or extracting ends it in ``CANCELLED``, which callers must treat
as "nothing went wrong, the user opted out".  There is no retry loop.

:class:`SetupWorker` runs the pipeline on a dedicated thread and exposes a
:class:`~Piton.RuntimeSetup.progress.ProgressState` that a presentation
layer polls.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import httpx

from .checksums import verify_payload
from .descriptors import RuntimeDescriptor
from .errors import HashMismatchError, RuntimeSetupError
from .extraction import extract_runtime
from .identity import write_runtime_identity
from .progress import NullProgressSink, ProgressSink, ProgressState, ProgressStateSink
from .settings import LOGGER_NAME, BootstrapSettings, get_settings
from .transfer import download_runtime, probe_server

__all__ = [
    "SetupStage",
    "OutcomeStatus",
    "PipelineOutcome",
    "SetupPipeline",
    "run_setup",
    "SetupWorker",
]


class SetupStage(str, Enum):
    IDLE = "idle"
    CONNECTIVITY_CHECK = "connectivity_check"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    EXTRACTING = "extracting"
    FINALIZING = "finalizing"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


_FORWARD_ORDER = (
    SetupStage.IDLE,
    SetupStage.CONNECTIVITY_CHECK,
    SetupStage.DOWNLOADING,
    SetupStage.VERIFYING,
    SetupStage.EXTRACTING,
    SetupStage.FINALIZING,
    SetupStage.DONE,
)
_TERMINAL = frozenset({SetupStage.DONE, SetupStage.CANCELLED, SetupStage.FAILED})


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class PipelineOutcome:
    """Result of one orchestrator run.

    Attributes:
        status: ``SUCCESS``, ``CANCELLED``, or ``FAILED``.
        stage: Stage the run was in when it ended (``DONE`` on success).
        error: The typed failure when ``status`` is ``FAILED``.
    """

    status: OutcomeStatus
    stage: SetupStage
    error: Optional[RuntimeSetupError] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.status is OutcomeStatus.CANCELLED

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    @property
    def kind(self) -> str:
        """Machine-readable outcome kind, e.g. ``"success"`` or ``"hash_mismatch"``."""

        if self.error is not None:
            return self.error.kind
        return self.status.value

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class SetupPipeline:
    """Forward-only state machine provisioning one runtime directory.

    Args:
        target: Target identifier the runtime is installed for.
        descriptor: Runtime to download.
        runtime_dir: Destination directory; callers wipe it beforehand.
        sink: Progress and cancellation channel.
        settings: Bootstrapper settings (timeouts, chunk size, tar pre-scan).
        client: Optional HTTPX client overriding the shared one.
        logger: Optional logger; defaults to the package logger.
    """

    def __init__(
        self,
        target: str,
        descriptor: RuntimeDescriptor,
        runtime_dir: Path,
        *,
        sink: Optional[ProgressSink] = None,
        settings: Optional[BootstrapSettings] = None,
        client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.target = target
        self.descriptor = descriptor
        self.runtime_dir = Path(runtime_dir)
        self.sink: ProgressSink = sink if sink is not None else NullProgressSink()
        self.settings = settings or get_settings()
        self._client = client
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._stage = SetupStage.IDLE

    @property
    def stage(self) -> SetupStage:
        return self._stage

    def _advance(self, stage: SetupStage) -> None:
        if self._stage in _TERMINAL:
            raise RuntimeError(f"setup pipeline already finished in stage {self._stage.value}")
        if stage not in _TERMINAL or stage is SetupStage.DONE:
            current = _FORWARD_ORDER.index(self._stage)
            if _FORWARD_ORDER.index(stage) != current + 1:
                raise RuntimeError(
                    f"illegal setup transition {self._stage.value} -> {stage.value}"
                )
        self._logger.debug(
            "setup stage transition",
            extra={"stage": stage.value, "previous_stage": self._stage.value},
        )
        self._stage = stage

    def _finish(self, status: OutcomeStatus, error: Optional[RuntimeSetupError] = None) -> PipelineOutcome:
        ended_in = self._stage
        if status is OutcomeStatus.CANCELLED:
            self._advance(SetupStage.CANCELLED)
            self._logger.info("the user cancelled the runtime setup", extra={"stage": ended_in.value})
        elif status is OutcomeStatus.FAILED:
            self._advance(SetupStage.FAILED)
        return PipelineOutcome(status=status, stage=ended_in, error=error)

    def run(self) -> PipelineOutcome:
        """Execute the pipeline once and return its outcome."""

        if self._stage is not SetupStage.IDLE:
            raise RuntimeError("a SetupPipeline instance can only run once")

        descriptor = self.descriptor
        try:
            self._advance(SetupStage.CONNECTIVITY_CHECK)
            probe_server(
                descriptor.download_url,
                timeout=self.settings.connect_timeout_sec,
                logger=self._logger,
            )

            self._advance(SetupStage.DOWNLOADING)
            download = download_runtime(
                self.target,
                descriptor,
                self.sink,
                settings=self.settings,
                client=self._client,
                logger=self._logger,
            )
            if download.cancelled:
                return self._finish(OutcomeStatus.CANCELLED)

            self._advance(SetupStage.VERIFYING)
            try:
                verify_payload(download.payload, descriptor.download_sha512, logger=self._logger)
            except HashMismatchError as exc:
                self.sink.log(f"Unexpected download hash: {exc.expected} != {exc.actual}")
                raise
            self.sink.log("Downloaded runtime hash matches expected hash")

            self._advance(SetupStage.EXTRACTING)
            extraction = extract_runtime(
                descriptor.download_format,
                download.payload,
                self.runtime_dir,
                self.sink,
                prescan=self.settings.prescan_tar,
                logger=self._logger,
            )
            if extraction.cancelled:
                return self._finish(OutcomeStatus.CANCELLED)

            self._advance(SetupStage.FINALIZING)
            self.sink.report_progress("Finalizing", 1.0)
            write_runtime_identity(self.runtime_dir, self.target, descriptor, logger=self._logger)
        except RuntimeSetupError as exc:
            self._logger.error(
                "runtime setup failed",
                extra={"stage": self._stage.value, "error_kind": exc.kind, "error": str(exc)},
            )
            return self._finish(OutcomeStatus.FAILED, exc)

        self._advance(SetupStage.DONE)
        message = (
            f"Successfully set up runtime version {descriptor.version} for target "
            f"'{self.target}' in '{self.runtime_dir}'"
        )
        self.sink.log(message)
        self._logger.info(
            message,
            extra={"stage": "done", "target": self.target, "version": descriptor.version},
        )
        return PipelineOutcome(status=OutcomeStatus.SUCCESS, stage=SetupStage.DONE)


def run_setup(
    target: str,
    descriptor: RuntimeDescriptor,
    runtime_dir: Path,
    *,
    sink: Optional[ProgressSink] = None,
    settings: Optional[BootstrapSettings] = None,
    client: Optional[httpx.Client] = None,
    logger: Optional[logging.Logger] = None,
) -> PipelineOutcome:
    """Provision ``runtime_dir`` with ``descriptor`` and return the outcome."""

    pipeline = SetupPipeline(
        target,
        descriptor,
        runtime_dir,
        sink=sink,
        settings=settings,
        client=client,
        logger=logger,
    )
    return pipeline.run()


class SetupWorker:
    """Run :func:`run_setup` on a dedicated thread.

    The worker owns a :class:`ProgressState`; the presentation layer polls
    :attr:`state` and calls :meth:`cancel`, which is the only way the
    cancellation flag gets set.
    """

    def __init__(
        self,
        target: str,
        descriptor: RuntimeDescriptor,
        runtime_dir: Path,
        *,
        description: str = "",
        settings: Optional[BootstrapSettings] = None,
        client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.state = ProgressState(description)
        self._pipeline = SetupPipeline(
            target,
            descriptor,
            runtime_dir,
            sink=ProgressStateSink(self.state),
            settings=settings,
            client=client,
            logger=logger,
        )
        self._outcome: Optional[PipelineOutcome] = None
        self._exception: Optional[BaseException] = None
        self._thread = threading.Thread(target=self._run, name="piton-setup", daemon=True)

    def _run(self) -> None:
        try:
            self._outcome = self._pipeline.run()
        except Exception as exc:  # re-raised from join() on the caller's thread
            self._exception = exc
        finally:
            self.state.mark_done()

    def start(self) -> "SetupWorker":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self.state.request_cancel()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> Optional[PipelineOutcome]:
        """Wait for the worker; returns ``None`` if ``timeout`` expired first."""

        self._thread.join(timeout)
        if self._thread.is_alive():
            return None
        if self._exception is not None:
            raise self._exception
        return self._outcome
