# === NAVMAP v1 ===
# {
#   "module": "Piton.RuntimeSetup.progress",
#   "purpose": "Progress-sink interface consumed by the setup pipeline and its presentation variants",
#   "sections": [
#     {"id": "protocol", "name": "ProgressSink Protocol", "anchor": "PRT", "kind": "api"},
#     {"id": "null", "name": "NullProgressSink", "anchor": "NUL", "kind": "api"},
#     {"id": "console", "name": "ConsoleProgressSink", "anchor": "CON", "kind": "api"},
#     {"id": "state", "name": "Shared Progress State", "anchor": "STA", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Progress reporting and cancellation surface for the setup pipeline.

The pipeline only ever talks to a :class:`ProgressSink`.  Three variants
exist:

- :class:`NullProgressSink` for headless runs (optionally wired to a
  :class:`~Piton.RuntimeSetup.cancellation.CancellationToken`),
- :class:`ConsoleProgressSink` rendering a ``tqdm`` bar on stderr,
- :class:`ProgressStateSink` writing into a lock-guarded
  :class:`ProgressState` that a separate presentation thread polls, which is
  how a dialog-style front end observes the worker and requests cancellation.
"""

from __future__ import annotations

import sys
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Protocol, TextIO, runtime_checkable

from tqdm import tqdm

from .cancellation import CancellationToken

__all__ = [
    "ProgressSink",
    "NullProgressSink",
    "ConsoleProgressSink",
    "ProgressSnapshot",
    "ProgressState",
    "ProgressStateSink",
]

_BAR_RESOLUTION = 100_000


@runtime_checkable
class ProgressSink(Protocol):
    """Capabilities the setup pipeline needs from a presentation surface."""

    def report_progress(self, message: str, fraction: float) -> None:
        """Show ``message`` and a completion ``fraction`` in ``[0, 1]``."""

    def is_cancelled(self) -> bool:
        """Return ``True`` once the user asked to abort."""

    def log(self, message: str) -> None:
        """Emit a human-readable status line."""


def _clamp(fraction: float) -> float:
    if fraction != fraction:  # NaN
        return 0.0
    return min(max(fraction, 0.0), 1.0)


class NullProgressSink:
    """Sink that discards progress output.

    Cancellation can still be requested through ``token``.
    """

    def __init__(self, token: Optional[CancellationToken] = None) -> None:
        self._token = token

    def report_progress(self, message: str, fraction: float) -> None:
        return None

    def is_cancelled(self) -> bool:
        return self._token is not None and self._token.is_cancelled()

    def log(self, message: str) -> None:
        return None


class ConsoleProgressSink:
    """Sink rendering a single ``tqdm`` progress bar.

    Cancellation is driven by ``token``, if one is supplied.
    """

    def __init__(
        self,
        description: str,
        *,
        token: Optional[CancellationToken] = None,
        stream: Optional[TextIO] = None,
        disable: bool = False,
    ) -> None:
        self._token = token
        self._stream = stream if stream is not None else sys.stderr
        self._bar = tqdm(
            total=_BAR_RESOLUTION,
            file=self._stream,
            disable=disable,
            leave=False,
            dynamic_ncols=True,
            bar_format="{desc} {percentage:3.0f}%|{bar}|",
        )
        if description:
            self._bar.write(description, file=self._stream)

    def report_progress(self, message: str, fraction: float) -> None:
        self._bar.n = int(_clamp(fraction) * _BAR_RESOLUTION)
        self._bar.set_description_str(message, refresh=False)
        self._bar.refresh()

    def is_cancelled(self) -> bool:
        return self._token is not None and self._token.is_cancelled()

    def log(self, message: str) -> None:
        self._bar.write(message, file=self._stream)

    def close(self) -> None:
        self._bar.close()

    def __enter__(self) -> "ConsoleProgressSink":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    """Point-in-time copy of :class:`ProgressState` for a presentation thread."""

    dirty: bool
    text: str
    fraction: float
    cancelled: bool
    done: bool
    log_lines: tuple[str, ...]


class ProgressState:
    """Single point of shared mutable state between the worker and the UI.

    The worker writes ``text``/``fraction``/``done`` and appends log lines;
    the presentation layer reads snapshots and is the only writer of the
    cancellation flag.
    """

    def __init__(self, text: str = "", *, max_log_lines: int = 256) -> None:
        self._lock = threading.Lock()
        self._dirty = True
        self._text = text
        self._fraction = 0.0
        self._cancelled = False
        self._done = False
        self._log_lines: Deque[str] = deque(maxlen=max_log_lines)

    def update(self, text: str, fraction: float) -> None:
        with self._lock:
            self._text = text
            self._fraction = _clamp(fraction)
            self._dirty = True

    def append_log(self, message: str) -> None:
        with self._lock:
            self._log_lines.append(message)
            self._dirty = True

    def request_cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            self._dirty = True

    def mark_done(self) -> None:
        with self._lock:
            self._done = True
            self._dirty = True

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def done(self) -> bool:
        with self._lock:
            return self._done

    def snapshot(self, *, consume: bool = True) -> ProgressSnapshot:
        """Return the current state; ``consume`` clears the dirty bit and drains log lines."""

        with self._lock:
            lines: List[str] = list(self._log_lines)
            snap = ProgressSnapshot(
                dirty=self._dirty,
                text=self._text,
                fraction=self._fraction,
                cancelled=self._cancelled,
                done=self._done,
                log_lines=tuple(lines),
            )
            if consume:
                self._dirty = False
                self._log_lines.clear()
            return snap


class ProgressStateSink:
    """Adapter exposing a :class:`ProgressState` through the sink interface."""

    def __init__(self, state: ProgressState) -> None:
        self.state = state

    def report_progress(self, message: str, fraction: float) -> None:
        self.state.update(message, fraction)

    def is_cancelled(self) -> bool:
        return self.state.cancelled

    def log(self, message: str) -> None:
        self.state.append_log(message)
