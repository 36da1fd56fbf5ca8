"""Cooperative cancellation primitive shared by the download and unpack loops.

The setup pipeline never interrupts its worker thread.  The download loop
and the extractor poll their progress sink between chunks and entries;
headless callers back that sink with a token.
"""

from __future__ import annotations

import threading


class CancellationToken:
    """One-way flag raised by the presentation side to stop a runtime setup.

    Once set it stays set; a new setup attempt gets a new token.
    """

    def __init__(self) -> None:
        self._requested = threading.Event()

    def cancel(self) -> None:
        self._requested.set()

    def is_cancelled(self) -> bool:
        return self._requested.is_set()
