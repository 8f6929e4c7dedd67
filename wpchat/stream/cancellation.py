"""
Cancellation Controller

Owns the abort signal of one in-flight stream. Cancellation is cooperative:
the read loop checks the flag before every chunk and every record, and the
bound read task is cancelled so a pending chunk read stops right away.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancellationController:
    """Abort handle for a single stream session."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._task: asyncio.Task[object] | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def bind(self, task: asyncio.Task[object]) -> None:
        """Attach the task that reads the transport so cancel() can interrupt it.

        An already-cancelled controller is left to the read loop's flag checks.
        """
        self._task = task

    def unbind(self) -> None:
        """Forget the read task once the session no longer owns it."""
        self._task = None

    def cancel(self) -> None:
        """Signal abort. Safe to call more than once."""
        if self._event.is_set():
            return
        self._event.set()
        logger.info("→ Transport: cancellation requested")
        if self._task is not None and not self._task.done() and self._task is not _current_task():
            self._task.cancel()


def _current_task() -> asyncio.Task[object] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
