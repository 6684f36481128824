"""Background sweep that destroys sessions past their expiry.

Backstop for the per-session timers, which can be lost when the process is
suspended or the clock jumps. Overlap with timer-driven destruction is safe
because destroy is idempotent.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime

from .lifecycle import SessionLifecycleManager
from .logger import SessionLogger
from .types import utc_now

logger = logging.getLogger(__name__)


class ExpiryReaper:
    """Runs sweep() every ``interval`` seconds until stopped."""

    def __init__(
        self,
        lifecycle: SessionLifecycleManager,
        interval: float | None = None,
        session_logger: SessionLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lifecycle = lifecycle
        self._interval = interval if interval is not None else lifecycle.config.cleanup_interval
        self._logger = session_logger or SessionLogger()
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep loop. Calling it while running is a no-op."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._logger.log_cleanup_started(self._lifecycle.count())

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def sweep(self) -> int:
        """Destroy every session whose expiry has passed.

        Returns:
            Number of sessions destroyed
        """
        now = self._clock()
        snapshot = self._lifecycle.store.all()
        expired = [sid for sid, record in snapshot.items() if record.is_expired(now)]

        for session_id in expired:
            self._logger.log_session_timeout(session_id)

        # Started together so one stuck close() does not hold back the rest
        results = await asyncio.gather(
            *(self._lifecycle.destroy(session_id) for session_id in expired),
            return_exceptions=True,
        )
        cleaned = sum(1 for result in results if result is True)

        self._logger.log_cleanup_completed(cleaned, self._lifecycle.count())
        return cleaned

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Error in session reaper: {e}")
                self._logger.log_session_error(None, e, {"context": "cleanup-service"})
