"""
Periodic expired-lock sweeper.

Runs BookingLockManager.sweep_expired on a fixed interval in a
background task. Correctness never depends on it: acquire already
treats expired records as absent. The sweeper only keeps the lock
table from growing without bound.

Example:
    >>> async with LockSweeper(manager, interval_seconds=60.0):
    ...     await serve_forever()
"""

from __future__ import annotations

import asyncio
import logging

from dispatchlock.manager import BookingLockManager

logger = logging.getLogger(__name__)


class LockSweeper:
    """
    Background task calling ``sweep_expired`` every ``interval_seconds``.

    Args:
        manager: Lock manager whose store and cache are swept
        interval_seconds: Seconds between sweeps
            (defaults to the manager's ``config.sweep_interval_seconds``)
    """

    def __init__(
        self,
        manager: BookingLockManager,
        interval_seconds: float | None = None,
    ) -> None:
        if interval_seconds is None:
            interval_seconds = manager.config.sweep_interval_seconds
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        self._manager = manager
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._sweeps_run = 0
        self._records_removed = 0

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def sweeps_run(self) -> int:
        """Number of completed sweeps since construction."""
        return self._sweeps_run

    @property
    def records_removed(self) -> int:
        """Total lock records deleted by this sweeper."""
        return self._records_removed

    async def run_once(self) -> int:
        """Run one sweep immediately and return the number of records removed."""
        removed = await self._manager.sweep_expired()
        self._sweeps_run += 1
        self._records_removed += removed
        return removed

    async def _sweep_loop(self) -> None:
        logger.info(
            "Starting expired lock sweeper",
            extra={"interval_seconds": self._interval_seconds},
        )

        while True:
            try:
                await asyncio.sleep(self._interval_seconds)
                removed = await self.run_once()

                if removed > 0:
                    logger.debug(
                        "Expired lock sweep completed",
                        extra={
                            "records_removed": removed,
                            "total_records_removed": self._records_removed,
                        },
                    )
            except asyncio.CancelledError:
                logger.debug("Expired lock sweeper cancelled")
                break
            except Exception as e:
                logger.warning(
                    "Error in expired lock sweeper",
                    extra={"error": str(e)},
                )
                # Next attempt waits a full interval

        logger.debug(
            "Expired lock sweeper ended",
            extra={"sweeps_run": self._sweeps_run},
        )

    def start(self) -> None:
        """Start the background task. Calling it while running is a no-op."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._sweep_loop(), name="booking-lock-sweeper")

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> LockSweeper:
        self.start()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.stop()

    def __repr__(self) -> str:
        return (
            f"LockSweeper(interval_seconds={self._interval_seconds}, "
            f"running={self.is_running}, sweeps_run={self._sweeps_run})"
        )


__all__ = [
    "LockSweeper",
]
