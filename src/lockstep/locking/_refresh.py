"""Keep-alive refresh of externally held leases."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from lockstep.locking._client import LockClient

if TYPE_CHECKING:
    from lockstep.runner._base import RunnerState

logger = logging.getLogger(__name__)

REFRESH_INTERVAL = 30.0
REFRESH_EXPIRE_IN = 40000


class LockRefresher:
    """Periodically re-acquires every resource held by this process.

    A failed refresh only sets `state.refresh_failed`; running tasks are not
    interrupted. A task whose lease could not be renewed may therefore keep
    running after another client took the resource over.
    """

    def __init__(
        self,
        client: LockClient,
        state: RunnerState,
        interval: float = REFRESH_INTERVAL,
        expire_in: int = REFRESH_EXPIRE_IN,
        verbose: bool = False,
    ) -> None:
        self.client = client
        self.state = state
        self.interval = interval
        self.expire_in = expire_in
        self.verbose = verbose

    async def refresh_once(self) -> bool:
        """Refresh all held leases now.

        Returns:
            True if nothing was held or the refresh succeeded.
        """
        if not self.state.locks:
            return True
        resources = sorted(self.state.locks)

        try:
            res = await self.client.acquire(resources, self.expire_in)
        except Exception as e:
            self.state.refresh_failed = True
            logger.error(f"[exlocking] Lock refresh errored: {e}", exc_info=True)
            return False

        if res is not True:
            self.state.refresh_failed = True
            logger.warning(f"[exlocking] Lock refresh failed: {res}")
            return False

        if self.verbose:
            logger.info(f"[exlocking] Refreshed locks {','.join(resources)}")
        return True

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.refresh_once()

    def start(self) -> None:
        if self.state.lock_refresh_task is not None:
            return
        self.state.lock_refresh_task = asyncio.create_task(
            self._refresh_loop(), name="lock-refresh"
        )

    async def stop(self) -> None:
        task = self.state.lock_refresh_task
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.state.lock_refresh_task = None
