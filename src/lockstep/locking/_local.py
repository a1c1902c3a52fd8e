"""Process-local lock bookkeeping.

The LocalLockManager decides whether a task may start with respect to its
declared resources. Local exclusivity (another task of this process holds a
resource) is checked first and costs no network round trip; only then is the
lock service asked, if external locking is enabled.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from typing import TYPE_CHECKING, Iterable

from lockstep.backoff import ExponentialBackoff, SleepFunc, retry_until
from lockstep.config import RunConfig
from lockstep.exceptions import InvalidResourceError, LockBookkeepingError
from lockstep.locking._client import LockClient
from lockstep.locking._refresh import LockRefresher

if TYPE_CHECKING:
    from lockstep.runner._base import RunnerState, Task

logger = logging.getLogger(__name__)

RESOURCE_PATTERN = re.compile(r"^[-A-Za-z_0-9]+$")


def validate_resources(task: Task) -> None:
    """Raise InvalidResourceError if a declared resource name is malformed."""
    for resource in task.resources:
        if not isinstance(resource, str) or not RESOURCE_PATTERN.match(resource):
            raise InvalidResourceError(
                f"Invalid resource name in task {task.id}: {resource!r}"
            )


def list_conflicts(tasks: Iterable[Task]) -> dict[str, list[Task]]:
    """Find resources declared by more than one task.

    Returns:
        Resource name -> tasks claiming it, only for contended resources, in
        order of first appearance.
    """
    tasks_by_resource: dict[str, list[Task]] = defaultdict(list)
    for task in tasks:
        for resource in task.resources:
            tasks_by_resource[resource].append(task)
    return {
        resource: claimants
        for resource, claimants in tasks_by_resource.items()
        if len(claimants) > 1
    }


class LocalLockManager:
    """Tracks the resources held by this process and talks to the lock service.

    Args:
        config: Run configuration.
        state: State of the current run; `state.locks` is the set of
            resources held by running tasks.
        client: Lock service client. Required when external locking is enabled.
        sleep: Coroutine function used to wait between acquisition attempts.
    """

    def __init__(
        self,
        config: RunConfig,
        state: RunnerState,
        client: LockClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.config = config
        self.state = state
        self.client = client
        self.sleep = sleep
        self._refresher: LockRefresher | None = None

        if self.external and client is None:
            raise ValueError("External locking is enabled but no LockClient was given")

    @property
    def enabled(self) -> bool:
        return not self.config.no_locking

    @property
    def external(self) -> bool:
        return self.enabled and not self.config.no_external_locking

    @property
    def verbose(self) -> bool:
        return self.config.locking_verbose

    def _log(self, message: str) -> None:
        if self.verbose:
            logger.info(message)
        else:
            logger.debug(message)

    async def init(self) -> None:
        """Start the keep-alive refresh of external leases."""
        if not self.external:
            return
        assert self.client is not None
        self._refresher = LockRefresher(
            self.client,
            self.state,
            interval=self.config.lock_refresh_interval,
            expire_in=self.config.lock_refresh_expire_in,
            verbose=self.verbose,
        )
        self._refresher.start()

    async def shutdown(self, check_released: bool = True) -> None:
        """Stop refreshing and check that every lock was released.

        Args:
            check_released: Raise LockBookkeepingError if resources are still
                held. Disabled when the run is already failing.
        """
        if self._refresher is not None:
            await self._refresher.stop()
            self._refresher = None
        if check_released and self.state.locks:
            raise LockBookkeepingError(
                f"Still got some locks on shutdown: {','.join(sorted(self.state.locks))}"
            )

    async def acquire(self, task: Task) -> bool:
        """Try to acquire all resources of `task` without waiting.

        Returns:
            True if the task may start. Lock service errors count as a failed
            acquisition; the task stays pending and is tried again later.
        """
        if not self.enabled or not task.resources:
            return True

        locks = self.state.locks
        held = [r for r in task.resources if r in locks]
        if held:
            self._log(f"[locking] {task.id}: Failed to acquire {','.join(held)}")
            return False

        if self.external:
            assert self.client is not None
            try:
                res = await self.client.acquire(
                    list(task.resources), self.config.lock_acquire_expire_in
                )
            except Exception as e:
                self._log(f"[exlocking] Failed to acquire locks for {task.id}: {e}")
                return False
            if res is not True:
                self._log(f"[exlocking] {task.id}: Failed to acquire {res}")
                return False

        locks.update(task.resources)
        self.state.released_locks.difference_update(task.resources)
        self._log(f"[locking] {task.id}: Acquired {','.join(task.resources)}")
        return True

    async def acquire_eventually(self, task: Task) -> bool:
        """Acquire all resources of `task`, waiting as long as it takes.

        Waits 50ms after the first failed attempt, doubling up to 10s.
        """
        if not self.enabled:
            return True
        if task.resources:
            self._log(
                f"[locking] {task.id}: Trying to eventually acquire "
                f"{','.join(task.resources)}"
            )
        return await retry_until(
            lambda: self.acquire(task),
            ExponentialBackoff(initial=0.05, maximum=10.0),
            sleep=self.sleep,
        )

    async def release(self, task: Task) -> None:
        """Release all resources of `task`.

        A conflict reported by the lock service means our lease expired and
        was taken over; it is logged, not raised. Releasing a resource that
        this process never acquired is a bookkeeping error.
        """
        if not self.enabled or not task.resources:
            return

        locks = self.state.locks
        released = self.state.released_locks
        for resource in task.resources:
            if resource not in locks and resource not in released:
                raise LockBookkeepingError(
                    f"Trying to release {resource} for {task.id}, but not in "
                    f"current locks {','.join(sorted(locks))}"
                )

        if self.external:
            assert self.client is not None
            try:
                res = await self.client.release(list(task.resources))
                if res is not True:
                    logger.warning(f"[exlocking] {task.id}: Failed to release {res}")
            except Exception as e:
                logger.error(f"[exlocking] Failed to release for {task.id}: {e}")

        already_released = [r for r in task.resources if r not in locks]
        if already_released:
            self._log(
                f"[locking] {task.id}: {','.join(already_released)} already released"
            )
        locks.difference_update(task.resources)
        released.update(task.resources)
        self._log(f"[locking] {task.id}: Released {','.join(task.resources)}")
