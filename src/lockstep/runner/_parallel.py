"""Parallel engine: a bounded worker pool with lock-aware admission.

The scheduler loop is the only place that mutates the run state. Each
admitted task runs as its own asyncio task and reports back only by
finishing.

Admission scans the pending tasks in definition order and starts the first
one whose resources can be acquired right now. A task blocked on a resource
does not block the tasks behind it. If every pending task is blocked, the
loop backs off (10ms doubling up to 10s, continuing at 100ms after a task
was admitted) before scanning again.
"""

from __future__ import annotations

import asyncio
import logging

from lockstep.backoff import ExponentialBackoff, SleepFunc
from lockstep.config import RunConfig
from lockstep.exceptions import LockBookkeepingError
from lockstep.locking._local import LocalLockManager
from lockstep.runner._base import RunnerState, Task, TaskStatus
from lockstep.runner._execution import run_task
from lockstep.runner._results import finish_attempt, start_attempt

logger = logging.getLogger(__name__)

FINISHED_STATUSES = (TaskStatus.SKIPPED, TaskStatus.SUCCESS, TaskStatus.ERROR)


async def _admit_next(
    state: RunnerState, lock_manager: LocalLockManager
) -> tuple[Task | None, bool]:
    """Find the first pending task whose resources can be acquired.

    Returns:
        (task, any_locked): the admitted task (resources acquired) or None,
        and whether some pending task was blocked by a lock.
    """
    any_locked = False
    for task in state.tasks:
        if task.status != TaskStatus.TODO:
            continue
        if not await lock_manager.acquire(task):
            any_locked = True
            continue
        return task, any_locked
    return None, any_locked


async def parallel_run(
    config: RunConfig,
    state: RunnerState,
    lock_manager: LocalLockManager,
    sleep: SleepFunc = asyncio.sleep,
) -> None:
    """Run all tasks of `state` with at most `config.concurrency` at a time.

    Args:
        config: Run configuration; `concurrency` must be at least 1.
        state: State of the run.
        lock_manager: Lock manager of the run.
        sleep: Used to back off while every pending task is blocked and
            nothing is running.
    """
    if config.concurrency < 1:
        raise ValueError("parallel_run requires concurrency >= 1")

    running: dict[asyncio.Task, Task] = {}
    backoff = ExponentialBackoff(initial=0.01, maximum=10.0, reset_to=0.1)
    lock_log = logger.info if (config.verbose or config.locking_verbose) else logger.debug

    while True:
        blocked = False
        while len(running) < config.concurrency:
            task, any_locked = await _admit_next(state, lock_manager)
            if task is None:
                blocked = any_locked
                break
            backoff.reset()
            start_attempt(state, task)
            future = asyncio.create_task(
                run_task(config, task, state), name=f"lockstep:{task.id}"
            )
            running[future] = task
            logger.debug(f"[runner] Started task {task.id}")

        if not running:
            if blocked:
                delay = backoff.next()
                lock_log(f"[runner] All tasks are locked, sleeping for {delay * 1000:g} ms")
                await sleep(delay)
                continue

            unfinished = [t.id for t in state.tasks if t.status not in FINISHED_STATUSES]
            if unfinished:
                raise LockBookkeepingError(
                    f"Would end run, but tasks are unfinished: {','.join(unfinished)}"
                )
            return

        # Blocked tasks are rescanned after the backoff delay even if nothing finished
        timeout = None
        if blocked:
            timeout = backoff.next()
            lock_log(
                f"[runner] Pending tasks are locked, rescanning in {timeout * 1000:g} ms"
            )

        logger.debug(
            f"[runner] Waiting for one of {', '.join(t.id for t in running.values())}"
        )
        done, _ = await asyncio.wait(
            running, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )

        for future in done:
            task = running.pop(future)
            # run_task contains errors of the body; anything raised here is a bug
            future.result()
            logger.debug(f"[runner] Finished task {task.id} ({task.status})")
            await finish_attempt(config, state, lock_manager, task)
