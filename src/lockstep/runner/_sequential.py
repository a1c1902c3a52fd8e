"""Sequential engine.

Runs one task at a time in definition order. Intended for debugging and for
suites that must not run concurrently at all (`concurrency=0`).
"""

from __future__ import annotations

import logging

from lockstep.config import RunConfig
from lockstep.locking._local import LocalLockManager
from lockstep.runner._base import RunnerState, TaskStatus
from lockstep.runner._execution import run_task
from lockstep.runner._results import finish_attempt, start_attempt

logger = logging.getLogger(__name__)


async def sequential_run(
    config: RunConfig, state: RunnerState, lock_manager: LocalLockManager
) -> None:
    """Run all tasks of `state` one after another.

    There is nothing else to do while a task waits for its resources, so
    acquisition blocks (`acquire_eventually`).
    """
    skipped = [task for task in state.tasks if task.status == TaskStatus.SKIPPED]
    if skipped:
        logger.info(
            f"Skipped {len(skipped)} tests ({' '.join(t.name for t in skipped)})"
        )

    # Flaky retries are appended to state.tasks while iterating
    for task in state.tasks:
        if task.status != TaskStatus.TODO:
            continue
        await lock_manager.acquire_eventually(task)

        logger.info(f"{task.name} ...")
        start_attempt(state, task)
        await run_task(config, task, state)
        await finish_attempt(config, state, lock_manager, task)
