"""Orchestration of a whole run."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Union

from lockstep.backoff import SleepFunc
from lockstep.config import MANUAL_LOCK_EXPIRE_IN, RunConfig
from lockstep.exceptions import LockConflictError
from lockstep.locking._client import LockClient
from lockstep.locking._client_name import generate_client_name
from lockstep.locking._local import LocalLockManager
from lockstep.runner._base import (
    GroupResult,
    GroupStatus,
    RunnerState,
    RunReport,
    TaskStatus,
    TestCase,
)
from lockstep.runner._parallel import parallel_run
from lockstep.runner._results import result_count_string
from lockstep.runner._sequential import sequential_run
from lockstep.runner._tasks import test_cases_to_tasks

logger = logging.getLogger(__name__)

BeforeAllHook = Callable[[RunConfig], Union[Awaitable[Any], Any]]
AfterAllHook = Callable[[RunConfig, Any], Union[Awaitable[None], None]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _with_warning(awaitable: Awaitable[Any], timeout: float, message: str) -> Any:
    """Await `awaitable`, logging a warning if it takes longer than `timeout`."""
    future = asyncio.ensure_future(awaitable)
    done, _ = await asyncio.wait({future}, timeout=timeout)
    if not done:
        logger.warning(f"{message} did not finish within {timeout:g}s, still waiting")
    return await future


def _resolve_locking(config: RunConfig) -> RunConfig:
    if not config.no_locking and not config.no_external_locking and not config.external_locking_url:
        logger.debug("No external_locking_url configured, locking within this process only")
        return config.model_copy(update={"no_external_locking": True})
    return config


def _log_error_summary(config: RunConfig, state: RunnerState) -> None:
    """Re-log failures at the end of long output.

    Groups that turned out flaky are left out.
    """
    for task in state.tasks:
        if task.status != TaskStatus.ERROR:
            continue
        if task.expected_to_fail and not config.expect_nothing:
            continue
        group: GroupResult = state.result_by_group[task.group]
        if group.status == GroupStatus.FLAKY:
            continue
        breadcrumb = f" (breadcrumb: {task.breadcrumb})" if task.breadcrumb else ""
        logger.error(f"FAILED test case {task.name}{breadcrumb}:\n{task.error_text}")


async def _manually_lock(config: RunConfig, client: LockClient | None) -> None:
    resources = config.manually_locked_resources
    if not resources:
        return
    if client is None:
        logger.warning(
            f"manually_lock ignored, external locking is disabled: {','.join(resources)}"
        )
        return
    res = await client.acquire(resources, MANUAL_LOCK_EXPIRE_IN)
    if res is not True:
        raise LockConflictError(res)
    logger.info(f"Manually locked {','.join(resources)} for {MANUAL_LOCK_EXPIRE_IN}ms")


async def run(
    config: RunConfig,
    test_cases: list[TestCase],
    *,
    before_all: BeforeAllHook | None = None,
    after_all: AfterAllHook | None = None,
    lock_client: LockClient | None = None,
    sleep: SleepFunc = asyncio.sleep,
) -> RunReport:
    """Run `test_cases` and return the report of the run.

    `config.concurrency == 0` selects the sequential engine, everything else
    the parallel one. Without `external_locking_url` resources are only locked
    within this process.

    Args:
        config: Run configuration.
        test_cases: Test cases to run. Names must be unique.
        before_all: Called before the run; its return value is passed to
            `after_all`.
        after_all: Called after the run, also if the run failed.
        lock_client: Lock service client to use instead of creating one for
            `config.external_locking_url` (e.g. with an in-process transport).
        sleep: Coroutine function used for lock backoff.

    Raises:
        LockConflictError: If `manually_lock` resources are held by someone else.
        APIError: If the lock service fails while manually locking.
        LockBookkeepingError: If the lock bookkeeping got inconsistent.
    """
    test_start = time.time()
    config = _resolve_locking(config)

    client_name: str | None = None
    owns_client = False
    if config.external_locking_enabled:
        if lock_client is None:
            client_name = generate_client_name()
            lock_client = LockClient(
                config.external_locking_url,  # type: ignore[arg-type]
                client_name,
                timeout=config.external_locking_timeout,
            )
            owns_client = True
        else:
            client_name = lock_client.client_id
        logger.info(f"Using lock service {lock_client.url} as {client_name}")
    else:
        lock_client = None

    try:
        init_data = await _maybe_await(before_all(config)) if before_all else None

        try:
            result_by_group: dict[str, GroupResult] = {}
            tasks = await test_cases_to_tasks(config, test_cases, result_by_group)
            state = RunnerState(tasks=tasks, result_by_group=result_by_group)
            lock_manager = LocalLockManager(config, state, lock_client, sleep=sleep)

            await _manually_lock(config, lock_client)
            await lock_manager.init()
            try:
                if config.concurrency == 0:
                    await sequential_run(config, state, lock_manager)
                else:
                    await parallel_run(config, state, lock_manager, sleep=sleep)
            except BaseException:
                await lock_manager.shutdown(check_released=False)
                raise
            finally:
                if config.verbose or config.ci:
                    _log_error_summary(config, state)
            await lock_manager.shutdown()
        finally:
            if after_all is not None:
                logger.debug("Running after_all hook")
                await _with_warning(
                    _maybe_await(after_all(config, init_data)),
                    config.teardown_timeout,
                    "after_all hook",
                )
    finally:
        if owns_client and lock_client is not None:
            await lock_client.aclose()

    test_end = time.time()
    report = RunReport(
        test_start=test_start,
        test_end=test_end,
        state=state,
        version=_version(),
        client_name=client_name,
    )
    logger.info(result_count_string(config, report.results))
    if state.refresh_failed:
        logger.warning("Refreshing external locks failed during the run")
    return report


def _version() -> str:
    from lockstep import __version__

    return __version__
