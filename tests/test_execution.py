"""Tests for single task execution, teardown and expected failures."""

import asyncio
import logging
import threading

import pytest

from lockstep.config import RunConfig
from lockstep.exceptions import (
    ExpectedToFailError,
    ExpectedToSucceedError,
    TaskTimeoutError,
)
from lockstep.expected import expected_to_fail
from lockstep.runner import (
    ExpectedFailure,
    Failure,
    GroupStatus,
    RunnerState,
    Success,
    Task,
    TaskStatus,
    TestCase,
    UnexpectedSuccess,
    classify_error,
    get_results,
    run,
    run_task,
)


def make_task(test_case: TestCase, **kwargs) -> Task:
    return Task(
        id=test_case.name,
        name=test_case.name,
        group=test_case.name,
        test_case=test_case,
        resources=test_case.resources,
        **kwargs,
    )


def local_config(**kwargs) -> RunConfig:
    kwargs.setdefault("no_external_locking", True)
    return RunConfig(**kwargs)


class TestRunTask:
    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        async def body(config):
            seen["name"] = config.task_name
            seen["params"] = config.params

        task = make_task(TestCase(name="t", run=body))
        await run_task(local_config(params={"env": "dev"}), task)

        assert task.status == TaskStatus.SUCCESS
        assert task.outcome == Success()
        assert task.duration is not None and task.duration >= 0
        assert seen == {"name": "t", "params": {"env": "dev"}}

    @pytest.mark.asyncio
    async def test_sync_body_runs_in_thread(self):
        threads = []

        def body(config):
            threads.append(threading.current_thread())

        task = make_task(TestCase(name="t", run=body))
        await run_task(local_config(), task)

        assert task.status == TaskStatus.SUCCESS
        assert threads[0] is not threading.main_thread()

    @pytest.mark.asyncio
    async def test_failure(self, caplog):
        async def body(config):
            config.breadcrumb = "opened checkout page"
            raise AssertionError("total mismatch")

        task = make_task(TestCase(name="t", run=body))
        with caplog.at_level(logging.ERROR):
            await run_task(local_config(), task)

        assert task.status == TaskStatus.ERROR
        assert isinstance(task.outcome, Failure)
        assert isinstance(task.error, AssertionError)
        assert "total mismatch" in task.error_text
        assert task.breadcrumb == "opened checkout page"
        assert "FAILED test case t (breadcrumb: opened checkout page)" in caplog.text

    @pytest.mark.asyncio
    async def test_timeout(self):
        release = asyncio.Event()
        finished = []

        async def body(config):
            await release.wait()
            finished.append(True)

        task = make_task(TestCase(name="slow", run=body))
        state = RunnerState(tasks=[task], result_by_group={})
        await run_task(local_config(timeout=0.05), task, state)

        assert task.status == TaskStatus.ERROR
        assert isinstance(task.error, TaskTimeoutError)
        assert str(task.error) == 'Timeout: Test case "slow" didn\'t finish in 0.05s.'

        # The body keeps running in the background until it settles
        assert len(state.abandoned) == 1
        release.set()
        await asyncio.gather(*state.abandoned)
        await asyncio.sleep(0)
        assert finished == [True]
        assert state.abandoned == set()

    @pytest.mark.asyncio
    async def test_fail_fast_exits(self):
        async def body(config):
            raise RuntimeError("boom")

        task = make_task(TestCase(name="t", run=body))
        with pytest.raises(SystemExit) as exc_info:
            await run_task(local_config(fail_fast=True, no_locking=True), task)
        assert exc_info.value.code == 3


class TestTeardown:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("fails", [False, True])
    async def test_hooks_always_run(self, fails):
        calls = []

        async def async_hook(config):
            calls.append("async")

        def sync_hook(config):
            calls.append("sync")

        async def body(config):
            config.on_teardown(async_hook)
            config.on_teardown(sync_hook)
            if fails:
                raise RuntimeError("boom")

        task = make_task(TestCase(name="t", run=body))
        await run_task(local_config(), task)
        assert sorted(calls) == ["async", "sync"]

    @pytest.mark.asyncio
    async def test_failing_hook_is_contained(self, caplog):
        def bad_hook(config):
            raise RuntimeError("cleanup failed")

        async def body(config):
            config.on_teardown(bad_hook)

        task = make_task(TestCase(name="t", run=body))
        with caplog.at_level(logging.ERROR):
            await run_task(local_config(), task)

        assert task.status == TaskStatus.SUCCESS
        assert "INTERNAL ERROR" in caplog.text

    @pytest.mark.asyncio
    async def test_slow_hook_times_out(self, caplog):
        async def slow_hook(config):
            await asyncio.sleep(10)

        async def body(config):
            config.on_teardown(slow_hook)

        task = make_task(TestCase(name="t", run=body))
        with caplog.at_level(logging.ERROR):
            await run_task(local_config(teardown_timeout=0.05), task)

        assert task.status == TaskStatus.SUCCESS
        assert "teardown took longer than 0.05s" in caplog.text

    @pytest.mark.asyncio
    async def test_blocking_sync_hook_times_out(self, caplog):
        gate = threading.Event()
        threads = []

        def blocking_hook(config):
            threads.append(threading.current_thread())
            gate.wait(timeout=5)

        async def body(config):
            config.on_teardown(blocking_hook)

        task = make_task(TestCase(name="t", run=body))
        try:
            with caplog.at_level(logging.ERROR):
                await run_task(local_config(teardown_timeout=0.05), task)
            assert not gate.is_set()
        finally:
            gate.set()

        assert task.status == TaskStatus.SUCCESS
        assert "teardown took longer than 0.05s" in caplog.text
        assert threads[0] is not threading.main_thread()


class TestExpectedToFail:
    @pytest.mark.asyncio
    async def test_inline_section_fails(self):
        async def body(config):
            with expected_to_fail(config, "BUG-1"):
                raise AssertionError("still broken")

        task = make_task(TestCase(name="t", run=body))
        await run_task(local_config(), task)

        assert task.status == TaskStatus.SUCCESS
        assert isinstance(task.outcome, ExpectedFailure)
        assert task.outcome.reason == "BUG-1"
        assert isinstance(task.outcome.error, AssertionError)
        assert task.expected_to_fail == "BUG-1"

    @pytest.mark.asyncio
    async def test_inline_section_passes(self):
        async def body(config):
            with expected_to_fail(config, "BUG-1"):
                pass

        task = make_task(TestCase(name="t", run=body))
        await run_task(local_config(), task)

        assert task.status == TaskStatus.SUCCESS
        assert task.outcome == UnexpectedSuccess(reason="BUG-1")

    @pytest.mark.asyncio
    async def test_inline_expect_nothing(self):
        async def body(config):
            with expected_to_fail(config, "BUG-1", expect_nothing=True):
                raise AssertionError("regression")

        task = make_task(TestCase(name="t", run=body))
        await run_task(local_config(), task)

        assert task.status == TaskStatus.ERROR
        assert isinstance(task.outcome, Failure)

    @pytest.mark.asyncio
    async def test_run_expect_nothing_ignores_passing_section(self):
        async def body(config):
            with expected_to_fail(config, "BUG-1"):
                pass

        task = make_task(TestCase(name="t", run=body))
        await run_task(local_config(expect_nothing=True), task)
        assert task.outcome == Success()

    def test_requires_message(self):
        with pytest.raises(ValueError):
            with expected_to_fail(None, ""):
                pass

    def test_classify_error(self):
        cause = KeyError("x")
        error = ExpectedToFailError("BUG-1")
        error.__cause__ = cause
        assert classify_error(error) == ExpectedFailure(reason="BUG-1", error=cause)
        assert classify_error(ExpectedToSucceedError("BUG-1")) == UnexpectedSuccess(
            reason="BUG-1"
        )
        boom = RuntimeError("boom")
        assert classify_error(boom) == Failure(error=boom)

    @pytest.mark.asyncio
    async def test_declared_failure_is_not_retried(self):
        async def body(config):
            raise AssertionError("known bug")

        config = local_config(repeat_flaky=3)
        report = await run(config, [TestCase(name="t", run=body, expected_to_fail="BUG-2")])

        result = report.results[0]
        assert result.status == GroupStatus.ERROR
        assert len(result.task_results) == 1
        assert get_results(config, report.results).expected_to_fail == [result]

    @pytest.mark.asyncio
    async def test_declared_failure_passes(self):
        async def body(config):
            pass

        config = local_config()
        report = await run(
            config, [TestCase(name="t", run=body, expected_to_fail=lambda c: True)]
        )

        result = report.results[0]
        assert result.status == GroupStatus.SUCCESS
        assert isinstance(result.last_outcome, UnexpectedSuccess)
        assert get_results(config, report.results).expected_to_fail_but_passed == [
            result
        ]

    @pytest.mark.asyncio
    async def test_declared_failure_with_expect_nothing(self):
        async def body(config):
            raise AssertionError("known bug")

        config = local_config(expect_nothing=True, repeat_flaky=2)
        report = await run(config, [TestCase(name="t", run=body, expected_to_fail=True)])

        result = report.results[0]
        assert result.status == GroupStatus.ERROR
        assert len(result.task_results) == 2
        assert get_results(config, report.results).errored == [result]
