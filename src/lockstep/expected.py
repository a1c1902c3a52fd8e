"""Marking sections of a test body as known to be broken."""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from lockstep.exceptions import ExpectedToFailError, ExpectedToSucceedError

if TYPE_CHECKING:
    from lockstep.runner._execution import TaskConfig


@contextmanager
def expected_to_fail(
    task_config: "TaskConfig", message: str, *, expect_nothing: bool = False
) -> Iterator[None]:
    """Mark a section of a test body as expected to fail.

    An error inside the section is re-raised as ExpectedToFailError: the
    attempt is reported as failed as expected, not as a failure. If the
    section succeeds, ExpectedToSucceedError is raised so the stale marker
    gets noticed, unless the run is configured with `expect_nothing`.

    Usage:
        async def run(config):
            with expected_to_fail(config, "BUG-1234", expect_nothing=config.params.get("fixed")):
                await check_checkout_total()

    Args:
        task_config: Config handed to the test body.
        message: Shown in reports (recommended: a ticket URL).
        expect_nothing: Run the section as ordinary code, e.g. on an
            environment where the bug is already fixed.
    """
    if not message:
        raise ValueError("expected_to_fail() requires a message")

    if expect_nothing:
        yield
        return

    try:
        yield
    except Exception as e:
        raise ExpectedToFailError(message) from e

    if not task_config.expect_nothing:
        raise ExpectedToSucceedError(message)
