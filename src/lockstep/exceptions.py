"""Lockstep exceptions.

This module provides the exception classes raised by the scheduler, the lock
manager and the lock service client. Errors raised by test bodies themselves
are never wrapped; they are recorded on the task that raised them.
"""

from __future__ import annotations

import typing

if typing.TYPE_CHECKING:
    from lockstep.locking._client import LockConflict


class LockstepError(Exception):
    """Base exception for all Lockstep errors."""

    pass


class APIError(LockstepError):
    """Error communicating with the lock service.

    Attributes:
        status_code: HTTP status code (if available)
        detail: Error detail message from the service
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        self.status_code = status_code
        self.detail = detail
        parts = [message]
        if status_code:
            parts.append(f"(HTTP {status_code})")
        if detail:
            parts.append(f": {detail}")
        super().__init__(" ".join(parts))


class LockServiceUnavailableError(APIError):
    """The lock service could not be reached (connection error, timeout, ...)."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message, status_code=None, detail=detail)


class LockConflictError(LockstepError):
    """A resource is leased by another client.

    Only raised where a conflict is fatal (e.g. manually locked resources at
    the start of a run). Everywhere else a conflict is an ordinary return value.
    """

    def __init__(self, conflict: "LockConflict", message: str | None = None):
        self.conflict = conflict
        super().__init__(
            message
            or (
                f"Failed to lock {conflict.first_resource}: locked by "
                f"{conflict.client}, expires in {conflict.expire_in}ms"
            )
        )


class LockBookkeepingError(LockstepError):
    """The local lock bookkeeping is inconsistent.

    Indicates a scheduler bug, e.g. releasing a resource that was never
    acquired. Aborts the run.
    """

    pass


class InvalidResourceError(LockstepError, ValueError):
    """A task declares a resource name that is not `[-A-Za-z_0-9]+`."""

    pass


class TaskTimeoutError(LockstepError, TimeoutError):
    """A test body did not finish within the configured timeout."""

    def __init__(self, test_name: str, timeout: float):
        self.test_name = test_name
        self.timeout = timeout
        super().__init__(
            f'Timeout: Test case "{test_name}" didn\'t finish in {timeout:g}s.'
        )


class ExpectedToFailError(LockstepError):
    """A section marked with `expected_to_fail()` failed, as expected.

    The original error is available as `__cause__`.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Section failed as expected ({reason})")


class ExpectedToSucceedError(LockstepError):
    """A section marked with `expected_to_fail()` unexpectedly succeeded."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            f"Section marked as expected to fail ({reason}), but succeeded."
            " Set expect_nothing to ignore this message"
        )
