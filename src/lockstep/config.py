"""Run configuration for Lockstep.

A run is configured by a single flat `RunConfig` object. Values are taken
from (highest priority first):
1. Explicit keyword arguments
2. Environment variables (LOCKSTEP_*)
3. Defaults

Usage:
    from lockstep.config import RunConfig

    config = RunConfig(concurrency=4, repeat_flaky=3)
    config = RunConfig()  # picks up LOCKSTEP_CONCURRENCY etc.

Command line parsing and config files are left to the caller; they only need
to produce the keyword arguments.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# --- Constants ---

DEFAULT_CONCURRENCY = 10
DEFAULT_TASK_TIMEOUT = 3600.0
DEFAULT_TEARDOWN_TIMEOUT = 30.0
DEFAULT_LOCK_REFRESH_INTERVAL = 30.0
DEFAULT_LOCK_EXPIRE_IN = 40000
MANUAL_LOCK_EXPIRE_IN = 60000


class RunConfig(BaseSettings):
    """Configuration of a single scheduling run.

    Attributes:
        concurrency: Maximum number of tasks running at the same time.
            0 selects the sequential engine.
        repeat: Number of independent tasks created per test case.
        repeat_flaky: Maximum number of attempts per task group before an
            error is final. 0 disables flaky detection.
        timeout: Per-task timeout in seconds.
        teardown_timeout: Timeout in seconds for all teardown hooks of a task.
        no_locking: Disable resource locking altogether.
        no_external_locking: Only lock within this process.
        external_locking_url: URL of the lock service namespace, e.g.
            `http://lockserver:1524/my-project`.
        external_locking_timeout: HTTP timeout (seconds) for lock service calls.
        lock_refresh_interval: Seconds between keep-alive refreshes of held leases.
        lock_refresh_expire_in: Lease duration (ms) requested by refreshes.
        lock_acquire_expire_in: Lease duration (ms) requested on acquisition.
        manually_lock: Comma separated resources to lock before the run starts.
        fail_fast: Terminate the process after the first task error.
        expect_nothing: Ignore all expected-to-fail markers.
        locking_verbose: Log every lock acquisition and release.
        verbose: Verbose scheduler logging.
        ci: Running in CI; enables the trailing error summary.
        params: Free-form settings made available to test bodies.
    """

    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=0)
    repeat: int = Field(default=1, ge=1)
    repeat_flaky: int = Field(default=0, ge=0)
    timeout: float = Field(default=DEFAULT_TASK_TIMEOUT, gt=0)
    teardown_timeout: float = Field(default=DEFAULT_TEARDOWN_TIMEOUT, gt=0)

    # Locking
    no_locking: bool = False
    no_external_locking: bool = False
    external_locking_url: str | None = None
    external_locking_timeout: float = 30.0
    lock_refresh_interval: float = Field(default=DEFAULT_LOCK_REFRESH_INTERVAL, gt=0)
    lock_refresh_expire_in: int = Field(default=DEFAULT_LOCK_EXPIRE_IN, gt=0)
    lock_acquire_expire_in: int = Field(default=DEFAULT_LOCK_EXPIRE_IN, gt=0)
    manually_lock: str | None = None

    fail_fast: bool = False
    expect_nothing: bool = False

    # Output
    locking_verbose: bool = False
    verbose: bool = False
    ci: bool = False

    params: dict[str, Any] = Field(default_factory=dict)

    model_config = SettingsConfigDict(
        env_prefix="LOCKSTEP_",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_fail_fast(self) -> "RunConfig":
        # Exiting mid-run would leave leases behind on the lock service.
        if self.fail_fast and not self.no_locking:
            raise ValueError("fail_fast can only be used together with no_locking")
        return self

    @property
    def external_locking_enabled(self) -> bool:
        return (
            not self.no_locking
            and not self.no_external_locking
            and bool(self.external_locking_url)
        )

    @property
    def manually_locked_resources(self) -> list[str]:
        if not self.manually_lock:
            return []
        return [r.strip() for r in self.manually_lock.split(",") if r.strip()]
