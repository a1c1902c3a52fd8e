from importlib.metadata import version

from lockstep.config import RunConfig
from lockstep.exceptions import (
    APIError,
    ExpectedToFailError,
    ExpectedToSucceedError,
    InvalidResourceError,
    LockBookkeepingError,
    LockConflictError,
    LockServiceUnavailableError,
    LockstepError,
    TaskTimeoutError,
)
from lockstep.expected import expected_to_fail
from lockstep.locking import LockClient, generate_client_name, list_conflicts
from lockstep.runner import (
    GroupStatus,
    RunReport,
    TaskConfig,
    TaskStatus,
    TestCase,
    get_results,
    result_count_string,
    run,
)

__version__ = version("lockstep")

__all__ = [
    "__version__",
    "APIError",
    "ExpectedToFailError",
    "ExpectedToSucceedError",
    "GroupStatus",
    "InvalidResourceError",
    "LockBookkeepingError",
    "LockClient",
    "LockConflictError",
    "LockServiceUnavailableError",
    "LockstepError",
    "RunConfig",
    "RunReport",
    "TaskConfig",
    "TaskStatus",
    "TaskTimeoutError",
    "TestCase",
    "expected_to_fail",
    "generate_client_name",
    "get_results",
    "list_conflicts",
    "result_count_string",
    "run",
]
