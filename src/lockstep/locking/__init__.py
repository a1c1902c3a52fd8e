"""Resource locking.

- LockClient: HTTP client of the lock service
- LockRefresher: keep-alive refresh of held leases
- LocalLockManager: per-run lock bookkeeping, local before external
"""

from lockstep.locking._client import Lease, LockClient, LockConflict
from lockstep.locking._client_name import MAX_CLIENT_NAME_LENGTH, generate_client_name
from lockstep.locking._local import (
    RESOURCE_PATTERN,
    LocalLockManager,
    list_conflicts,
    validate_resources,
)
from lockstep.locking._refresh import REFRESH_EXPIRE_IN, REFRESH_INTERVAL, LockRefresher

__all__ = [
    "MAX_CLIENT_NAME_LENGTH",
    "REFRESH_EXPIRE_IN",
    "REFRESH_INTERVAL",
    "RESOURCE_PATTERN",
    "Lease",
    "LocalLockManager",
    "LockClient",
    "LockConflict",
    "LockRefresher",
    "generate_client_name",
    "list_conflicts",
    "validate_resources",
]
