"""Lock service: lease-based mutual exclusion over plain HTTP.

- LockStore: in-memory namespaced leases
- create_app(): FastAPI application serving a LockStore
- serve(): run the service with uvicorn
"""

from lockstep.lockserver._store import LeaseRecord, LockStore
from lockstep.lockserver.app import create_app, serve
from lockstep.lockserver.config import LockServerSettings
from lockstep.lockserver.schemas import (
    MAX_CLIENT_LENGTH,
    MAX_EXPIRE_IN,
    MAX_RESOURCE_LENGTH,
    LeaseResponse,
    LockAcquireRequest,
    LockConflictResponse,
    LockReleaseRequest,
)

__all__ = [
    "MAX_CLIENT_LENGTH",
    "MAX_EXPIRE_IN",
    "MAX_RESOURCE_LENGTH",
    "LeaseRecord",
    "LeaseResponse",
    "LockAcquireRequest",
    "LockConflictResponse",
    "LockReleaseRequest",
    "LockServerSettings",
    "LockStore",
    "create_app",
    "serve",
]
