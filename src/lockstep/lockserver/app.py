"""HTTP lock service.

Protocol, per namespace `ns` (`[-_0-9A-Za-z]+`):

    GET    /ns   -> 200 [{resource, client, expireIn}, ...]   non-expired leases
    POST   /ns   {client, resources, expireIn}  -> 200 {} | 409 conflict
    DELETE /ns   {client, resources}            -> 200 {} | 409 conflict

A conflict body is `{firstResource, client, expireIn}` for the first requested
resource (in request order) that is leased to a different client. Conflicting
requests change nothing. Invalid bodies get a 400 with a plain-text reason.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from contextlib import asynccontextmanager
from typing import Annotated, TypeVar

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ValidationError

from lockstep.lockserver._store import LockStore
from lockstep.lockserver.config import LockServerSettings
from lockstep.lockserver.schemas import (
    LeaseResponse,
    LockAcquireRequest,
    LockConflictResponse,
    LockReleaseRequest,
)

logger = logging.getLogger(__name__)

NAMESPACE_PATTERN = re.compile(r"^[-_0-9A-Za-z]+$")

RequestModelT = TypeVar("RequestModelT", bound=BaseModel)


class InvalidLockRequest(Exception):
    """The request body could not be parsed or validated."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def get_store(request: Request) -> LockStore:
    return request.app.state.store


def valid_namespace(namespace: str) -> str:
    if not NAMESPACE_PATTERN.match(namespace):
        raise HTTPException(status_code=404, detail="Not Found")
    return namespace


def _describe_validation_error(error: ValidationError) -> str:
    reasons = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"])
        reasons.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(reasons)


async def _read_body(request: Request, model: type[RequestModelT]) -> RequestModelT:
    body = await request.body()
    if not body.strip():
        raise InvalidLockRequest("Request body is empty")
    try:
        return model.model_validate_json(body)
    except ValidationError as e:
        raise InvalidLockRequest(_describe_validation_error(e)) from e


def _conflict_response(conflict: LockConflictResponse) -> JSONResponse:
    return JSONResponse(status_code=409, content=conflict.model_dump(by_alias=True))


StoreDep = Annotated[LockStore, Depends(get_store)]
NamespaceDep = Annotated[str, Depends(valid_namespace)]

router = APIRouter()


@router.get("/")
async def list_namespaces_endpoint(store: StoreDep) -> list[str]:
    """List all namespaces that have been used since the service started."""
    return sorted(store.namespaces())


@router.get("/{namespace}", response_model=list[LeaseResponse])
async def list_leases_endpoint(namespace: NamespaceDep, store: StoreDep):
    """List the non-expired leases of a namespace."""
    return store.list_leases(namespace)


@router.post("/{namespace}")
async def acquire_endpoint(namespace: NamespaceDep, request: Request, store: StoreDep):
    """Acquire (or refresh) all requested resources, or none of them.

    HTTP Status Codes:
        200: All resources leased to the client until now + expireIn
        400: Invalid request body
        409: A resource is leased to another client
    """
    data = await _read_body(request, LockAcquireRequest)
    conflict = store.acquire(namespace, data.client, data.resources, data.expire_in)
    if conflict is not None:
        logger.debug(
            f"[{namespace}] {data.client}: {conflict.first_resource} "
            f"held by {conflict.client}"
        )
        return _conflict_response(conflict)
    return {}


@router.delete("/{namespace}")
async def release_endpoint(namespace: NamespaceDep, request: Request, store: StoreDep):
    """Release all requested resources, unless one is leased to another client.

    HTTP Status Codes:
        200: All resources released (absent or expired ones included)
        400: Invalid request body
        409: A resource is leased to another client
    """
    data = await _read_body(request, LockReleaseRequest)
    conflict = store.release(namespace, data.client, data.resources)
    if conflict is not None:
        return _conflict_response(conflict)
    return {}


async def _invalid_request_handler(
    request: Request, exc: InvalidLockRequest
) -> PlainTextResponse:
    return PlainTextResponse(exc.reason, status_code=400)


async def sweep_loop(store: LockStore, interval: float) -> None:
    """Periodically drop expired leases from memory."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = store.sweep()
            if removed:
                logger.info(f"Swept {removed} expired leases")
        except Exception as e:
            logger.error(f"Lease sweep error: {e}", exc_info=True)


def create_app(
    store: LockStore | None = None,
    settings: LockServerSettings | None = None,
) -> FastAPI:
    """Create the lock service application.

    Args:
        store: Lease store to serve. A fresh, empty one by default.
        settings: Server settings (default: from LOCKSTEP_LOCKSERVER_* env vars).
    """
    from lockstep import __version__

    settings = settings or LockServerSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweep_task = asyncio.create_task(
            sweep_loop(app.state.store, settings.sweep_interval_seconds),
            name="lease-sweep",
        )
        try:
            yield
        finally:
            sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep_task

    app = FastAPI(
        title="Lockstep lock service",
        description="Lease-based mutual exclusion for test resources",
        version=__version__,
        lifespan=lifespan,
        # Any single path segment is a namespace
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.store = store if store is not None else LockStore()
    app.add_exception_handler(InvalidLockRequest, _invalid_request_handler)
    app.include_router(router)
    return app


def serve(settings: LockServerSettings | None = None) -> None:
    """Run the lock service until interrupted."""
    import uvicorn

    settings = settings or LockServerSettings()
    logger.info(f"Lock service listening on http://{settings.host}:{settings.port}/")
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)
