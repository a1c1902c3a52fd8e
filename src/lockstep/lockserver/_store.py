"""In-memory lease store for the lock service.

Leases are kept per namespace. Every decision (acquire, release, list) on a
namespace is taken while holding that namespace's mutex, so two overlapping
acquire requests can never both be granted. Expired leases are ignored on read
and only removed lazily (or by `sweep()`).
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from lockstep.lockserver.schemas import LeaseResponse, LockConflictResponse


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class LeaseRecord:
    """A lease as stored server-side."""

    client: str
    expire_at: int  # absolute, in clock milliseconds


@dataclass
class _Namespace:
    leases: dict[str, LeaseRecord] = field(default_factory=dict)
    mutex: threading.Lock = field(default_factory=threading.Lock)


class LockStore:
    """Namespaced resource -> lease mapping.

    Args:
        clock: Returns the current time in milliseconds. Only differences
            between two readings are used.
    """

    def __init__(self, clock: Callable[[], int] = _monotonic_ms) -> None:
        self._clock = clock
        self._namespaces: dict[str, _Namespace] = {}
        self._namespaces_mutex = threading.Lock()

    def _namespace(self, name: str) -> _Namespace:
        with self._namespaces_mutex:
            namespace = self._namespaces.get(name)
            if namespace is None:
                namespace = _Namespace()
                self._namespaces[name] = namespace
            return namespace

    def namespaces(self) -> list[str]:
        with self._namespaces_mutex:
            return list(self._namespaces)

    def list_leases(self, namespace: str) -> list[LeaseResponse]:
        """List all non-expired leases of a namespace."""
        ns = self._namespace(namespace)
        with ns.mutex:
            now = self._clock()
            return [
                LeaseResponse(
                    resource=resource,
                    client=lease.client,
                    expire_in=lease.expire_at - now,
                )
                for resource, lease in ns.leases.items()
                if lease.expire_at > now
            ]

    def _first_conflict(
        self, ns: _Namespace, client: str, resources: list[str], now: int
    ) -> LockConflictResponse | None:
        for resource in resources:
            lease = ns.leases.get(resource)
            if lease is None or lease.expire_at <= now:
                continue
            if lease.client != client:
                return LockConflictResponse(
                    first_resource=resource,
                    client=lease.client,
                    expire_in=lease.expire_at - now,
                )
        return None

    def acquire(
        self, namespace: str, client: str, resources: list[str], expire_in: int
    ) -> LockConflictResponse | None:
        """Grant (or refresh) all `resources` to `client`, or none of them.

        Returns:
            None if all resources were granted, otherwise the first conflict
            in input order.
        """
        ns = self._namespace(namespace)
        with ns.mutex:
            now = self._clock()
            conflict = self._first_conflict(ns, client, resources, now)
            if conflict is not None:
                return conflict

            expire_at = now + expire_in
            for resource in resources:
                ns.leases[resource] = LeaseRecord(client=client, expire_at=expire_at)
            return None

    def release(
        self, namespace: str, client: str, resources: list[str]
    ) -> LockConflictResponse | None:
        """Delete the leases on `resources`, unless one is held by someone else.

        Resources that are not leased (or whose lease expired) count as
        released already.
        """
        ns = self._namespace(namespace)
        with ns.mutex:
            now = self._clock()
            conflict = self._first_conflict(ns, client, resources, now)
            if conflict is not None:
                return conflict

            for resource in resources:
                ns.leases.pop(resource, None)
            return None

    def sweep(self) -> int:
        """Remove expired leases from all namespaces.

        Returns:
            Number of removed leases.
        """
        removed = 0
        for name in self.namespaces():
            ns = self._namespace(name)
            with ns.mutex:
                now = self._clock()
                expired = [
                    resource
                    for resource, lease in ns.leases.items()
                    if lease.expire_at <= now
                ]
                for resource in expired:
                    del ns.leases[resource]
                removed += len(expired)
        return removed
