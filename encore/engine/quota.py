"""
encore.engine.quota — Pending quota delta & ignore context
===========================================================

Two in-memory helpers used around the persisted ``quotas`` row:

* :class:`PendingQuota` — the speculative delta discovery accumulates while
  it admits new events and members.  It never touches the database; the
  committer consumes it exactly once inside the commit transaction.
* :class:`QuotaContext` — a caller-scoped, per-tenant depth counter.  While
  a tenant's depth is positive, quota checks pass and increments are
  skipped, so composed operations don't charge twice.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from encore.constants import QUOTA_FIELDS
from encore.errors import SyncInvariantError


class PendingQuota:
    """Speculative per-counter delta for one sync attempt."""

    def __init__(self) -> None:
        self._delta: dict[str, int] = {name: 0 for name in QUOTA_FIELDS}
        self._consumed = False

    def __getitem__(self, name: str) -> int:
        return self._delta[name]

    def adjust(self, name: str, amount: int) -> None:
        if self._consumed:
            raise SyncInvariantError("Pending quota delta was already committed")
        if name not in self._delta:
            raise KeyError(name)
        self._delta[name] += amount

    def remaining(self, name: str, current: int) -> int:
        """Counter value as it would stand after this delta commits."""
        return current + self._delta[name]

    def admit(self, name: str, current: int) -> bool:
        """Take one unit of *name* if any is left; return whether it was taken."""
        if self.remaining(name, current) <= 0:
            return False
        self.adjust(name, -1)
        return True

    def consume(self) -> dict[str, int]:
        """Hand the non-zero delta to the committer.  Callable once."""
        if self._consumed:
            raise SyncInvariantError("Pending quota delta was already committed")
        self._consumed = True
        return {name: amount for name, amount in self._delta.items() if amount}

    @property
    def consumed(self) -> bool:
        return self._consumed

    def __repr__(self) -> str:
        changed = {k: v for k, v in self._delta.items() if v}
        return f"<PendingQuota {changed} consumed={self._consumed}>"


class QuotaContext:
    """Reference-counted per-tenant switch that disables quota enforcement."""

    def __init__(self) -> None:
        self._depth: dict[str, int] = {}

    def is_ignored(self, tenant_id: str) -> bool:
        return self._depth.get(tenant_id, 0) > 0

    def depth(self, tenant_id: str) -> int:
        return self._depth.get(tenant_id, 0)

    @contextmanager
    def ignore(self, tenant_id: str) -> Iterator[QuotaContext]:
        self._depth[tenant_id] = self._depth.get(tenant_id, 0) + 1
        try:
            yield self
        finally:
            remaining = self._depth[tenant_id] - 1
            if remaining:
                self._depth[tenant_id] = remaining
            else:
                del self._depth[tenant_id]
