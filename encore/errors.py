"""
encore.errors — Error Taxonomy
===============================

Every failure the sync engine can produce maps to one of these classes:

* :class:`ClientError` — input or policy violations (unknown tenant,
  quota exhausted, sync already running).  Surfaced, never retried.
* :class:`ProviderError` — an external source could not be read.  Caught
  per item; the item is pruned and the sync carries on.
* :class:`SyncInvariantError` — the working set is inconsistent.  Aborts
  the remaining phases of the current attempt.
* :class:`QuotaCommitError` — the authoritative quota decrement was
  rejected.  The commit transaction is rolled back.
* :class:`TenantStuckError` — the sync lock could not be released.
"""

from __future__ import annotations


class EncoreError(Exception):
    """Base class for all Encore errors."""


# ---------------------------------------------------------------------------
# Client-visible
# ---------------------------------------------------------------------------
class ClientError(EncoreError):
    """Input or policy violation reported back to the caller."""

    status_code = 400


class TenantNotFoundError(ClientError):
    status_code = 404

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"Tenant {tenant_id} does not exist")
        self.tenant_id = tenant_id


class SyncInProgressError(ClientError):
    status_code = 409

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"Tenant {tenant_id} is already being synchronized")
        self.tenant_id = tenant_id


class QuotaExceededError(ClientError):
    status_code = 429

    def __init__(self, tenant_id: str, delta: dict[str, int]) -> None:
        counters = ", ".join(sorted(delta))
        super().__init__(f"Tenant {tenant_id} has no quota left for: {counters}")
        self.tenant_id = tenant_id
        self.delta = delta


class SchemaError(ClientError):
    """A tenant property schema or point type definition is malformed."""


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------
class ProviderError(EncoreError):
    """A folder or content source could not be read."""

    def __init__(self, message: str, source_id: str | None = None) -> None:
        super().__init__(message)
        self.source_id = source_id


class SourceNotFoundError(ProviderError):
    """The source no longer exists; the event built on it should go."""


# ---------------------------------------------------------------------------
# Fatal to a sync attempt
# ---------------------------------------------------------------------------
class SyncInvariantError(EncoreError):
    """The sync working set violates an invariant; abort the attempt."""


class QuotaCommitError(EncoreError):
    """The committed quota decrement was rejected inside the transaction."""


class TenantStuckError(EncoreError):
    """The sync lock could not be released after every retry."""

    def __init__(self, tenant_id: str, attempts: int) -> None:
        super().__init__(
            f"Tenant {tenant_id} is still locked after {attempts} release attempts; "
            "manual intervention required"
        )
        self.tenant_id = tenant_id
        self.attempts = attempts
