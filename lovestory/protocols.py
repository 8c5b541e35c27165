"""Collaborator protocols and the error taxonomy for lovestory.

This defines the interfaces the synchronization core consumes. The core
never talks to Supabase directly; it talks to these protocols, and the
Supabase-backed implementations in :mod:`lovestory.database` satisfy them.

Errors are a closed hierarchy decided once at the store boundary. Nothing
above the boundary inspects raw backend payloads.
"""

from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

# =============================================================================
# ERRORS
# =============================================================================


class LovestoryError(Exception):
    """Base for all lovestory errors."""

    pass


class StoreError(LovestoryError):
    """Raised by store implementations on backend failures.

    Carries the backend error code when one was reported so callers can
    log it; callers branch on the subclass, never on the code.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class NotFoundError(StoreError):
    """A row or user that was expected to exist does not."""

    pass


class ConflictError(StoreError):
    """Uniqueness violation, or a state transition that already happened."""

    pass


class SchemaDegradedError(StoreError):
    """The backend cannot resolve a relational join.

    Triggers the flat-query fallback inside the repositories. Never
    surfaced to repository callers.
    """

    pass


class NetworkError(StoreError):
    """Transport failure talking to the backend."""

    pass


class UploadError(StoreError):
    """One or more files of a batch upload failed; the batch is void."""

    def __init__(self, message: str, failures: Optional[List[str]] = None):
        super().__init__(message)
        self.failures = failures or []


class UnauthorizedError(LovestoryError):
    """The viewer lacks rights for the operation."""

    pass


class ValidationError(LovestoryError):
    """Client-side input validation failed.

    All violations are collected so they can be reported at once.
    """

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) if self.errors else "Validation failed")


# =============================================================================
# STORE PROTOCOLS
# =============================================================================
# Rows cross these interfaces as plain dicts, exactly as PostgREST returns
# them. Repositories parse them into the models in lovestory.types.
#
# Column lists use PostgREST embedding syntax, e.g.
#   "*, reactions(*), participants:memory_participants(*)"
# An implementation that cannot resolve an embedded relation must raise
# SchemaDegradedError.


@runtime_checkable
class RelationalStore(Protocol):
    """Query/insert/update/delete over named tables."""

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        eq: Optional[Dict[str, Any]] = None,
        neq: Optional[Dict[str, Any]] = None,
        in_: Optional[Dict[str, Iterable[Any]]] = None,
        or_eq: Optional[Dict[str, Any]] = None,
        ilike: Optional[Dict[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return matching rows. ``or_eq`` matches rows where ANY pair is equal."""
        ...

    async def insert(
        self,
        table: str,
        rows: List[Dict[str, Any]],
        *,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        """Insert rows and return the confirmed rows."""
        ...

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        *,
        eq: Dict[str, Any],
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        """Update rows matching every ``eq`` pair; return the affected rows."""
        ...

    async def delete(self, table: str, *, eq: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Delete rows matching every ``eq`` pair; return the deleted rows."""
        ...


@runtime_checkable
class ObjectStorage(Protocol):
    """Binary object storage for a single bucket."""

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` at ``path`` and return the stored path."""
        ...

    def public_url(self, path: str) -> str:
        """Public URL for a stored path."""
        ...

    async def remove(self, paths: List[str]) -> None:
        """Remove the given paths."""
        ...


@runtime_checkable
class IdentityAdmin(Protocol):
    """Privileged identity operations (account lifecycle only)."""

    async def delete_user(self, user_id: str) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    """Out-of-band notification channel for relationship requests."""

    async def notify_relationship_request(
        self, receiver_id: str, relationship_type: str
    ) -> None: ...


@runtime_checkable
class UserDirectory(Protocol):
    """Looks users up by email or display name."""

    async def find_user(self, email: str) -> Dict[str, Any]:
        """Return ``{"id": ..., "display_name": ...}`` or raise NotFoundError."""
        ...
