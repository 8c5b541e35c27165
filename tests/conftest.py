"""Pytest fixtures and test configuration for lovestory tests.

The fake store below keeps tables as lists of dicts and answers the same
calls SupabaseStore does, including PostgREST-style embedded columns,
unique keys, cascade deletes and injected failures.
"""

import asyncio
import copy
import os
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock

import pytest

os.environ.setdefault("LOVESTORY_SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("LOVESTORY_SUPABASE_PUBLISHABLE_KEY", "test-publishable-key")

from lovestory.comments import CommentThread
from lovestory.images import ImageAssetManager
from lovestory.memories import MemoryRepository
from lovestory.profiles import ProfileRepository
from lovestory.protocols import ConflictError, SchemaDegradedError, StoreError
from lovestory.reactions import ReactionLedger
from lovestory.relationships import RelationshipGraph
from lovestory.types import (
    COMMENTS_TABLE,
    MEMORIES_TABLE,
    PARTICIPANTS_TABLE,
    PROFILES_TABLE,
    REACTIONS_TABLE,
    RELATIONSHIPS_TABLE,
)

ALICE = "user-alice"
BOB = "user-bob"
CAROL = "user-carol"

STORAGE_BASE = "https://test.supabase.co/storage/v1/object/public/memory-images"

UNIQUE_KEYS = {
    REACTIONS_TABLE: ("memory_id", "user_id", "reaction_type"),
    PARTICIPANTS_TABLE: ("memory_id", "user_id"),
    RELATIONSHIPS_TABLE: ("requester_id", "receiver_id"),
    PROFILES_TABLE: ("id",),
}

# Tables whose unique key is an unordered pair, like (requester, receiver).
UNORDERED_KEYS = {RELATIONSHIPS_TABLE}

CASCADES = {
    MEMORIES_TABLE: [(REACTIONS_TABLE, "memory_id"), (COMMENTS_TABLE, "memory_id"), (PARTICIPANTS_TABLE, "memory_id")],
}

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _matches(
    row: Dict[str, Any],
    eq: Optional[Dict[str, Any]] = None,
    neq: Optional[Dict[str, Any]] = None,
    in_: Optional[Dict[str, Iterable[Any]]] = None,
    or_eq: Optional[Dict[str, Any]] = None,
    ilike: Optional[Dict[str, str]] = None,
) -> bool:
    for column, value in (eq or {}).items():
        if row.get(column) != value:
            return False
    for column, value in (neq or {}).items():
        if row.get(column) == value:
            return False
    for column, values in (in_ or {}).items():
        if row.get(column) not in list(values):
            return False
    if or_eq and not any(row.get(column) == value for column, value in or_eq.items()):
        return False
    for column, pattern in (ilike or {}).items():
        needle = pattern.strip("%").replace("\\", "").lower()
        if needle not in str(row.get(column) or "").lower():
            return False
    return True


class FakeStore:
    """In-memory RelationalStore.

    Set ``degraded = True`` to make every embedded-column request raise
    SchemaDegradedError, as PostgREST does when a relationship is missing.
    Use ``fail_next(op, table, exc)`` to make the next matching call raise.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.degraded = False
        self.calls: List[tuple] = []
        self._failures: Dict[tuple, List[Exception]] = defaultdict(list)
        self._clock = 0

    # -- helpers for tests --

    def _stamp(self) -> str:
        self._clock += 1
        return (_EPOCH + timedelta(seconds=self._clock)).isoformat()

    def seed(self, table: str, **row) -> Dict[str, Any]:
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", self._stamp())
        self.tables[table].append(row)
        return row

    def rows(self, table: str, **eq) -> List[Dict[str, Any]]:
        return [row for row in self.tables[table] if _matches(row, eq=eq)]

    def fail_next(self, op: str, table: str, exc: Exception) -> None:
        self._failures[(op, table)].append(exc)

    def _check(self, op: str, table: str, columns: str = "*") -> None:
        self.calls.append((op, table, columns))
        pending = self._failures.get((op, table))
        if pending:
            raise pending.pop(0)
        if "(" in columns and self.degraded:
            raise SchemaDegradedError(
                f"Could not find a relationship for '{table}' in the schema cache", "PGRST200"
            )

    def _key(self, table: str, key: tuple, row: Dict[str, Any]):
        values = tuple(row.get(k) for k in key)
        return frozenset(values) if table in UNORDERED_KEYS else values

    def _embed(self, table: str, row: Dict[str, Any], columns: str) -> Dict[str, Any]:
        out = copy.deepcopy(row)
        if "(" not in columns:
            return out
        if table == MEMORIES_TABLE:
            out["reactions"] = copy.deepcopy(self.rows(REACTIONS_TABLE, memory_id=row["id"]))
            out["comments"] = copy.deepcopy(self.rows(COMMENTS_TABLE, memory_id=row["id"]))
            out["participants"] = copy.deepcopy(self.rows(PARTICIPANTS_TABLE, memory_id=row["id"]))
        elif table == RELATIONSHIPS_TABLE:
            for side in ("requester", "receiver"):
                profiles = self.rows(PROFILES_TABLE, id=row[f"{side}_id"])
                out[side] = {"display_name": profiles[0].get("display_name")} if profiles else None
        return out

    # -- RelationalStore --

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        eq=None,
        neq=None,
        in_=None,
        or_eq=None,
        ilike=None,
        order_by=None,
        descending=True,
        limit=None,
    ) -> List[Dict[str, Any]]:
        self._check("select", table, columns)
        found = [row for row in self.tables[table] if _matches(row, eq, neq, in_, or_eq, ilike)]
        if order_by:
            found.sort(key=lambda row: row.get(order_by) or "", reverse=descending)
        if limit is not None:
            found = found[:limit]
        return [self._embed(table, row, columns) for row in found]

    async def insert(self, table: str, rows: List[Dict[str, Any]], *, columns: str = "*"):
        self._check("insert", table, columns)
        key = UNIQUE_KEYS.get(table)
        if key:
            taken = {self._key(table, key, existing) for existing in self.tables[table]}
            for row in rows:
                if self._key(table, key, row) in taken:
                    raise ConflictError("duplicate key value violates unique constraint", "23505")
        written = []
        for row in rows:
            stored = copy.deepcopy(row)
            stored.setdefault("id", str(uuid.uuid4()))
            stored.setdefault("created_at", self._stamp())
            self.tables[table].append(stored)
            written.append(stored)
        return [self._embed(table, row, columns) for row in written]

    async def update(self, table: str, values: Dict[str, Any], *, eq, columns: str = "*"):
        self._check("update", table, columns)
        written = []
        for row in self.tables[table]:
            if _matches(row, eq=eq):
                row.update(copy.deepcopy(values))
                written.append(row)
        return [self._embed(table, row, columns) for row in written]

    async def delete(self, table: str, *, eq):
        self._check("delete", table)
        deleted = [row for row in self.tables[table] if _matches(row, eq=eq)]
        doomed = {id(row) for row in deleted}
        self.tables[table] = [row for row in self.tables[table] if id(row) not in doomed]
        for row in deleted:
            for child, column in CASCADES.get(table, []):
                self.tables[child] = [r for r in self.tables[child] if r.get(column) != row["id"]]
        return copy.deepcopy(deleted)


class FakeObjectStorage:
    """In-memory ObjectStorage. Uploads whose data is in ``failing_data`` raise."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.failing_data = set()
        self.fail_remove = False
        self.removed: List[str] = []
        self.remove_calls: List[List[str]] = []

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        await asyncio.sleep(0)
        if data in self.failing_data:
            raise StoreError(f"Upload of {path} failed", "500")
        self.objects[path] = data
        return path

    def public_url(self, path: str) -> str:
        return f"{STORAGE_BASE}/{path}"

    async def remove(self, paths: List[str]) -> None:
        self.remove_calls.append(list(paths))
        if self.fail_remove:
            raise StoreError("Storage unavailable", "503")
        for path in paths:
            self.removed.append(path)
            self.objects.pop(path, None)


class FakeIdentityAdmin:
    def __init__(self):
        self.deleted: List[str] = []
        self.error: Optional[Exception] = None

    async def delete_user(self, user_id: str) -> None:
        if self.error is not None:
            raise self.error
        self.deleted.append(user_id)


@pytest.fixture
def store():
    store = FakeStore()
    store.seed(PROFILES_TABLE, id=ALICE, display_name="alice@example.com")
    store.seed(PROFILES_TABLE, id=BOB, display_name="Bob")
    store.seed(PROFILES_TABLE, id=CAROL, display_name="Carol")
    return store


@pytest.fixture
def storage():
    return FakeObjectStorage()


@pytest.fixture
def identity_admin():
    return FakeIdentityAdmin()


@pytest.fixture
def images(storage):
    return ImageAssetManager(storage)


@pytest.fixture
def profiles(store):
    return ProfileRepository(store)


@pytest.fixture
def memories(store, images, profiles):
    return MemoryRepository(store, images, profiles)


@pytest.fixture
def reactions(store, memories, profiles):
    return ReactionLedger(store, memories, profiles)


@pytest.fixture
def comments(store, memories, profiles):
    return CommentThread(store, memories, profiles)


@pytest.fixture
def directory():
    directory = AsyncMock()
    directory.find_user.return_value = {"id": BOB, "display_name": "Bob"}
    return directory


@pytest.fixture
def notifier():
    return AsyncMock()


@pytest.fixture
def graph(store, profiles, directory, notifier):
    return RelationshipGraph(store, profiles, directory, notifier)


@pytest.fixture
def seed_memory(store, storage):
    """Insert a memory row (and its stored images) directly into the fake store."""

    def _seed(author_id: str = ALICE, *, image_paths=(), **fields) -> Dict[str, Any]:
        for path in image_paths:
            storage.objects[path] = b"stored"
        row = {
            "title": "Our first trip",
            "description": "",
            "date": "2024-06-01",
            "location": None,
            "category": "vacation",
            "is_public": True,
            "images": [storage.public_url(path) for path in image_paths],
            "author_id": author_id,
            "author_name": "Alice",
        }
        row.update(fields)
        return store.seed(MEMORIES_TABLE, **row)

    return _seed
