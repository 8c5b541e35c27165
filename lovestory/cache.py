"""In-memory view cache shared by the repositories.

The cache is what callers render from. It is never persisted. Every
mutation reads the current state at the moment it is applied, so a
coroutine that resumes after an await never writes back a stale snapshot.
"""

import logging
from typing import Callable, Generic, Iterator, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _default_key(item) -> str:
    return item.id


class ViewCache(Generic[T]):
    """Ordered, id-keyed collection of rows."""

    def __init__(self, key: Callable[[T], str] = _default_key):
        self._key = key
        self._items: List[T] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.snapshot())

    def __contains__(self, item_id: str) -> bool:
        return self._index(item_id) is not None

    def _index(self, item_id: str) -> Optional[int]:
        for position, item in enumerate(self._items):
            if self._key(item) == item_id:
                return position
        return None

    def snapshot(self) -> List[T]:
        """Copy of the current items, in display order."""
        return list(self._items)

    def get(self, item_id: str) -> Optional[T]:
        position = self._index(item_id)
        return None if position is None else self._items[position]

    def replace_all(self, items: List[T]) -> None:
        self._items = list(items)

    def clear(self) -> None:
        self._items = []

    def prepend(self, item: T) -> None:
        self.remove(self._key(item))
        self._items.insert(0, item)

    def upsert(self, item: T) -> None:
        """Replace in place if present, otherwise append."""
        if not self.replace(item):
            self._items.append(item)

    def replace(self, item: T) -> bool:
        """Replace the entry with the same id. Returns False if absent."""
        position = self._index(self._key(item))
        if position is None:
            return False
        self._items[position] = item
        return True

    def remove(self, item_id: str) -> Optional[T]:
        position = self._index(item_id)
        if position is None:
            return None
        return self._items.pop(position)

    def update(self, item_id: str, fn: Callable[[T], T]) -> Optional[T]:
        """Apply ``fn`` to the current entry and store the result."""
        position = self._index(item_id)
        if position is None:
            return None
        updated = fn(self._items[position])
        self._items[position] = updated
        return updated

    def optimistic(self, item_id: str) -> "OptimisticUpdate[T]":
        """Transaction over a single entry of this cache."""

        def _write(item: Optional[T]) -> None:
            if item is None:
                self.remove(item_id)
            else:
                self.upsert(item)

        return OptimisticUpdate(read=lambda: self.get(item_id), write=_write)


class OptimisticUpdate(Generic[T]):
    """Apply / commit / rollback transaction over one cached value.

    ``apply`` captures the prior value and writes the speculative one.
    ``commit`` writes the confirmed value. ``rollback`` restores the prior
    value. Used as a context manager, an exception that escapes before
    ``commit`` rolls back.
    """

    def __init__(self, read: Callable[[], Optional[T]], write: Callable[[Optional[T]], None]):
        self._read = read
        self._write = write
        self._prior: Optional[T] = None
        self.state = "idle"

    def apply(self, speculative: T) -> T:
        if self.state != "idle":
            raise RuntimeError(f"Cannot apply an optimistic update in state {self.state}")
        self._prior = self._read()
        self._write(speculative)
        self.state = "applied"
        return speculative

    def commit(self, confirmed: T) -> T:
        if self.state != "applied":
            raise RuntimeError(f"Cannot commit an optimistic update in state {self.state}")
        self._write(confirmed)
        self.state = "committed"
        return confirmed

    def rollback(self) -> None:
        if self.state != "applied":
            return
        self._write(self._prior)
        self.state = "rolled_back"

    @property
    def prior(self) -> Optional[T]:
        return self._prior

    def __enter__(self) -> "OptimisticUpdate[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and self.state == "applied":
            logger.debug(f"Rolling back optimistic update after {exc_type.__name__}")
            self.rollback()
        return False
