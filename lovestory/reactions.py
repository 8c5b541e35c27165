"""Reaction ledger: per-user, per-type reactions on memories.

A user holds at most one reaction of each type on a memory. The backend
enforces that with a unique key on (memory_id, user_id, reaction_type);
the ledger keeps the cached memory in line with it.
"""

import logging
from typing import Any, Dict, Optional, Union

from .memories import MemoryRepository
from .profiles import ProfileRepository
from .protocols import ConflictError, RelationalStore, StoreError, ValidationError
from .types import REACTIONS_TABLE, Memory, Reaction, ReactionType
from .validation import require_viewer

logger = logging.getLogger(__name__)


def _coerce_type(reaction_type: Union[str, ReactionType]) -> ReactionType:
    try:
        return ReactionType(reaction_type)
    except ValueError:
        raise ValidationError([f"Unknown reaction type: {reaction_type}"]) from None


def _with_reaction(memory: Memory, reaction: Reaction) -> Memory:
    kept = [
        r
        for r in memory.reactions
        if not (r.user_id == reaction.user_id and r.reaction_type == reaction.reaction_type)
    ]
    return memory.model_copy(update={"reactions": kept + [reaction]})


def _without_reaction(memory: Memory, user_id: str, reaction_type: ReactionType) -> Memory:
    kept = [
        r
        for r in memory.reactions
        if not (r.user_id == user_id and r.reaction_type == reaction_type)
    ]
    return memory.model_copy(update={"reactions": kept})


class ReactionLedger:
    def __init__(
        self,
        store: RelationalStore,
        memories: MemoryRepository,
        profiles: ProfileRepository,
    ):
        self.store = store
        self.memories = memories
        self.profiles = profiles

    @staticmethod
    def _key(memory_id: str, user_id: str, reaction_type: ReactionType) -> Dict[str, Any]:
        return {
            "memory_id": memory_id,
            "user_id": user_id,
            "reaction_type": reaction_type.value,
        }

    async def _held(self, viewer_id: str, memory_id: str, reaction_type: ReactionType) -> bool:
        memory = self.memories.get_cached(memory_id)
        if memory is not None:
            return memory.reaction_of(viewer_id, reaction_type) is not None
        rows = await self.store.select(
            REACTIONS_TABLE, "id", eq=self._key(memory_id, viewer_id, reaction_type), limit=1
        )
        return bool(rows)

    async def toggle(
        self,
        viewer_id: Optional[str],
        memory_id: str,
        reaction_type: Union[str, ReactionType],
    ) -> Optional[bool]:
        """Add the viewer's reaction if absent, remove it if present.

        Returns True when the reaction is now held, False when it was
        removed, and None (doing nothing) when nobody is signed in.
        """
        if not viewer_id:
            logger.debug("Ignoring reaction toggle without a signed-in viewer")
            return None
        reaction_type = _coerce_type(reaction_type)

        if await self._held(viewer_id, memory_id, reaction_type):
            await self.remove(viewer_id, memory_id, reaction_type)
            return False
        await self.add(viewer_id, memory_id, reaction_type)
        return True

    async def add(
        self,
        viewer_id: Optional[str],
        memory_id: str,
        reaction_type: Union[str, ReactionType],
    ) -> Reaction:
        """Insert a reaction and append the confirmed row to the cached memory.

        A duplicate insert (a second click racing the first) reads back the
        existing row instead of failing.
        """
        viewer_id = require_viewer(viewer_id, "react to memories")
        reaction_type = _coerce_type(reaction_type)
        key = self._key(memory_id, viewer_id, reaction_type)

        user_name = await self.profiles.resolve_display_name(viewer_id)
        try:
            rows = await self.store.insert(REACTIONS_TABLE, [{**key, "user_name": user_name}])
        except ConflictError:
            logger.debug(f"Reaction {reaction_type.value} on {memory_id} already exists")
            rows = await self.store.select(REACTIONS_TABLE, eq=key, limit=1)
        if not rows:
            raise StoreError("Failed to add reaction")

        reaction = Reaction.model_validate(rows[0])
        self.memories.cache.update(memory_id, lambda m: _with_reaction(m, reaction))
        return reaction

    async def remove(
        self,
        viewer_id: Optional[str],
        memory_id: str,
        reaction_type: Union[str, ReactionType],
    ) -> None:
        """Delete the viewer's reaction of this type and drop it from the cache."""
        viewer_id = require_viewer(viewer_id, "react to memories")
        reaction_type = _coerce_type(reaction_type)

        await self.store.delete(REACTIONS_TABLE, eq=self._key(memory_id, viewer_id, reaction_type))
        self.memories.cache.update(
            memory_id, lambda m: _without_reaction(m, viewer_id, reaction_type)
        )
