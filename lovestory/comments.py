"""Comment threads on memories."""

import logging
from typing import Optional, Tuple

from .memories import MemoryRepository
from .profiles import ProfileRepository
from .protocols import NotFoundError, RelationalStore, StoreError, UnauthorizedError
from .types import COMMENTS_TABLE, Comment, Memory
from .validation import require_viewer, sanitize_string

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 2000


class CommentThread:
    def __init__(
        self,
        store: RelationalStore,
        memories: MemoryRepository,
        profiles: ProfileRepository,
    ):
        self.store = store
        self.memories = memories
        self.profiles = profiles

    def _find_cached(self, comment_id: str) -> Tuple[Optional[str], Optional[Comment]]:
        for memory in self.memories.memories:
            for comment in memory.comments:
                if comment.id == comment_id:
                    return memory.id, comment
        return None, None

    async def add(self, viewer_id: Optional[str], memory_id: str, content: str) -> Comment:
        """Post a comment and append the confirmed row to the cached memory."""
        viewer_id = require_viewer(viewer_id, "comment")
        content = sanitize_string(content, "content", max_length=MAX_COMMENT_LENGTH)

        user_name = await self.profiles.resolve_display_name(viewer_id)
        rows = await self.store.insert(
            COMMENTS_TABLE,
            [
                {
                    "memory_id": memory_id,
                    "user_id": viewer_id,
                    "content": content,
                    "user_name": user_name,
                }
            ],
        )
        if not rows:
            raise StoreError("Failed to add comment")

        comment = Comment.model_validate(rows[0])
        self.memories.cache.update(
            memory_id, lambda m: m.model_copy(update={"comments": m.comments + [comment]})
        )
        return comment

    async def remove(self, viewer_id: Optional[str], comment_id: str) -> None:
        """Delete one of the viewer's own comments.

        Raises:
            UnauthorizedError: The comment belongs to someone else.
            NotFoundError: No comment by the viewer with this id exists.
        """
        viewer_id = require_viewer(viewer_id, "delete comments")
        memory_id, cached = self._find_cached(comment_id)
        if cached is not None and cached.user_id != viewer_id:
            raise UnauthorizedError("You can only delete your own comments")

        rows = await self.store.delete(COMMENTS_TABLE, eq={"id": comment_id, "user_id": viewer_id})
        if not rows:
            raise NotFoundError(f"Comment {comment_id} not found")

        logger.debug(f"Deleted comment {comment_id}")
        memory_id = rows[0].get("memory_id") or memory_id
        if memory_id:
            self.memories.cache.update(memory_id, lambda m: _without_comment(m, comment_id))


def _without_comment(memory: Memory, comment_id: str) -> Memory:
    return memory.model_copy(
        update={"comments": [c for c in memory.comments if c.id != comment_id]}
    )
