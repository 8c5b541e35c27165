"""Memory repository: privacy-scoped reads, edits and deletes of timeline posts.

Reads join each memory with its reactions, comments and participant tags.
When the backend reports that those relationships are unavailable the
same filters are re-issued against the memories table alone and the
sub-collections come back empty, so callers always see one shape.

Deleting a memory relies on the backend's cascade for its reactions,
comments and participant rows. Images are not rows; they are removed from
object storage here, best-effort, after the row is gone.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pydantic

from .cache import ViewCache
from .images import ImageAssetManager, UploadResult
from .profiles import ProfileRepository, normalize_display_name
from .protocols import (
    NotFoundError,
    RelationalStore,
    SchemaDegradedError,
    StoreError,
    UnauthorizedError,
    ValidationError,
)
from .types import (
    EDITABLE_MEMORY_FIELDS,
    MEMORIES_TABLE,
    PARTICIPANTS_TABLE,
    ImageFile,
    Memory,
    MemoryDraft,
    Participant,
    utc_now,
)
from .validation import require_viewer, sanitize_string

logger = logging.getLogger(__name__)

MEMORY_COLUMNS = "*, reactions(*), comments(*), participants:memory_participants(*)"
FLAT_COLUMNS = "*"

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000


def _degraded(row: Dict[str, Any], prior: Optional[Memory] = None) -> Memory:
    """Build a Memory from a flat row, keeping ``prior``'s sub-collections if given."""
    return Memory.model_validate(
        {
            **row,
            "reactions": prior.reactions if prior else [],
            "comments": prior.comments if prior else [],
            "participants": prior.participants if prior else [],
        }
    )


def _validation_messages(error: pydantic.ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


class MemoryRepository:
    """Timeline memories for one session, with the cache callers render from."""

    def __init__(
        self,
        store: RelationalStore,
        images: ImageAssetManager,
        profiles: ProfileRepository,
    ):
        self.store = store
        self.images = images
        self.profiles = profiles
        self.cache: ViewCache[Memory] = ViewCache()

    @property
    def memories(self) -> List[Memory]:
        return self.cache.snapshot()

    def get_cached(self, memory_id: str) -> Optional[Memory]:
        return self.cache.get(memory_id)

    # ── Reads ─────────────────────────────────────────────────

    async def _select(self, eq: Dict[str, Any]) -> List[Memory]:
        try:
            rows = await self.store.select(
                MEMORIES_TABLE, MEMORY_COLUMNS, eq=eq, order_by="created_at", descending=True
            )
        except SchemaDegradedError as e:
            logger.info(f"Memory joins unavailable ({e.code}); falling back to flat query")
            rows = await self.store.select(
                MEMORIES_TABLE, FLAT_COLUMNS, eq=eq, order_by="created_at", descending=True
            )
            return [_degraded(row) for row in rows]
        return [Memory.model_validate(row) for row in rows]

    async def fetch_many(
        self,
        viewer_id: Optional[str],
        *,
        public_only: bool = False,
        author_id: Optional[str] = None,
    ) -> List[Memory]:
        """Newest-first memories visible to ``viewer_id``; replaces the cache.

        Another user's profile (``author_id`` != viewer) only ever shows
        public posts, whatever the caller asked for. Signed-out viewers only
        see public posts.
        """
        eq: Dict[str, Any] = {}
        if public_only or not viewer_id or (author_id and author_id != viewer_id):
            eq["is_public"] = True
        if author_id:
            eq["author_id"] = author_id

        memories = await self._select(eq)
        visible = [m for m in memories if m.is_public or m.author_id == viewer_id]
        if len(visible) != len(memories):
            logger.debug(f"Dropped {len(memories) - len(visible)} private memories from results")

        self.cache.replace_all(visible)
        return visible

    async def fetch_one(self, memory_id: str) -> Memory:
        """A single memory by id, joined. Does not apply privacy filtering."""
        memories = await self._select({"id": memory_id})
        if not memories:
            raise NotFoundError(f"Memory {memory_id} not found")
        memory = memories[0]
        self.cache.replace(memory)
        return memory

    async def _load_owned(self, viewer_id: str, memory_id: str, action: str) -> Memory:
        memory = self.cache.get(memory_id) or await self.fetch_one(memory_id)
        if memory.author_id != viewer_id:
            raise UnauthorizedError(f"Only the author can {action} this memory")
        return memory

    # ── Create ────────────────────────────────────────────────

    async def _insert(self, row: Dict[str, Any]) -> Memory:
        try:
            rows = await self.store.insert(MEMORIES_TABLE, [row], columns=MEMORY_COLUMNS)
        except SchemaDegradedError as e:
            logger.info(f"Memory joins unavailable ({e.code}); inserting without them")
            rows = await self.store.insert(MEMORIES_TABLE, [row])
            if not rows:
                raise StoreError("Failed to add memory")
            return _degraded(rows[0])
        if not rows:
            raise StoreError("Failed to add memory")
        return Memory.model_validate(rows[0])

    async def _write_participants(
        self, memory_id: str, participants: Mapping[str, str], *, replace: bool
    ) -> List[Participant]:
        if replace:
            await self.store.delete(PARTICIPANTS_TABLE, eq={"memory_id": memory_id})
        if not participants:
            return []
        rows = await self.store.insert(
            PARTICIPANTS_TABLE,
            [
                {
                    "memory_id": memory_id,
                    "user_id": user_id,
                    "user_name": normalize_display_name(user_name),
                }
                for user_id, user_name in participants.items()
            ],
        )
        return [Participant.model_validate(row) for row in rows]

    async def _discard(self, memory: Memory, uploads: Sequence[UploadResult]) -> None:
        """Undo a half-finished create. Best-effort."""
        try:
            await self.store.delete(MEMORIES_TABLE, eq={"id": memory.id})
        except StoreError as e:
            logger.warning(f"Failed to roll back memory {memory.id}: {e}")
        await self.images.delete_all([upload.path for upload in uploads])

    async def create(
        self,
        viewer_id: Optional[str],
        draft: MemoryDraft,
        *,
        new_files: Sequence[ImageFile] = (),
        participants: Optional[Mapping[str, str]] = None,
    ) -> Memory:
        """Upload images, insert the memory, tag participants, prepend to cache.

        Args:
            viewer_id: The author.
            draft: Title, description, date, location, category, privacy.
            new_files: Images to attach; validated before anything is sent.
            participants: ``{user_id: display_name}`` of users to tag.

        Nothing is left behind on failure: uploaded images and, if tagging
        fails, the inserted row are removed before the error propagates.
        """
        viewer_id = require_viewer(viewer_id, "add a memory")
        self.images.validate(new_files)
        title = sanitize_string(draft.title, "title", max_length=MAX_TITLE_LENGTH)
        description = sanitize_string(
            draft.description, "description", max_length=MAX_DESCRIPTION_LENGTH, required=False
        )

        author_name = await self.profiles.resolve_display_name(viewer_id)
        uploads = await self.images.upload_all(new_files, viewer_id)

        row = {
            **draft.model_dump(mode="json"),
            "title": title,
            "description": description,
            "images": [upload.url for upload in uploads],
            "author_id": viewer_id,
            "author_name": author_name,
        }
        try:
            memory = await self._insert(row)
        except Exception:
            await self.images.delete_all([upload.path for upload in uploads])
            raise

        if participants:
            try:
                tagged = await self._write_participants(memory.id, participants, replace=False)
            except Exception:
                await self._discard(memory, uploads)
                raise
            memory = memory.model_copy(update={"participants": tagged})

        self.cache.prepend(memory)
        logger.info(f"Created memory {memory.id} with {len(uploads)} images")
        return memory

    # ── Update ────────────────────────────────────────────────

    async def _persist(
        self, memory_id: str, viewer_id: str, payload: Dict[str, Any], loaded: Memory
    ) -> Memory:
        eq = {"id": memory_id, "author_id": viewer_id}
        try:
            rows = await self.store.update(MEMORIES_TABLE, payload, eq=eq, columns=MEMORY_COLUMNS)
        except SchemaDegradedError as e:
            logger.info(f"Memory joins unavailable ({e.code}); updating without them")
            rows = await self.store.update(MEMORIES_TABLE, payload, eq=eq)
            if not rows:
                raise NotFoundError(f"Memory {memory_id} not found")
            # Sub-collections may have changed while we were uploading
            return _degraded(rows[0], self.cache.get(memory_id) or loaded)
        if not rows:
            raise NotFoundError(f"Memory {memory_id} not found")
        return Memory.model_validate(rows[0])

    async def update(
        self,
        viewer_id: Optional[str],
        memory_id: str,
        fields: Dict[str, Any],
        desired_image_urls: Sequence[str],
        new_files: Sequence[ImageFile] = (),
    ) -> Memory:
        """Edit a memory and reconcile its image set, in three ordered phases.

        1. Images attached now but absent from ``desired_image_urls`` are
           deleted from storage. Failures are logged; the edit continues.
        2. ``new_files`` are uploaded. Any upload failure fails the edit.
        3. The row is written with ``desired_image_urls`` followed by the new
           URLs and a fresh ``updated_at``, and the cached entry is replaced
           with the confirmed row.
        """
        viewer_id = require_viewer(viewer_id, "edit a memory")
        unknown = sorted(set(fields) - EDITABLE_MEMORY_FIELDS)
        if unknown:
            raise ValidationError([f"{field} cannot be edited" for field in unknown])

        desired = list(dict.fromkeys(desired_image_urls))
        errors = self.images.validation_errors(new_files, existing_count=len(desired))
        if errors:
            raise ValidationError(errors)

        current = await self._load_owned(viewer_id, memory_id, "edit")
        foreign = [url for url in desired if url not in current.images]
        if foreign:
            raise ValidationError([f"Image is not attached to this memory: {url}" for url in foreign])

        try:
            edited = Memory.model_validate({**current.model_dump(), **fields})
        except pydantic.ValidationError as e:
            raise ValidationError(_validation_messages(e)) from e
        if "title" in fields:
            edited.title = sanitize_string(edited.title, "title", max_length=MAX_TITLE_LENGTH)
        if "description" in fields:
            edited.description = sanitize_string(
                edited.description, "description", max_length=MAX_DESCRIPTION_LENGTH, required=False
            )

        # Phase 1: drop images the caller removed
        removed = [url for url in current.images if url not in desired]
        if removed:
            await self.images.delete_urls(removed)

        # Phase 2: upload additions, all-or-nothing
        uploads = await self.images.upload_all(new_files, viewer_id)

        # Phase 3: persist and replace the cached entry
        dumped = edited.model_dump(mode="json")
        payload = {field: dumped[field] for field in fields}
        payload["images"] = desired + [upload.url for upload in uploads]
        payload["updated_at"] = utc_now()
        try:
            memory = await self._persist(memory_id, viewer_id, payload, current)
        except Exception:
            await self.images.delete_all([upload.path for upload in uploads])
            raise

        self.cache.replace(memory)
        return memory

    async def set_participants(
        self,
        viewer_id: Optional[str],
        memory_id: str,
        participants: Mapping[str, str],
    ) -> List[Participant]:
        """Replace the memory's participant tags wholesale (delete all, insert new)."""
        viewer_id = require_viewer(viewer_id, "tag people")
        await self._load_owned(viewer_id, memory_id, "tag people on")
        tagged = await self._write_participants(memory_id, participants, replace=True)
        self.cache.update(memory_id, lambda m: m.model_copy(update={"participants": tagged}))
        return tagged

    # ── Delete ────────────────────────────────────────────────

    async def delete(self, viewer_id: Optional[str], memory_id: str) -> None:
        """Delete the row, drop it from the cache, then clean up its images.

        Reactions, comments and participant tags go with the row through
        the backend cascade. Image cleanup is best-effort and never undoes
        or fails the delete.
        """
        viewer_id = require_viewer(viewer_id, "delete a memory")
        memory = await self._load_owned(viewer_id, memory_id, "delete")

        rows = await self.store.delete(MEMORIES_TABLE, eq={"id": memory_id, "author_id": viewer_id})
        if not rows:
            raise NotFoundError(f"Memory {memory_id} not found")

        self.cache.remove(memory_id)

        images = rows[0].get("images") or memory.images
        if images and not await self.images.delete_urls(images):
            logger.warning(f"Memory {memory_id} deleted but some images remain in storage")
