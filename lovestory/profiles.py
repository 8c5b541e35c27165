"""User profiles and display-name resolution.

Display names stored on profiles are not always names: accounts created
before profile setup may carry their auth UUID or their email address.
``normalize_display_name`` is the single rule every call site uses before
a name is written onto a reaction, comment, memory or relationship view.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

import pydantic

from .cache import ViewCache
from .protocols import NotFoundError, RelationalStore, StoreError, ValidationError
from .types import PROFILES_TABLE, SearchableUser, UserProfile, utc_now
from .validation import escape_like, require_viewer

logger = logging.getLogger(__name__)

ANONYMOUS = "Anonymous"

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

EDITABLE_PROFILE_FIELDS = frozenset(
    {
        "display_name",
        "bio",
        "avatar_url",
        "relationship_status",
        "is_public_profile",
        "default_post_privacy",
    }
)

MIN_SEARCH_LENGTH = 2
SEARCH_LIMIT = 10


def normalize_display_name(name: Optional[str]) -> str:
    """Turn a stored display name into something safe to show.

    Rules, in order:
    - missing or blank -> "Anonymous"
    - looks like a UUID (8-4-4-4-12 hex, any case) -> "Anonymous"
    - contains both "@" and "." (an email address) -> the part before "@"
      with its first letter upper-cased, if that part is longer than two
      characters and has no "+"; otherwise "Anonymous"
    - anything else is returned unchanged

    Examples:
        "jamie@example.com"   -> "Jamie"
        "jo@example.com"      -> "Anonymous"   (local part too short)
        "jamie+tag@x.com"     -> "Anonymous"   (plus-addressed)
        "Dr. Who"             -> "Dr. Who"     (no "@")
    """
    if not name or not name.strip():
        return ANONYMOUS
    if UUID_PATTERN.match(name):
        return ANONYMOUS
    if "@" in name and "." in name:
        local_part = name.split("@")[0]
        if len(local_part) > 2 and "+" not in local_part:
            return local_part[0].upper() + local_part[1:]
        return ANONYMOUS
    return name


class ProfileRepository:
    """Reads and optimistically updates ``user_profiles`` rows."""

    def __init__(self, store: RelationalStore):
        self.store = store
        self.cache: ViewCache[UserProfile] = ViewCache()

    async def resolve_display_name(self, user_id: str) -> str:
        """Normalized display name for ``user_id``; "Anonymous" on any failure."""
        try:
            rows = await self.store.select(
                PROFILES_TABLE, "display_name", eq={"id": user_id}, limit=1
            )
        except StoreError as e:
            logger.debug(f"Could not resolve display name for {user_id}: {e}")
            return ANONYMOUS
        return normalize_display_name(rows[0].get("display_name") if rows else None)

    async def resolve_display_names(self, user_ids: Iterable[str]) -> Dict[str, str]:
        """Batch form of resolve_display_name; unknown ids map to "Anonymous"."""
        ids = sorted({user_id for user_id in user_ids if user_id})
        names = {user_id: ANONYMOUS for user_id in ids}
        if not ids:
            return names
        try:
            rows = await self.store.select(PROFILES_TABLE, "id, display_name", in_={"id": ids})
        except StoreError as e:
            logger.debug(f"Could not resolve display names: {e}")
            return names
        for row in rows:
            names[row["id"]] = normalize_display_name(row.get("display_name"))
        return names

    async def fetch(
        self,
        viewer_id: Optional[str],
        *,
        email: Optional[str] = None,
        metadata_name: Optional[str] = None,
    ) -> UserProfile:
        """Load the viewer's own profile, creating it on first sign-in."""
        viewer_id = require_viewer(viewer_id, "load your profile")
        rows = await self.store.select(PROFILES_TABLE, eq={"id": viewer_id}, limit=1)
        if rows:
            profile = UserProfile.model_validate(rows[0])
        else:
            logger.info(f"No profile for {viewer_id}; creating one")
            created = await self.store.insert(
                PROFILES_TABLE,
                [
                    {
                        "id": viewer_id,
                        "display_name": metadata_name or email or ANONYMOUS,
                        "default_post_privacy": True,
                    }
                ],
            )
            profile = UserProfile.model_validate(created[0])
        self.cache.upsert(profile)
        return profile

    async def get_public(self, user_id: str) -> UserProfile:
        """Another user's profile, as shown on their profile page."""
        rows = await self.store.select(PROFILES_TABLE, eq={"id": user_id}, limit=1)
        if not rows:
            raise NotFoundError(f"Profile {user_id} not found")
        profile = UserProfile.model_validate(rows[0])
        self.cache.upsert(profile)
        return profile

    async def update(self, viewer_id: Optional[str], updates: Dict[str, Any]) -> UserProfile:
        """Apply ``updates`` to the cached profile first, then persist.

        On failure the cached profile is restored and the error re-raised.
        """
        viewer_id = require_viewer(viewer_id, "update your profile")
        unknown = sorted(set(updates) - EDITABLE_PROFILE_FIELDS)
        if unknown:
            raise ValidationError([f"{field} cannot be updated" for field in unknown])

        current = self.cache.get(viewer_id) or await self.fetch(viewer_id)
        try:
            speculative = UserProfile.model_validate({**current.model_dump(), **updates})
        except pydantic.ValidationError as e:
            raise ValidationError([error["msg"] for error in e.errors()]) from e

        dumped = speculative.model_dump(mode="json")
        payload = {field: dumped[field] for field in updates}
        payload["updated_at"] = utc_now()

        with self.cache.optimistic(viewer_id) as tx:
            tx.apply(speculative)
            rows = await self.store.update(PROFILES_TABLE, payload, eq={"id": viewer_id})
            if not rows:
                raise NotFoundError(f"Profile {viewer_id} not found")
            return tx.commit(UserProfile.model_validate(rows[0]))

    async def search(self, viewer_id: Optional[str], query: str) -> List[SearchableUser]:
        """Find other users by display name for tagging and requests."""
        if not viewer_id:
            return []
        trimmed = (query or "").strip()
        if len(trimmed) < MIN_SEARCH_LENGTH:
            return []

        rows = await self.store.select(
            PROFILES_TABLE,
            "id, display_name, is_public_profile",
            ilike={"display_name": f"%{escape_like(trimmed)}%"},
            neq={"id": viewer_id},
            order_by=None,
            limit=SEARCH_LIMIT,
        )
        results = []
        for row in rows:
            name = row.get("display_name")
            if not name or not name.strip() or UUID_PATTERN.match(name):
                continue
            results.append(SearchableUser.model_validate(row))
        return results
