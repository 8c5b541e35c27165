"""Account lifecycle: purging a user and everything they own.

Memories, reactions, comments, participant tags, relationships and the
profile go with the identity through the backend's cascade. Images are not
rows, so they are removed from storage first.
"""

import logging

from .config import Settings
from .database import SupabaseIdentityAdmin, get_admin_client
from .images import ImageAssetManager, paths_from_urls
from .protocols import IdentityAdmin, RelationalStore, StoreError
from .types import MEMORIES_TABLE

logger = logging.getLogger(__name__)


def identity_admin_from_settings(settings: Settings | None = None) -> SupabaseIdentityAdmin:
    """Privileged identity admin built from the secret (service role) key."""
    return SupabaseIdentityAdmin(get_admin_client(settings))


async def purge_account(
    store: RelationalStore,
    images: ImageAssetManager,
    identity_admin: IdentityAdmin,
    user_id: str,
) -> int:
    """Delete ``user_id``'s images, then the identity itself.

    Image cleanup is best-effort and never blocks the identity delete.
    Errors from the identity delete propagate.

    Returns:
        Number of image paths submitted for deletion.
    """
    paths = []
    try:
        rows = await store.select(MEMORIES_TABLE, "images", eq={"author_id": user_id})
    except StoreError as e:
        logger.warning(f"Could not list images for {user_id}; skipping image cleanup: {e}")
        rows = []
    for row in rows:
        paths.extend(paths_from_urls(row.get("images") or []))

    if paths and not await images.delete_all(paths):
        logger.warning(f"Some of {len(paths)} images for {user_id} remain in storage")

    await identity_admin.delete_user(user_id)
    logger.info(f"Purged account {user_id} ({len(paths)} images)")
    return len(paths)
