"""Session facade wiring the repositories around one Supabase client."""

import logging
from typing import Optional

from .comments import CommentThread
from .config import Settings, get_settings
from .database import SupabaseObjectStorage, SupabaseStore, get_supabase_client
from .functions import EdgeFunctions
from .images import ImageAssetManager
from .memories import MemoryRepository
from .notifications import NotificationFeed
from .profiles import ProfileRepository
from .protocols import ObjectStorage, RelationalStore
from .reactions import ReactionLedger
from .relationships import RelationshipGraph

logger = logging.getLogger(__name__)


class TimelineClient:
    """Everything one signed-in (or anonymous) session reads and writes.

    Example:
        client = TimelineClient.from_settings(get_settings(), access_token)
        await client.memories.fetch_many(user_id)
        await client.reactions.toggle(user_id, memory_id, "heart")
    """

    def __init__(
        self,
        store: RelationalStore,
        storage: ObjectStorage,
        functions: EdgeFunctions,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.functions = functions
        self.images = ImageAssetManager(
            storage,
            max_files=settings.max_images_per_memory,
            max_bytes=settings.max_image_bytes,
            allowed_types=settings.allowed_image_types,
        )
        self.profiles = ProfileRepository(store)
        self.memories = MemoryRepository(store, self.images, self.profiles)
        self.reactions = ReactionLedger(store, self.memories, self.profiles)
        self.comments = CommentThread(store, self.memories, self.profiles)
        self.relationships = RelationshipGraph(
            store, self.profiles, directory=functions, notifier=functions
        )
        self.notifications = NotificationFeed(store, self.relationships, self.profiles)

    @classmethod
    def from_settings(cls, settings: Settings, credential: Optional[str] = None) -> "TimelineClient":
        """Build a client acting as ``credential``'s user, or anonymously."""
        supabase = get_supabase_client(settings, access_token=credential)
        storage = SupabaseObjectStorage(
            supabase, settings.storage_bucket, cache_control=settings.storage_cache_control
        )
        functions = EdgeFunctions.from_settings(settings, credential or settings.public_key or "")
        logger.debug(f"Timeline client for {settings.supabase_url} (signed in: {bool(credential)})")
        return cls(SupabaseStore(supabase), storage, functions, settings)
