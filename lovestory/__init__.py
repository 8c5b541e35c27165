"""
lovestory - client-side synchronization core for a shared memory timeline.

Usage:
    from lovestory import TimelineClient, get_settings

    client = TimelineClient.from_settings(get_settings(), access_token)
    memories = await client.memories.fetch_many(user_id)
    await client.reactions.toggle(user_id, memories[0].id, "heart")
"""

from .account import purge_account
from .cache import OptimisticUpdate, ViewCache
from .client import TimelineClient
from .comments import CommentThread
from .config import Settings, get_settings
from .functions import EdgeFunctions
from .images import ImageAssetManager, path_from_url
from .memories import MemoryRepository
from .notifications import NotificationFeed
from .profiles import ProfileRepository, normalize_display_name
from .protocols import (
    ConflictError,
    LovestoryError,
    NetworkError,
    NotFoundError,
    SchemaDegradedError,
    StoreError,
    UnauthorizedError,
    UploadError,
    ValidationError,
)
from .reactions import ReactionLedger
from .relationships import RelationshipGraph, RelationshipLists
from .types import (
    Comment,
    ImageFile,
    Memory,
    MemoryCategory,
    MemoryDraft,
    Notification,
    NotificationType,
    Participant,
    Reaction,
    ReactionType,
    Relationship,
    RelationshipStatus,
    RelationshipType,
    UserProfile,
)

__version__ = "0.1.0"
__all__ = [
    "TimelineClient",
    "Settings",
    "get_settings",
    "MemoryRepository",
    "ReactionLedger",
    "CommentThread",
    "RelationshipGraph",
    "RelationshipLists",
    "NotificationFeed",
    "ProfileRepository",
    "ImageAssetManager",
    "EdgeFunctions",
    "ViewCache",
    "OptimisticUpdate",
    "purge_account",
    "path_from_url",
    "normalize_display_name",
    # Types
    "Memory",
    "MemoryDraft",
    "MemoryCategory",
    "Notification",
    "NotificationType",
    "Reaction",
    "ReactionType",
    "Comment",
    "Participant",
    "Relationship",
    "RelationshipStatus",
    "RelationshipType",
    "UserProfile",
    "ImageFile",
    # Errors
    "LovestoryError",
    "StoreError",
    "NotFoundError",
    "ConflictError",
    "SchemaDegradedError",
    "NetworkError",
    "UploadError",
    "UnauthorizedError",
    "ValidationError",
]
