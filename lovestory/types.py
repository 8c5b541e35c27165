"""
Shared row types for lovestory.

All rows that cross the store boundary as dicts are parsed into these
models. They are the contract between the repositories and their callers.
Input-only shapes (drafts, files) live here too.
"""

from dataclasses import dataclass
from datetime import date as Date
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def utc_today() -> Date:
    return datetime.now(timezone.utc).date()


# === Table Names ===

MEMORIES_TABLE = "memories"
REACTIONS_TABLE = "reactions"
COMMENTS_TABLE = "comments"
PARTICIPANTS_TABLE = "memory_participants"
RELATIONSHIPS_TABLE = "relationships"
PROFILES_TABLE = "user_profiles"


# === Enums ===


class MemoryCategory(str, Enum):
    """Timeline categories a memory can be filed under."""

    first_date = "first_date"
    anniversary = "anniversary"
    proposal = "proposal"
    wedding = "wedding"
    vacation = "vacation"
    milestone = "milestone"
    special_moment = "special_moment"
    everyday_joy = "everyday_joy"


class ReactionType(str, Enum):
    heart = "heart"
    smile = "smile"
    celebration = "celebration"


class RelationshipStatus(str, Enum):
    """Relationship lifecycle states. pending is the only non-terminal one."""

    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class RelationshipType(str, Enum):
    romantic = "romantic"
    partnership = "partnership"
    friendship = "friendship"
    other = "other"


class RelationshipStatusLabel(str, Enum):
    """Self-reported status shown on a profile."""

    single = "single"
    in_relationship = "in_relationship"
    married = "married"
    complicated = "complicated"
    prefer_not_to_say = "prefer_not_to_say"


# === Memory sub-collections ===


class Reaction(BaseModel):
    """One reaction; unique per (memory_id, user_id, reaction_type)."""

    id: str
    created_at: Optional[datetime] = None
    memory_id: str
    user_id: str
    reaction_type: ReactionType
    user_name: str = "Anonymous"


class Comment(BaseModel):
    id: str
    created_at: Optional[datetime] = None
    memory_id: str
    user_id: str
    content: str
    user_name: str = "Anonymous"


class Participant(BaseModel):
    """Another user tagged on a memory."""

    id: Optional[str] = None
    created_at: Optional[datetime] = None
    memory_id: str
    user_id: str
    user_name: str = "Anonymous"


# === Memory ===


class Memory(BaseModel):
    """A single timeline post with its joined sub-collections.

    Sub-collections are empty (not missing) when the backend could not
    resolve the joins.
    """

    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    title: str
    description: str = ""
    date: Date
    location: Optional[str] = None
    category: MemoryCategory = MemoryCategory.special_moment
    is_public: bool = True
    images: list[str] = []
    author_id: str
    author_name: str = "Anonymous"
    reactions: list[Reaction] = []
    comments: list[Comment] = []
    participants: list[Participant] = []

    @field_validator("images", "reactions", "comments", "participants", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def reaction_of(self, user_id: str, reaction_type: ReactionType) -> Optional[Reaction]:
        """The viewer's reaction of ``reaction_type``, if held."""
        for reaction in self.reactions:
            if reaction.user_id == user_id and reaction.reaction_type == reaction_type:
                return reaction
        return None


class MemoryDraft(BaseModel):
    """Fields a caller supplies to create a memory."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    date: Date = Field(default_factory=utc_today)
    location: Optional[str] = None
    category: MemoryCategory = MemoryCategory.special_moment
    is_public: bool = True


# Fields callers may change through MemoryRepository.update
EDITABLE_MEMORY_FIELDS = frozenset(
    {"title", "description", "date", "location", "category", "is_public"}
)


# === Relationships ===


class Relationship(BaseModel):
    """A connection between two users.

    partner_id / partner_name are derived client-side relative to the
    viewer that listed the relationship.
    """

    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    requester_id: str
    receiver_id: str
    status: RelationshipStatus = RelationshipStatus.pending
    relationship_type: RelationshipType = RelationshipType.romantic
    is_primary: bool = False
    partner_id: Optional[str] = None
    partner_name: Optional[str] = None


# === Notifications ===


class NotificationType(str, Enum):
    relationship_request = "relationship_request"
    memory_reaction = "memory_reaction"
    memory_comment = "memory_comment"


class Notification(BaseModel):
    """An entry in the viewer's notification list.

    ids are ``relationship_<id>``, ``reaction_<id>`` or ``comment_<id>``,
    so the same source row never appears twice.
    """

    id: str
    type: NotificationType
    title: str
    message: str
    created_at: Optional[datetime] = None
    read: bool = False
    action_data: dict[str, Any] = {}


# === Profiles ===


class UserProfile(BaseModel):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    display_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    relationship_status: RelationshipStatusLabel = RelationshipStatusLabel.prefer_not_to_say
    is_public_profile: bool = True
    default_post_privacy: bool = True


class SearchableUser(BaseModel):
    id: str
    display_name: str
    is_public_profile: bool = True


# === Input-only ===


@dataclass
class ImageFile:
    """A binary attachment supplied by the caller for upload."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        if "." not in self.filename:
            return "bin"
        return self.filename.rsplit(".", 1)[-1].lower() or "bin"
