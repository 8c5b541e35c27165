"""Notification feed for the signed-in viewer.

Three sources feed the list:
- pending relationship requests the viewer received (from RelationshipGraph)
- reactions other users leave on the viewer's memories
- comments other users leave on the viewer's memories

Reaction and comment rows arrive one at a time from the caller's realtime
subscription (INSERT events on ``reactions``, ``comments`` and
``relationships``); ``handle_insert`` routes a payload's new record to the
matching handler. Entries are keyed by source row, so a row delivered twice
yields one notification.
"""

import logging
from typing import Any, Dict, List, Optional

from .cache import ViewCache
from .profiles import ProfileRepository
from .protocols import RelationalStore, StoreError
from .relationships import RelationshipGraph
from .types import (
    COMMENTS_TABLE,
    MEMORIES_TABLE,
    REACTIONS_TABLE,
    RELATIONSHIPS_TABLE,
    Notification,
    NotificationType,
    Relationship,
    RelationshipStatus,
)

logger = logging.getLogger(__name__)

REACTION_EMOJI = {"heart": "❤️", "smile": "😊", "celebration": "🎉"}
DEFAULT_EMOJI = "👍"


def _request_notification(
    relationship_id: str, requester_name: str, relationship_type: str, created_at: Any
) -> Notification:
    return Notification(
        id=f"relationship_{relationship_id}",
        type=NotificationType.relationship_request,
        title="New Relationship Request",
        message=f"{requester_name} wants to connect as your {relationship_type}",
        created_at=created_at,
        action_data={
            "request_id": relationship_id,
            "requester_name": requester_name,
            "relationship_type": relationship_type,
        },
    )


def _from_request(relationship: Relationship) -> Notification:
    return _request_notification(
        relationship.id,
        relationship.partner_name or "Anonymous",
        relationship.relationship_type.value,
        relationship.created_at,
    )


class NotificationFeed:
    """The viewer's notifications, newest realtime entries first."""

    def __init__(
        self,
        store: RelationalStore,
        relationships: RelationshipGraph,
        profiles: ProfileRepository,
    ):
        self.store = store
        self.relationships = relationships
        self.profiles = profiles
        self.cache: ViewCache[Notification] = ViewCache()

    @property
    def notifications(self) -> List[Notification]:
        return self.cache.snapshot()

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.cache if not n.read)

    # ── Sources ───────────────────────────────────────────────

    def sync_requests(self, viewer_id: Optional[str]) -> List[Notification]:
        """Rebuild request entries from the graph's pending requests.

        Other entries are kept. A request that is still pending keeps its
        read flag; answered requests drop out.
        """
        if not viewer_id:
            self.cache.clear()
            return []

        previous = {n.id: n for n in self.cache}
        others = [n for n in self.cache if n.type != NotificationType.relationship_request]
        requests = []
        for relationship in self.relationships.pending_requests:
            notification = _from_request(relationship)
            if notification.id in previous:
                notification.read = previous[notification.id].read
            requests.append(notification)

        self.cache.replace_all(others + requests)
        return self.notifications

    async def on_relationship_insert(
        self, viewer_id: Optional[str], record: Dict[str, Any]
    ) -> Optional[Notification]:
        """A relationship row was inserted; notify if it is a request to the viewer."""
        if not viewer_id or record.get("receiver_id") != viewer_id:
            return None
        if record.get("status") != RelationshipStatus.pending.value:
            return None

        name = await self.profiles.resolve_display_name(record["requester_id"])
        notification = _request_notification(
            record["id"], name, record.get("relationship_type", ""), record.get("created_at")
        )
        return self._add(notification)

    async def on_reaction_insert(
        self, viewer_id: Optional[str], record: Dict[str, Any]
    ) -> Optional[Notification]:
        """Someone reacted; notify if it is on one of the viewer's memories."""
        memory = await self._viewer_memory(viewer_id, record)
        if memory is None:
            return None

        reaction_type = record.get("reaction_type", "")
        emoji = REACTION_EMOJI.get(reaction_type, DEFAULT_EMOJI)
        user_name = record.get("user_name") or "Anonymous"
        return self._add(
            Notification(
                id=f"reaction_{record['id']}",
                type=NotificationType.memory_reaction,
                title="New Reaction",
                message=f'{user_name} reacted {emoji} to "{memory["title"]}"',
                created_at=record.get("created_at"),
                action_data={
                    "memory_id": memory["id"],
                    "memory_title": memory["title"],
                    "user_name": user_name,
                    "reaction_type": reaction_type,
                },
            )
        )

    async def on_comment_insert(
        self, viewer_id: Optional[str], record: Dict[str, Any]
    ) -> Optional[Notification]:
        """Someone commented; notify if it is on one of the viewer's memories."""
        memory = await self._viewer_memory(viewer_id, record)
        if memory is None:
            return None

        user_name = record.get("user_name") or "Anonymous"
        return self._add(
            Notification(
                id=f"comment_{record['id']}",
                type=NotificationType.memory_comment,
                title="New Comment",
                message=f'{user_name} commented on "{memory["title"]}"',
                created_at=record.get("created_at"),
                action_data={
                    "memory_id": memory["id"],
                    "memory_title": memory["title"],
                    "user_name": user_name,
                },
            )
        )

    async def handle_insert(
        self, viewer_id: Optional[str], table: str, record: Dict[str, Any]
    ) -> Optional[Notification]:
        """Dispatch a realtime INSERT payload by table name."""
        if table == RELATIONSHIPS_TABLE:
            return await self.on_relationship_insert(viewer_id, record)
        if table == REACTIONS_TABLE:
            return await self.on_reaction_insert(viewer_id, record)
        if table == COMMENTS_TABLE:
            return await self.on_comment_insert(viewer_id, record)
        logger.debug(f"Ignoring insert on {table}")
        return None

    async def _viewer_memory(
        self, viewer_id: Optional[str], record: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        # the viewer's own reactions and comments never notify
        if not viewer_id or record.get("user_id") == viewer_id:
            return None
        try:
            rows = await self.store.select(
                MEMORIES_TABLE,
                "id, title, author_id",
                eq={"id": record.get("memory_id")},
                limit=1,
            )
        except StoreError as e:
            logger.warning(f"Could not load memory {record.get('memory_id')} for notification: {e}")
            return None
        if not rows or rows[0].get("author_id") != viewer_id:
            return None
        return rows[0]

    def _add(self, notification: Notification) -> Optional[Notification]:
        if notification.id in self.cache:
            return None
        self.cache.prepend(notification)
        return notification

    # ── Read state ────────────────────────────────────────────

    def mark_as_read(self, notification_id: str) -> None:
        self.cache.update(notification_id, lambda n: n.model_copy(update={"read": True}))

    def mark_all_as_read(self) -> None:
        self.cache.replace_all([n.model_copy(update={"read": True}) for n in self.cache])

    def remove(self, notification_id: str) -> None:
        self.cache.remove(notification_id)
