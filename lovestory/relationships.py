"""Relationship graph: requests, responses and removals between two users.

State machine, enforced here and repeated in every write filter so a
concurrent transition cannot be overwritten::

    pending --(receiver accepts)--> accepted --(either party removes)--> (deleted)
    pending --(receiver declines)--> declined

Terminal states never return to pending.
"""

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Union

from .cache import ViewCache
from .profiles import ProfileRepository, normalize_display_name
from .protocols import (
    ConflictError,
    NotFoundError,
    Notifier,
    RelationalStore,
    SchemaDegradedError,
    StoreError,
    UnauthorizedError,
    UserDirectory,
    ValidationError,
)
from .types import (
    RELATIONSHIPS_TABLE,
    Relationship,
    RelationshipStatus,
    RelationshipType,
    utc_now,
)
from .validation import require_viewer, sanitize_string

logger = logging.getLogger(__name__)

RELATIONSHIP_COLUMNS = (
    "*, requester:user_profiles!requester_id(display_name), "
    "receiver:user_profiles!receiver_id(display_name)"
)

_EMBEDS = ("requester", "receiver")


class RelationshipLists(NamedTuple):
    accepted: List[Relationship]
    pending: List[Relationship]


def _coerce_type(relationship_type: Union[str, RelationshipType]) -> RelationshipType:
    try:
        return RelationshipType(relationship_type)
    except ValueError:
        raise ValidationError([f"Unknown relationship type: {relationship_type}"]) from None


def _view(
    row: Dict[str, Any], viewer_id: str, names: Optional[Dict[str, str]] = None
) -> Relationship:
    """Relationship row with partner_id/partner_name relative to ``viewer_id``.

    Names come from the embedded profiles unless ``names`` is given.
    """
    viewer_requested = row["requester_id"] == viewer_id
    partner_id = row["receiver_id"] if viewer_requested else row["requester_id"]
    if names is None:
        embedded = row.get("receiver" if viewer_requested else "requester") or {}
        name = embedded.get("display_name")
    else:
        name = names.get(partner_id)

    data = {key: value for key, value in row.items() if key not in _EMBEDS}
    return Relationship.model_validate(
        {**data, "partner_id": partner_id, "partner_name": normalize_display_name(name)}
    )


class RelationshipGraph:
    """The viewer's relationships, refreshed after every confirmed write."""

    def __init__(
        self,
        store: RelationalStore,
        profiles: ProfileRepository,
        directory: UserDirectory,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.profiles = profiles
        self.directory = directory
        self.notifier = notifier
        self.cache: ViewCache[Relationship] = ViewCache()

    @property
    def relationships(self) -> List[Relationship]:
        """Accepted relationships."""
        return [r for r in self.cache if r.status == RelationshipStatus.accepted]

    @property
    def pending_requests(self) -> List[Relationship]:
        """Pending requests the viewer has received and can respond to."""
        # partner is the requester exactly when the viewer is the receiver
        return [
            r
            for r in self.cache
            if r.status == RelationshipStatus.pending and r.partner_id == r.requester_id
        ]

    # ── Reads ─────────────────────────────────────────────────

    async def list(self, viewer_id: Optional[str]) -> RelationshipLists:
        """Reload every relationship the viewer is a party to."""
        if not viewer_id:
            self.cache.clear()
            return RelationshipLists([], [])

        parties = {"requester_id": viewer_id, "receiver_id": viewer_id}
        try:
            rows = await self.store.select(
                RELATIONSHIPS_TABLE, RELATIONSHIP_COLUMNS, or_eq=parties, order_by="created_at"
            )
            views = [_view(row, viewer_id) for row in rows]
        except SchemaDegradedError as e:
            logger.info(f"Relationship joins unavailable ({e.code}); resolving names separately")
            rows = await self.store.select(RELATIONSHIPS_TABLE, or_eq=parties, order_by="created_at")
            partner_ids = [
                row["receiver_id"] if row["requester_id"] == viewer_id else row["requester_id"]
                for row in rows
            ]
            names = await self.profiles.resolve_display_names(partner_ids)
            views = [_view(row, viewer_id, names) for row in rows]

        self.cache.replace_all(views)
        return RelationshipLists(self.relationships, self.pending_requests)

    async def _load_party(self, viewer_id: str, relationship_id: str) -> Relationship:
        rows = await self.store.select(
            RELATIONSHIPS_TABLE,
            eq={"id": relationship_id},
            or_eq={"requester_id": viewer_id, "receiver_id": viewer_id},
            limit=1,
        )
        if not rows:
            raise NotFoundError(f"Relationship {relationship_id} not found")
        return _view(rows[0], viewer_id, {})

    # ── Writes ────────────────────────────────────────────────

    async def send(
        self,
        viewer_id: Optional[str],
        receiver_email_or_name: str,
        relationship_type: Union[str, RelationshipType] = RelationshipType.romantic,
    ) -> Relationship:
        """Send a pending request to the user found by email or display name.

        Raises:
            NotFoundError: No such user. Nothing is written.
            ConflictError: The receiver is the viewer, or the two users
                already have a pending or accepted relationship.
        """
        viewer_id = require_viewer(viewer_id, "send relationship requests")
        target = sanitize_string(receiver_email_or_name, "email", max_length=320).strip()
        relationship_type = _coerce_type(relationship_type)

        user = await self.directory.find_user(target)
        receiver_id = user["id"]
        if receiver_id == viewer_id:
            raise ConflictError("You cannot send a relationship request to yourself")
        for existing in self.cache:
            if existing.partner_id == receiver_id and existing.status != RelationshipStatus.declined:
                raise ConflictError("relationship already exists")

        row = {
            "requester_id": viewer_id,
            "receiver_id": receiver_id,
            "relationship_type": relationship_type.value,
            "status": RelationshipStatus.pending.value,
        }
        try:
            rows = await self.store.insert(RELATIONSHIPS_TABLE, [row])
        except ConflictError as e:
            raise ConflictError("relationship already exists", e.code) from e
        if not rows:
            raise StoreError("Failed to send relationship request")
        relationship = _view(rows[0], viewer_id, {receiver_id: user.get("display_name")})

        if self.notifier is not None:
            try:
                await self.notifier.notify_relationship_request(receiver_id, relationship_type.value)
            except Exception as e:
                logger.warning(f"Relationship request {relationship.id} sent but not notified: {e}")

        await self.list(viewer_id)
        return relationship

    async def respond(
        self, viewer_id: Optional[str], relationship_id: str, accept: bool
    ) -> Relationship:
        """Accept or decline a pending request the viewer received."""
        viewer_id = require_viewer(viewer_id, "respond to relationship requests")
        current = await self._load_party(viewer_id, relationship_id)
        if current.receiver_id != viewer_id:
            raise UnauthorizedError("Only the receiver can respond to a relationship request")
        if current.status != RelationshipStatus.pending:
            raise ConflictError("already responded")

        status = RelationshipStatus.accepted if accept else RelationshipStatus.declined
        rows = await self.store.update(
            RELATIONSHIPS_TABLE,
            {"status": status.value, "updated_at": utc_now()},
            eq={
                "id": relationship_id,
                "receiver_id": viewer_id,
                "status": RelationshipStatus.pending.value,
            },
        )
        if not rows:
            raise ConflictError("already responded")

        logger.info(f"Relationship {relationship_id} {status.value}")
        await self.list(viewer_id)
        return self.cache.get(relationship_id) or _view(rows[0], viewer_id, {})

    async def remove(self, viewer_id: Optional[str], relationship_id: str) -> None:
        """Delete a relationship the viewer is a party to."""
        viewer_id = require_viewer(viewer_id, "remove relationships")
        await self._load_party(viewer_id, relationship_id)

        rows = await self.store.delete(RELATIONSHIPS_TABLE, eq={"id": relationship_id})
        if not rows:
            raise NotFoundError(f"Relationship {relationship_id} not found")
        await self.list(viewer_id)

    async def update(
        self,
        viewer_id: Optional[str],
        relationship_id: str,
        *,
        relationship_type: Union[str, RelationshipType, None] = None,
        is_primary: Optional[bool] = None,
    ) -> Relationship:
        """Change the type or primary flag of an accepted relationship."""
        viewer_id = require_viewer(viewer_id, "update relationships")
        values: Dict[str, Any] = {}
        if relationship_type is not None:
            values["relationship_type"] = _coerce_type(relationship_type).value
        if is_primary is not None:
            values["is_primary"] = bool(is_primary)

        current = await self._load_party(viewer_id, relationship_id)
        if current.status != RelationshipStatus.accepted:
            raise ConflictError("Only accepted relationships can be updated")
        if not values:
            return self.cache.get(relationship_id) or current

        values["updated_at"] = utc_now()
        rows = await self.store.update(
            RELATIONSHIPS_TABLE,
            values,
            eq={"id": relationship_id, "status": RelationshipStatus.accepted.value},
        )
        if not rows:
            raise NotFoundError(f"Relationship {relationship_id} not found")

        await self.list(viewer_id)
        return self.cache.get(relationship_id) or _view(rows[0], viewer_id, {})
