"""HTTP client for the backend's edge functions.

Each function is a JSON endpoint under ``<supabase_url>/functions/v1``
that answers either with a payload or with ``{"error": "<message>"}`` and
a non-2xx status.
"""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from .config import Settings
from .protocols import (
    ConflictError,
    LovestoryError,
    NetworkError,
    NotFoundError,
    StoreError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

FIND_USER = "find-user"
SEND_INVITATION = "send-invitation"
NOTIFY_RELATIONSHIP_REQUEST = "notify-relationship-request"
DELETE_USER_DATA = "delete-user-data"
CONFIRM_EMAIL = "confirm-email"


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or default
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return default


def _raise_for_response(response: httpx.Response, default: str) -> None:
    if response.is_success:
        return
    message = _error_message(response, default)
    status = response.status_code
    if status == 404:
        raise NotFoundError(message, str(status))
    if status == 409:
        raise ConflictError(message, str(status))
    if status in (401, 403):
        raise UnauthorizedError(message)
    raise StoreError(message, str(status))


class EdgeFunctions:
    """Calls edge functions as the signed-in user.

    Satisfies the UserDirectory and Notifier protocols. The deployed backend
    has no dedicated request-notification function; it mails through the
    generic ``send-email-resend`` function. ``notify-relationship-request``
    is this client's own endpoint name, so deployments without it should
    pass a different Notifier to RelationshipGraph.
    """

    def __init__(
        self,
        base_url: str,
        credential: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.credential = credential
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(
        cls, settings: Settings, credential: str, client: Optional[httpx.AsyncClient] = None
    ) -> "EdgeFunctions":
        return cls(
            settings.functions_url,
            credential,
            timeout=settings.functions_timeout,
            client=client,
        )

    def _headers(self, credential: Optional[str] = None) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential or self.credential}",
            "Content-Type": "application/json",
        }

    async def _call(
        self,
        method: str,
        name: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        credential: Optional[str] = None,
        default_error: str,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/{name}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, json=json, headers=self._headers(credential), timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(
                        method, url, json=json, headers=self._headers(credential)
                    )
        except httpx.RequestError as e:
            raise NetworkError(f"Could not reach {name}: {e}") from e

        _raise_for_response(response, default_error)
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    async def find_user(self, email: str) -> Dict[str, Any]:
        """Resolve an email address or display name to ``{id, display_name}``.

        Any failed lookup that answers with ``{error}`` is a NotFoundError
        carrying the backend message. Auth and transport failures keep their
        own types.
        """
        try:
            payload = await self._call(
                "POST", FIND_USER, json={"email": email}, default_error="User not found"
            )
        except (NotFoundError, NetworkError):
            raise
        except StoreError as e:
            raise NotFoundError(e.message, e.code) from e
        user = payload.get("user")
        if not user or not user.get("id"):
            raise NotFoundError(payload.get("error") or "User not found")
        return {"id": user["id"], "display_name": user.get("display_name")}

    async def send_invitation(
        self, invitee_email: str, personal_message: Optional[str] = None
    ) -> Dict[str, Any]:
        """Email an invitation to someone without an account."""
        body: Dict[str, Any] = {"inviteeEmail": invitee_email}
        if personal_message and personal_message.strip():
            body["personalMessage"] = personal_message.strip()
        return await self._call(
            "POST", SEND_INVITATION, json=body, default_error="Failed to send invitation"
        )

    async def notify_relationship_request(self, receiver_id: str, relationship_type: str) -> None:
        await self._call(
            "POST",
            NOTIFY_RELATIONSHIP_REQUEST,
            json={"receiverId": receiver_id, "relationshipType": relationship_type},
            default_error="Failed to send notification",
        )

    async def delete_user_data(self, credential: Optional[str] = None) -> Dict[str, Any]:
        """Ask the backend to purge the account that ``credential`` signs in as."""
        try:
            return await self._call(
                "DELETE", DELETE_USER_DATA, credential=credential, default_error="Failed to delete account"
            )
        except LovestoryError as e:
            logger.error(f"Account deletion request failed: {e}")
            raise

    def email_confirmation_url(self, user_id: str) -> str:
        """Verification link for a new account's confirmation email.

        ``confirm-email`` answers a browser with an HTML page, so the client
        only builds the link. The token is the base64-encoded user id.
        """
        token = base64.b64encode(user_id.encode()).decode()
        return f"{self.base_url}/{CONFIRM_EMAIL}?token={token}"
