"""Tests for the edge-function HTTP client."""

import json

import httpx
import pytest

from lovestory.config import Settings
from lovestory.functions import EdgeFunctions
from lovestory.protocols import NetworkError, NotFoundError, StoreError, UnauthorizedError
from lovestory.relationships import RelationshipGraph
from lovestory.types import RELATIONSHIPS_TABLE

BASE = "https://test.supabase.co/functions/v1"
ALICE = "user-alice"


def _functions(handler) -> EdgeFunctions:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EdgeFunctions(BASE, "viewer-token", client=client)


class TestFindUser:
    @pytest.mark.asyncio
    async def test_returns_user(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"user": {"id": "u2", "display_name": "Bob"}})

        user = await _functions(handler).find_user("bob@example.com")

        assert user == {"id": "u2", "display_name": "Bob"}
        assert seen["url"] == f"{BASE}/find-user"
        assert seen["auth"] == "Bearer viewer-token"
        assert seen["body"] == {"email": "bob@example.com"}

    @pytest.mark.asyncio
    async def test_not_found_carries_backend_message(self):
        def handler(request):
            return httpx.Response(404, json={"error": "User has not completed profile setup"})

        with pytest.raises(NotFoundError, match="not completed profile setup"):
            await _functions(handler).find_user("new@example.com")

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            await _functions(handler).find_user("bob@example.com")

    @pytest.mark.asyncio
    async def test_server_error_is_failed_lookup(self):
        def handler(request):
            return httpx.Response(500, json={"error": "Failed to search users"})

        with pytest.raises(NotFoundError, match="Failed to search users"):
            await _functions(handler).find_user("bob@example.com")

    @pytest.mark.asyncio
    async def test_unauthorized_is_not_a_failed_lookup(self):
        def handler(request):
            return httpx.Response(401, json={"error": "Invalid token"})

        with pytest.raises(UnauthorizedError):
            await _functions(handler).find_user("bob@example.com")

    @pytest.mark.asyncio
    async def test_send_fails_cleanly_when_lookup_errors(self, store, profiles):
        def handler(request):
            return httpx.Response(500, json={"error": "Failed to search users"})

        graph = RelationshipGraph(store, profiles, _functions(handler))

        with pytest.raises(NotFoundError, match="Failed to search users"):
            await graph.send(ALICE, "someone@example.com")
        assert store.rows(RELATIONSHIPS_TABLE) == []


class TestOtherFunctions:
    @pytest.mark.asyncio
    async def test_send_invitation_trims_message(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        result = await _functions(handler).send_invitation("friend@example.com", "  Join us!  ")

        assert result == {"success": True}
        assert bodies == [{"inviteeEmail": "friend@example.com", "personalMessage": "Join us!"}]

    @pytest.mark.asyncio
    async def test_send_invitation_server_error(self):
        def handler(request):
            return httpx.Response(500, json={"error": "Email service not configured"})

        with pytest.raises(StoreError, match="Email service not configured"):
            await _functions(handler).send_invitation("friend@example.com")

    @pytest.mark.asyncio
    async def test_notify_relationship_request(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={})

        await _functions(handler).notify_relationship_request("u2", "romantic")

        assert requests[0].url.path.endswith("/notify-relationship-request")
        assert json.loads(requests[0].content) == {"receiverId": "u2", "relationshipType": "romantic"}

    @pytest.mark.asyncio
    async def test_delete_user_data_uses_given_credential(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"success": True})

        await _functions(handler).delete_user_data("other-token")

        assert seen == {"method": "DELETE", "auth": "Bearer other-token"}

    @pytest.mark.asyncio
    async def test_delete_user_data_unauthorized(self):
        def handler(request):
            return httpx.Response(401, json={"error": "Invalid token"})

        with pytest.raises(UnauthorizedError, match="Invalid token"):
            await _functions(handler).delete_user_data()


def test_from_settings_uses_functions_url():
    settings = Settings(supabase_url="https://proj.supabase.co/", functions_timeout=3.0)
    functions = EdgeFunctions.from_settings(settings, "token")
    assert functions.base_url == "https://proj.supabase.co/functions/v1"
    assert functions.timeout == 3.0


def test_email_confirmation_url_encodes_user_id():
    functions = EdgeFunctions(BASE, "token")
    url = functions.email_confirmation_url("user-alice")
    assert url == f"{BASE}/confirm-email?token=dXNlci1hbGljZQ=="
