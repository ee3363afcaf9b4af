"""
Tests for the chat API client wire contract.
"""

from dataclasses import fields
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from chavrusa.api import ChatAPIClient, MalformedResponseError
from chavrusa.models import UserContext


def make_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


def patched_client(mock_client, method, response):
    mock_instance = AsyncMock()
    getattr(mock_instance, method).return_value = response
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=False)
    mock_client.return_value = mock_instance
    return mock_instance


class TestChatAPIClient:
    """Tests for ChatAPIClient."""

    def test_init(self):
        client = ChatAPIClient("http://example.test/api/", timeout=3.0, request_timeout=9.0)
        assert client.base_url == "http://example.test/api"
        assert client.timeout == 3.0
        assert client.request_timeout == 9.0

    @pytest.mark.asyncio
    async def test_get_personas(self):
        client = ChatAPIClient(log_requests=False)
        payload = {"success": True, "data": {"rabbis": [
            {"id": "rashi", "name": "Rashi", "displayName": "Rashi", "specialties": ["Peshat"]},
        ]}}

        with patch("httpx.AsyncClient") as mock_client:
            instance = patched_client(mock_client, "get", make_response(payload))
            personas = await client.get_personas()

        assert [p.id for p in personas] == ["rashi"]
        assert personas[0].display_name == "Rashi"
        instance.get.assert_awaited_once_with("http://localhost:8081/api/chat/rabbis")

    @pytest.mark.asyncio
    async def test_get_personas_without_list_is_malformed(self):
        client = ChatAPIClient(log_requests=False)

        with patch("httpx.AsyncClient") as mock_client:
            patched_client(mock_client, "get", make_response({"success": True, "data": {}}))
            with pytest.raises(MalformedResponseError) as exc_info:
                await client.get_personas()

        assert exc_info.value.field == "rabbis"

    @pytest.mark.asyncio
    async def test_create_session(self):
        client = ChatAPIClient(log_requests=False)
        headers = {"Authorization": "Bearer abc"}

        with patch("httpx.AsyncClient") as mock_client:
            instance = patched_client(
                mock_client, "post", make_response({"success": True, "data": {"sessionId": "s-42"}})
            )
            session_id = await client.create_session(headers)

        assert session_id == "s-42"
        _, kwargs = instance.post.call_args
        assert kwargs["json"] == {}
        assert kwargs["headers"] == {"Content-Type": "application/json", "Authorization": "Bearer abc"}

    @pytest.mark.asyncio
    async def test_create_session_missing_id(self):
        client = ChatAPIClient(log_requests=False)

        with patch("httpx.AsyncClient") as mock_client:
            patched_client(mock_client, "post", make_response({"success": True, "data": {}}))
            with pytest.raises(MalformedResponseError):
                await client.create_session()

    @pytest.mark.asyncio
    async def test_missing_envelope_is_malformed(self):
        client = ChatAPIClient(log_requests=False)

        with patch("httpx.AsyncClient") as mock_client:
            patched_client(mock_client, "post", make_response(["not", "an", "envelope"]))
            with pytest.raises(MalformedResponseError) as exc_info:
                await client.create_session()

        assert exc_info.value.field == "data"

    @pytest.mark.asyncio
    async def test_get_sessions(self):
        client = ChatAPIClient(log_requests=False)
        payload = {"success": True, "data": {"sessions": [
            {"id": "s1", "title": "Shabbat", "rabbi": "rambam", "messageCount": 6},
            {"id": "s2", "messageCount": None},
        ]}}

        with patch("httpx.AsyncClient") as mock_client:
            patched_client(mock_client, "get", make_response(payload))
            sessions = await client.get_sessions()

        assert [s.id for s in sessions] == ["s1", "s2"]
        assert sessions[0].message_count == 6
        assert sessions[0].rabbi == "rambam"

    @pytest.mark.asyncio
    async def test_get_sessions_without_list_is_empty(self):
        client = ChatAPIClient(log_requests=False)

        with patch("httpx.AsyncClient") as mock_client:
            patched_client(mock_client, "get", make_response({"success": True, "data": {}}))
            assert await client.get_sessions() == []

    @pytest.mark.asyncio
    async def test_get_history(self):
        client = ChatAPIClient(log_requests=False)
        payload = {"success": True, "data": {
            "rabbi": "Rashi",
            "messages": [
                {"id": None, "content": "What does bereshit mean?", "isUser": True},
                {"id": "a1", "content": "In the beginning...", "isUser": False,
                 "references": [{"reference": "Rashi on Genesis 1:1"}]},
            ],
        }}

        with patch("httpx.AsyncClient") as mock_client:
            instance = patched_client(mock_client, "get", make_response(payload))
            history = await client.get_history("s1")

        assert history.rabbi == "Rashi"
        assert len(history.messages) == 2
        assert history.messages[0].id
        assert history.messages[1].references[0].reference == "Rashi on Genesis 1:1"
        args, _ = instance.get.call_args
        assert args[0] == "http://localhost:8081/api/chat/history/s1"

    @pytest.mark.asyncio
    async def test_get_history_without_messages_is_malformed(self):
        client = ChatAPIClient(log_requests=False)

        with patch("httpx.AsyncClient") as mock_client:
            patched_client(mock_client, "get", make_response({"success": True, "data": {"rabbi": "x"}}))
            with pytest.raises(MalformedResponseError):
                await client.get_history("s1")

    @pytest.mark.asyncio
    async def test_send_message(self):
        client = ChatAPIClient(log_requests=False)
        payload = {"success": True, "data": {
            "aiResponse": "Shabbat is a day of rest.",
            "references": [{"reference": "Exodus 20:8", "url": "https://www.sefaria.org/Exodus.20.8"}, "bogus"],
        }}
        context = UserContext(id="u1", email="learner@example.com", display_name="Learner")

        with patch("httpx.AsyncClient") as mock_client:
            instance = patched_client(mock_client, "post", make_response(payload))
            reply = await client.send_message("What is Shabbat?", "s1", "rashi", user_context=context)

        assert reply.content == "Shabbat is a day of rest."
        assert [r.reference for r in reply.references] == ["Exodus 20:8"]
        assert {f.name for f in fields(reply)} == {"content", "references"}

        args, kwargs = instance.post.call_args
        assert args[0] == "http://localhost:8081/api/chat/message"
        assert kwargs["json"] == {
            "message": "What is Shabbat?",
            "sessionId": "s1",
            "rabbi": "rashi",
            "userContext": {"id": "u1", "email": "learner@example.com", "displayName": "Learner"},
        }

    @pytest.mark.asyncio
    async def test_send_message_without_answer_is_malformed(self):
        client = ChatAPIClient(log_requests=False)

        with patch("httpx.AsyncClient") as mock_client:
            patched_client(mock_client, "post", make_response({"success": True, "data": {"aiResponse": ""}}))
            with pytest.raises(MalformedResponseError) as exc_info:
                await client.send_message("hi", "s1", "rashi")

        assert exc_info.value.field == "aiResponse"

    @pytest.mark.asyncio
    async def test_http_error_propagates(self):
        client = ChatAPIClient(log_requests=False)
        request = httpx.Request("POST", "http://localhost:8081/api/chat/message")
        response = make_response({})
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "boom", request=request, response=httpx.Response(502, request=request)
        )

        with patch("httpx.AsyncClient") as mock_client:
            patched_client(mock_client, "post", response)
            with pytest.raises(httpx.HTTPStatusError):
                await client.send_message("hi", "s1", "rashi")
