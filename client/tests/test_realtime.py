"""
Tests for the socket.io realtime channel.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from socketio.exceptions import ConnectionError as SocketConnectionError

from chavrusa.channels import RealtimeChannel
from chavrusa.models import MessageStatus


@pytest.fixture
def sio():
    client = MagicMock()
    client.connected = True
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    client.emit = AsyncMock()
    return client


@pytest.fixture
def handlers():
    return MagicMock()


@pytest.fixture
def channel(sio, handlers):
    channel = RealtimeChannel("http://localhost:8081", client=sio)
    channel.bind(handlers)
    return channel


class TestConnection:
    """Tests for connecting and joining sessions."""

    def test_registers_server_events(self, channel, sio):
        events = {c.args[0] for c in sio.on.call_args_list}
        assert {"message-received", "typing-started", "typing-stopped",
                "message-status-update", "reference-found"} <= events

    @pytest.mark.asyncio
    async def test_connect_failure_returns_false(self, channel, sio):
        sio.connected = False
        sio.connect.side_effect = SocketConnectionError("refused")

        assert await channel.connect() is False

    @pytest.mark.asyncio
    async def test_connect_uses_websocket_then_polling(self, channel, sio):
        sio.connected = False

        assert await channel.connect() is True
        sio.connect.assert_awaited_once_with(
            "http://localhost:8081", transports=["websocket", "polling"]
        )

    @pytest.mark.asyncio
    async def test_join_and_leave(self, channel, sio):
        await channel.join_session("s1")
        await channel.leave_session()

        assert [c.args for c in sio.emit.await_args_list] == [
            ("join-session", "s1"),
            ("leave-session", "s1"),
        ]
        assert channel.session_id is None

    @pytest.mark.asyncio
    async def test_emits_skipped_while_disconnected(self, channel, sio):
        sio.connected = False

        await channel.join_session("s1")
        await channel.start_typing()

        sio.emit.assert_not_called()
        assert channel.session_id == "s1"

    @pytest.mark.asyncio
    async def test_rejoins_session_on_reconnect(self, channel, sio):
        sio.connected = False
        await channel.join_session("s1")
        sio.connected = True

        await channel._on_connect()

        sio.emit.assert_awaited_once_with("join-session", "s1")

    @pytest.mark.asyncio
    async def test_outbound_status(self, channel, sio):
        await channel.join_session("s1")
        await channel.update_message_status("m1", MessageStatus.DELIVERED)

        sio.emit.assert_awaited_with(
            "message-status", {"messageId": "m1", "status": "delivered", "sessionId": "s1"}
        )


class TestInbound:
    """Tests for server-pushed events."""

    def test_parse_message_defaults_to_assistant(self):
        message, session_id = RealtimeChannel.parse_message(
            {"id": "m1", "content": "Shalom", "sessionId": "s1"}
        )
        assert message.id == "m1"
        assert message.is_user is False
        assert session_id == "s1"

    def test_parse_message_rejects_empty(self):
        assert RealtimeChannel.parse_message({"content": ""}) == (None, None)
        assert RealtimeChannel.parse_message("text") == (None, None)

    def test_parse_status_update(self):
        assert RealtimeChannel.parse_status_update({"messageId": "m1", "status": "failed"}) == {
            "message_id": "m1", "status": MessageStatus.FAILED, "session_id": None,
        }
        assert RealtimeChannel.parse_status_update({"messageId": "m1", "status": "lost"}) is None

    @pytest.mark.asyncio
    async def test_message_dispatched_to_handlers(self, channel, handlers):
        await channel._on_message_received({"content": "Shalom", "isUser": False, "sessionId": "s2"})

        message, session_id = handlers.add_received_message.call_args.args
        assert message.content == "Shalom"
        assert session_id == "s2"

    @pytest.mark.asyncio
    async def test_typing_and_reference_dispatch(self, channel, handlers):
        await channel._on_typing_started({})
        await channel._on_typing_stopped({})
        await channel._on_reference_found({"reference": "Berakhot 2a", "url": "https://www.sefaria.org/Berakhot.2a"})
        await channel._on_message_status_update({"messageId": "m1", "status": "delivered", "sessionId": "s1"})

        assert [c.args for c in handlers.set_typing.call_args_list] == [(True,), (False,)]
        reference, session_id = handlers.add_reference.call_args.args
        assert reference.reference == "Berakhot 2a"
        assert session_id is None
        handlers.update_message_status.assert_called_once_with(
            message_id="m1", status=MessageStatus.DELIVERED, session_id="s1"
        )

    @pytest.mark.asyncio
    async def test_malformed_reference_is_ignored(self, channel, handlers):
        await channel._on_reference_found({"url": "no reference"})
        handlers.add_reference.assert_not_called()
