import asyncio

import pytest

from conftest import FakeConnector
from franta_voice.errors import ProtocolError, SessionConnectionError
from franta_voice.events import (
    InteractionCreate,
    Ready,
    Reconnect,
    Resume,
    ResumeProps,
    SequenceUpdate,
    SessionFatal,
    VoiceStateUpdate,
)
from franta_voice.gateway import GatewaySession, classify_close, decode_dispatch
from franta_voice.models import ResumeToken

ENDPOINT = "wss://gateway.test"


async def next_event(events: asyncio.Queue, timeout: float = 1.0):
    return await asyncio.wait_for(events.get(), timeout)


READY = {
    "op": 0,
    "s": 1,
    "t": "READY",
    "d": {
        "resume_gateway_url": "wss://resume.gateway.test",
        "session_id": "sess-1",
        "user": {"id": "42", "username": "franta", "discriminator": "0", "bot": True},
    },
}


class TestCloseClassification:
    """Tests for mapping close codes to the next step."""

    @pytest.mark.parametrize("code", [4000, 4001, 4002, 4009])
    def test_resume_codes(self, code):
        assert classify_close(code) == "resume"

    @pytest.mark.parametrize("code", [4003, 4005, 4007, 4008])
    def test_reconnect_codes(self, code):
        assert classify_close(code) == "reconnect"

    @pytest.mark.parametrize("code", [4004, 4010, 4011, 4013, 4014])
    def test_fatal_codes(self, code):
        assert classify_close(code) == "fatal"

    @pytest.mark.parametrize("code", [1000, 1006, 4006, 4012, None])
    def test_unknown_codes_resume(self, code):
        assert classify_close(code) == "resume"


class TestDecodeDispatch:
    """Tests for turning named dispatches into events."""

    def test_ready_yields_resume_props_first(self):
        decoded = decode_dispatch("READY", READY["d"])

        assert decoded[0] == ResumeProps("wss://resume.gateway.test", "sess-1")
        assert isinstance(decoded[1], Ready)
        assert decoded[1].user.id == "42"

    def test_unknown_dispatch_ignored(self):
        assert decode_dispatch("MESSAGE_CREATE", {"content": "hi"}) == []

    def test_missing_field_raises(self):
        with pytest.raises(ProtocolError):
            decode_dispatch("VOICE_STATE_UPDATE", {"guild_id": "1", "session_id": "s"})

    def test_voice_state_with_null_channel(self):
        decoded = decode_dispatch(
            "VOICE_STATE_UPDATE",
            {"guild_id": 1, "user_id": 2, "channel_id": None, "session_id": "s"},
        )

        assert isinstance(decoded[0], VoiceStateUpdate)
        assert decoded[0].state.guild_id == "1"
        assert decoded[0].state.channel_id is None


class TestConnect:
    """Tests for the connect handshake."""

    @pytest.mark.asyncio
    async def test_connect_reads_hello_and_starts(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)

        await session.connect(ENDPOINT)

        assert gateway_connector.calls[0][0] == "wss://gateway.test/?v=10&encoding=json"
        assert session.heartbeat_interval_ms == 60_000
        assert session.state == "connected"
        assert session.outbound.bound

        await session.shutdown()

    @pytest.mark.asyncio
    async def test_identify_is_written(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        session.identify("secret", 129)
        payload = await gateway_connector.last.next_sent()

        assert payload["op"] == 2
        assert payload["d"]["token"] == "secret"
        assert payload["d"]["intents"] == 129
        assert "os" in payload["d"]["properties"]

        await session.shutdown()

    @pytest.mark.asyncio
    async def test_resume_payload_sent_before_connected(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        token = ResumeToken("secret", "wss://resume.gateway.test", "sess-1", 17)

        await session.connect(token.resume_url, token)

        ws = gateway_connector.last
        assert ws.sent[0] == {"op": 6, "d": {"token": "secret", "session_id": "sess-1", "seq": 17}}
        assert gateway_connector.calls[0][0].startswith("wss://resume.gateway.test/")

        await session.shutdown()

    @pytest.mark.asyncio
    async def test_hello_without_interval_is_protocol_error(self, events):
        connector = FakeConnector(preload=[{"op": 10, "d": {}}])
        session = GatewaySession(events, connector=connector)

        with pytest.raises(ProtocolError):
            await session.connect(ENDPOINT)

        assert connector.last.closed
        assert session.state == "disconnected"
        assert not session.outbound.bound

    @pytest.mark.asyncio
    async def test_hello_not_json_is_protocol_error(self, events):
        connector = FakeConnector(preload=["not json"])
        session = GatewaySession(events, connector=connector)

        with pytest.raises(ProtocolError):
            await session.connect(ENDPOINT)

    @pytest.mark.asyncio
    async def test_transport_failure(self, events, gateway_connector):
        gateway_connector.failures = 1
        session = GatewaySession(events, connector=gateway_connector)

        with pytest.raises(SessionConnectionError):
            await session.connect(ENDPOINT)

        assert session.state == "disconnected"

    @pytest.mark.asyncio
    async def test_closed_during_handshake(self, events):
        connector = FakeConnector()
        session = GatewaySession(events, connector=connector, hello_timeout=1.0)

        async def close_soon():
            await asyncio.sleep(0.01)
            connector.last.close_with(4000)

        closer = asyncio.create_task(close_soon())
        with pytest.raises(SessionConnectionError):
            await session.connect(ENDPOINT)
        await closer


class TestReadLoop:
    """Tests for inbound payload handling."""

    @pytest.mark.asyncio
    async def test_sequence_numbers_emitted(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        gateway_connector.last.feed({"op": 0, "s": 5, "t": "TYPING_START", "d": {}})

        assert await next_event(events) == SequenceUpdate(5)
        await session.shutdown()

    @pytest.mark.asyncio
    async def test_ready_dispatch(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        gateway_connector.last.feed(READY)

        assert await next_event(events) == SequenceUpdate(1)
        assert isinstance(await next_event(events), ResumeProps)
        ready = await next_event(events)
        assert isinstance(ready, Ready)
        assert ready.user.tag == "franta"
        await session.shutdown()

    @pytest.mark.asyncio
    async def test_interaction_dispatch(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        gateway_connector.last.feed({
            "op": 0,
            "s": 2,
            "t": "INTERACTION_CREATE",
            "d": {
                "id": "900",
                "application_id": "app",
                "type": 2,
                "token": "itoken",
                "guild_id": "1",
                "channel_id": "10",
                "member": {"user": {"id": "7"}},
                "data": {"name": "skip"},
            },
        })

        await next_event(events)
        event = await next_event(events)
        assert isinstance(event, InteractionCreate)
        assert event.interaction.name == "skip"
        assert event.interaction.user_id == "7"
        await session.shutdown()

    @pytest.mark.asyncio
    async def test_malformed_dispatch_dropped(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)
        ws = gateway_connector.last

        ws.feed({"op": 0, "t": "VOICE_SERVER_UPDATE", "d": {"guild_id": "1"}})
        ws.feed("{broken")
        ws.feed({"op": 0, "s": 3, "t": "UNKNOWN", "d": None})

        assert await next_event(events) == SequenceUpdate(3)
        assert session.state == "connected"
        await session.shutdown()

    @pytest.mark.asyncio
    async def test_server_heartbeat_request_answered(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        gateway_connector.last.feed({"op": 1, "d": None})

        assert await gateway_connector.last.next_sent() == {"op": 1, "d": None}
        await session.shutdown()

    @pytest.mark.asyncio
    async def test_reconnect_opcode_resumes(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        gateway_connector.last.feed({"op": 7, "d": None})

        assert await next_event(events) == Resume()
        assert session.state == "resuming"
        await session.shutdown()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("resumable", [True, False])
    async def test_invalid_session_resumes(self, events, gateway_connector, resumable):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        gateway_connector.last.feed({"op": 9, "d": resumable})

        assert await next_event(events) == Resume()
        await session.shutdown()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,expected",
        [
            (4000, Resume()),
            (4009, Resume()),
            (4007, Reconnect()),
            (4008, Reconnect()),
            (4004, SessionFatal(4004, "Authentication failed.")),
            (4999, Resume()),
        ],
    )
    async def test_close_codes(self, events, gateway_connector, code, expected):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        reason = "Authentication failed." if code == 4004 else ""
        gateway_connector.last.close_with(code, reason)

        assert await next_event(events) == expected
        await session.shutdown()

    @pytest.mark.asyncio
    async def test_fatal_close_marks_state(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        gateway_connector.last.close_with(4014, "Disallowed intent(s).")
        await next_event(events)

        assert session.state == "fatal"
        await session.shutdown()
        assert session.state == "fatal"

    @pytest.mark.asyncio
    async def test_missing_close_frame_resumes(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)

        gateway_connector.last.drop()

        assert await next_event(events) == Resume()
        await session.shutdown()


class TestHeartbeat:
    """Tests for the heartbeat ticker."""

    @pytest.mark.asyncio
    async def test_heartbeats_at_interval(self, events):
        connector = FakeConnector(hello_interval=10)
        session = GatewaySession(events, connector=connector)
        await session.connect(ENDPOINT)

        first = await connector.last.next_sent()
        second = await connector.last.next_sent()

        assert first == {"op": 1, "d": None}
        assert second == {"op": 1, "d": None}
        await session.shutdown()

    @pytest.mark.asyncio
    async def test_no_heartbeat_after_shutdown(self, events):
        connector = FakeConnector(hello_interval=10)
        session = GatewaySession(events, connector=connector)
        await session.connect(ENDPOINT)
        ws = connector.last

        await session.shutdown()
        sent_before = len(ws.sent)
        await asyncio.sleep(0.05)

        assert len(ws.sent) == sent_before


class TestGeneration:
    """Tests for teardown of superseded connections."""

    @pytest.mark.asyncio
    async def test_generation_bumps_on_connect_and_shutdown(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)

        await session.connect(ENDPOINT)
        connected = session.generation
        await session.shutdown()

        assert session.generation > connected

    @pytest.mark.asyncio
    async def test_old_connection_emits_nothing(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)
        old = gateway_connector.last

        await session.connect(ENDPOINT)
        old.feed({"op": 0, "s": 99, "t": "X", "d": {}})
        old.close_with(4000)
        await asyncio.sleep(0.05)

        assert events.empty()
        assert old.closed
        await session.shutdown()

    @pytest.mark.asyncio
    async def test_send_after_shutdown_is_dropped(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.connect(ENDPOINT)
        await session.shutdown()

        assert session.outbound.send({"op": 1, "d": None}) is False
        assert session.state == "disconnected"

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, events, gateway_connector):
        session = GatewaySession(events, connector=gateway_connector)
        await session.shutdown()
        await session.connect(ENDPOINT)
        await session.shutdown()
        await session.shutdown()

        assert gateway_connector.last.closed
