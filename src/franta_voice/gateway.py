"""Gateway websocket session: hello, heartbeat, resume and dispatch decoding.

One ``GatewaySession`` owns at most one live socket and three tasks bound to
it (reader, writer, heartbeat). Every connect or shutdown bumps the session
generation; a task that finds its generation superseded exits without
emitting anything, so a torn-down connection can never feed stale events into
the shared queue.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.frames import Close

from .errors import ProtocolError, SessionConnectionError
from .events import (
    Event,
    InteractionCreate,
    Ready,
    Reconnect,
    Resume,
    ResumeProps,
    SequenceUpdate,
    SessionFatal,
    VoiceServerUpdate,
    VoiceStateUpdate,
)
from .models import (
    Interaction,
    ReadyUser,
    ResumeToken,
    VoiceServer,
    VoiceState,
    create_heartbeat_payload,
    create_identify_payload,
)
from .outbound import Outbound

logger = logging.getLogger(__name__)

GatewayState = Literal[
    "disconnected",
    "connecting",
    "awaiting_hello",
    "connected",
    "resuming",
    "reconnecting",
    "fatal",
]

CloseOutcome = Literal["resume", "reconnect", "fatal"]

Connector = Callable[..., Awaitable[Any]]

OP_DISPATCH = 0
OP_HEARTBEAT = 1
OP_RECONNECT = 7
OP_INVALID_SESSION = 9

RESUME_CODES = frozenset({4000, 4001, 4002, 4009})
RECONNECT_CODES = frozenset({4003, 4005, 4007, 4008})
FATAL_CODES = frozenset({4004, 4010, 4011, 4013, 4014})

DEFAULT_HEARTBEAT_INTERVAL_MS = 41250


def classify_close(code: int | None) -> CloseOutcome:
    """Map a gateway close code to what the client should do next.

    Unknown codes and a missing close frame both resume.
    """
    if code in RECONNECT_CODES:
        return "reconnect"
    if code in FATAL_CODES:
        return "fatal"
    return "resume"


def decode_dispatch(name: str, data: Any) -> list[Event]:
    """Decode a named dispatch into typed events.

    Unrecognised names yield no events. READY yields ``ResumeProps`` followed
    by ``Ready``.

    Raises:
        ProtocolError: If a recognised dispatch is missing required fields.
    """
    if name not in ("READY", "INTERACTION_CREATE", "VOICE_STATE_UPDATE", "VOICE_SERVER_UPDATE"):
        return []
    if not isinstance(data, dict):
        raise ProtocolError(f"{name} dispatch has no data object")

    try:
        if name == "READY":
            return [
                ResumeProps(
                    resume_url=data["resume_gateway_url"],
                    session_id=data["session_id"],
                ),
                Ready(ReadyUser.from_dict(data["user"])),
            ]
        if name == "INTERACTION_CREATE":
            return [InteractionCreate(Interaction.from_dict(data))]
        if name == "VOICE_STATE_UPDATE":
            return [VoiceStateUpdate(VoiceState.from_dict(data))]
        return [VoiceServerUpdate(VoiceServer.from_dict(data))]
    except (KeyError, TypeError) as e:
        raise ProtocolError(f"failed to decode {name} dispatch: missing {e}") from e


class GatewaySession:
    """One gateway connection and its reader, writer and heartbeat tasks."""

    def __init__(
        self,
        events: "asyncio.Queue[Event]",
        connector: Connector = ws_connect,
        hello_timeout: float = 30.0,
    ):
        """Initialize the session.

        Args:
            events: Shared queue that decoded events are pushed onto
            connector: Coroutine function opening a websocket (``websockets`` by default)
            hello_timeout: Seconds to wait for the hello payload
        """
        self.events = events
        self.outbound = Outbound("gateway")
        self.heartbeat_interval_ms = DEFAULT_HEARTBEAT_INTERVAL_MS
        self.state: GatewayState = "disconnected"
        self._connector = connector
        self._hello_timeout = hello_timeout
        self._ws = None
        self._tasks: list[asyncio.Task] = []
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def connect(self, endpoint: str, resume: ResumeToken | None = None) -> None:
        """Open the socket, wait for hello and start the session tasks.

        Args:
            endpoint: Gateway base URL (``wss://...``)
            resume: Resume token; when given, a resume payload is sent first

        Raises:
            SessionConnectionError: If the socket cannot be opened
            ProtocolError: If the first payload is not a valid hello
        """
        await self.shutdown()

        self._generation += 1
        generation = self._generation
        self.state = "connecting"

        url = f"{endpoint.rstrip('/')}/?v=10&encoding=json"
        try:
            ws = await self._connector(url, max_size=None)
        except (OSError, WebSocketException, TimeoutError) as e:
            self.state = "disconnected"
            raise SessionConnectionError(f"failed to connect to the gateway at {endpoint}") from e

        self.state = "awaiting_hello"
        try:
            self.heartbeat_interval_ms = await self._read_hello(ws)
            if resume is not None:
                self.state = "resuming"
                await ws.send(json.dumps(resume.to_payload()))
        except ConnectionClosed as e:
            self.state = "disconnected"
            raise SessionConnectionError("gateway closed before the session was established") from e
        except ProtocolError:
            self.state = "disconnected"
            await self._close_socket(ws)
            raise
        except (OSError, WebSocketException) as e:
            self.state = "disconnected"
            await self._close_socket(ws)
            raise SessionConnectionError("gateway handshake failed") from e

        queue: asyncio.Queue[str] = asyncio.Queue()
        self.outbound.bind(queue)
        self._ws = ws
        self._tasks = [
            asyncio.create_task(self._write_loop(ws, queue, generation)),
            asyncio.create_task(self._read_loop(ws, generation)),
            asyncio.create_task(self._heartbeat_loop(generation)),
        ]
        self.state = "connected"
        logger.info(
            f"Gateway connected (generation={generation}, "
            f"heartbeat={self.heartbeat_interval_ms}ms, resumed={resume is not None})"
        )

    async def _read_hello(self, ws) -> int:
        try:
            raw = await asyncio.wait_for(ws.recv(), timeout=self._hello_timeout)
        except TimeoutError as e:
            raise ProtocolError("timed out waiting for the gateway hello") from e

        try:
            hello = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            raise ProtocolError("gateway hello is not valid JSON") from e

        data = hello.get("d") if isinstance(hello, dict) else None
        interval = data.get("heartbeat_interval") if isinstance(data, dict) else None
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
            raise ProtocolError("gateway hello carries no heartbeat interval")
        return int(interval)

    def send(self, payload: dict | str) -> None:
        """Queue a payload for the writer; dropped when not connected."""
        self.outbound.send(payload)

    def identify(self, token: str, intents: int) -> None:
        """Queue the identify payload for a fresh session."""
        self.send(create_identify_payload(token, intents))

    async def shutdown(self) -> None:
        """Cancel the current connection's tasks and close its socket.

        Safe to call repeatedly.
        """
        self._generation += 1
        self.outbound.unbind()

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_socket(ws)

        if self.state != "fatal":
            self.state = "disconnected"

    async def _close_socket(self, ws) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing gateway socket: {e}")

    def _emit(self, event: Event, generation: int) -> None:
        if self._is_current(generation):
            self.events.put_nowait(event)

    async def _write_loop(self, ws, queue: "asyncio.Queue[str]", generation: int) -> None:
        """Drain the outbound queue onto the socket."""
        while self._is_current(generation):
            payload = await queue.get()
            if not self._is_current(generation):
                return
            try:
                await ws.send(payload)
            except ConnectionClosed:
                # The reader sees the close and decides what happens next.
                return
            except Exception as e:
                logger.error(f"Gateway write failed: {e}")

    async def _heartbeat_loop(self, generation: int) -> None:
        """Send a heartbeat every ``heartbeat_interval_ms``."""
        interval = self.heartbeat_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            if not self._is_current(generation):
                return
            self.outbound.send(create_heartbeat_payload())

    async def _read_loop(self, ws, generation: int) -> None:
        """Decode inbound frames until the connection ends, then report why."""
        outcome: Event = Resume()
        try:
            while True:
                raw = await ws.recv()
                if not self._is_current(generation):
                    return

                try:
                    payload = json.loads(raw)
                except (TypeError, json.JSONDecodeError):
                    logger.warning("Dropping gateway frame that is not valid JSON")
                    continue
                if not isinstance(payload, dict):
                    continue

                terminal = self._handle_payload(payload, generation)
                if terminal is not None:
                    outcome = terminal
                    break
        except ConnectionClosed as e:
            outcome = self._on_close(e.rcvd)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Gateway read failed: {e}")
            outcome = Resume()

        if not self._is_current(generation):
            return

        if isinstance(outcome, Resume):
            self.state = "resuming"
        elif isinstance(outcome, Reconnect):
            self.state = "reconnecting"
        else:
            self.state = "fatal"
        self._emit(outcome, generation)

    def _handle_payload(self, payload: dict, generation: int) -> Event | None:
        """Handle one inbound payload.

        Returns:
            A terminal event when the payload ends the connection, else None
        """
        sequence = payload.get("s")
        if isinstance(sequence, int) and not isinstance(sequence, bool):
            self._emit(SequenceUpdate(sequence), generation)

        op = payload.get("op")
        if op == OP_RECONNECT:
            logger.info("Gateway requested a reconnect")
            return Resume()
        if op == OP_INVALID_SESSION:
            # TODO: resumable=false should re-identify instead of resuming; confirm
            # against a session that stays invalid before changing this.
            resumable = payload.get("d") is True
            logger.warning(f"Gateway reported an invalid session (resumable={resumable}), resuming")
            return Resume()
        if op == OP_HEARTBEAT:
            self.outbound.send(create_heartbeat_payload())
            return None

        name = payload.get("t")
        if not isinstance(name, str):
            return None

        try:
            decoded = decode_dispatch(name, payload.get("d"))
        except ProtocolError as e:
            logger.warning(f"Dropping dispatch: {e}")
            return None

        for event in decoded:
            self._emit(event, generation)
        return None

    def _on_close(self, close: Close | None) -> Event:
        if close is None:
            logger.warning("Gateway connection ended without a close frame")
            return Resume()

        outcome = classify_close(close.code)
        logger.warning(f"Gateway closed: code={close.code} reason={close.reason!r} -> {outcome}")
        if outcome == "reconnect":
            return Reconnect()
        if outcome == "fatal":
            return SessionFatal(code=close.code, reason=close.reason)
        return Resume()
