"""Audio node (Lavalink) websocket session."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import LavalinkConfig
from .errors import SessionConnectionError
from .events import Event, NodeClosed, TrackEnd
from .models import create_configure_resuming_payload
from .outbound import Outbound

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]


def decode_node_event(payload: Any) -> Event | None:
    """Decode an inbound node payload; anything unrecognised yields None."""
    if not isinstance(payload, dict):
        return None

    guild_id = payload.get("guildId")
    if not isinstance(guild_id, str):
        return None

    if payload.get("type") == "TrackEndEvent":
        return TrackEnd(guild_id)
    return None


class AudioNodeSession:
    """Websocket connection to the audio node.

    ``connect`` returns the reader task; the caller owns it and cancels it on
    reconnect. ``shutdown`` only stops the writer; ``close`` also closes the
    socket.
    """

    def __init__(
        self,
        events: "asyncio.Queue[Event]",
        options: LavalinkConfig,
        user_id: str,
        connector: Connector = ws_connect,
    ):
        """Initialize the node session.

        Args:
            events: Shared queue that decoded events are pushed onto
            options: Node address, credential and resume settings
            user_id: Bot user id sent in the handshake
            connector: Coroutine function opening a websocket
        """
        self.events = events
        self.options = options
        self.user_id = user_id
        self.outbound = Outbound("node")
        self._connector = connector
        self._ws = None
        self._writer: asyncio.Task | None = None
        self._generation = 0

    @property
    def uri(self) -> str:
        return f"ws://{self.options.host}:{self.options.port}/"

    @property
    def connected(self) -> bool:
        return self.outbound.bound

    def handshake_headers(self) -> dict[str, str]:
        """Headers for the websocket upgrade request."""
        return {
            "Authorization": self.options.password,
            "User-Id": self.user_id,
            "Client-Name": self.options.client_name,
            "Resume-Key": self.options.resume_key,
        }

    async def connect(self) -> asyncio.Task:
        """Connect, configure resuming and start the writer and reader.

        Returns:
            The reader task

        Raises:
            SessionConnectionError: If the node cannot be reached
        """
        self._generation += 1
        generation = self._generation

        try:
            ws = await self._connector(self.uri, additional_headers=self.handshake_headers())
        except (OSError, WebSocketException, TimeoutError) as e:
            raise SessionConnectionError(f"failed to connect to the audio node at {self.uri}") from e

        try:
            await ws.send(
                json.dumps(
                    create_configure_resuming_payload(
                        self.options.resume_key, self.options.resume_timeout
                    )
                )
            )
        except (OSError, WebSocketException) as e:
            await self._close_socket(ws)
            raise SessionConnectionError("audio node rejected the resume configuration") from e

        self._ws = ws
        queue: asyncio.Queue[str] = asyncio.Queue()
        self.outbound.bind(queue)
        self._writer = asyncio.create_task(self._write_loop(ws, queue, generation))
        logger.info(f"Connected to audio node at {self.uri}")
        return asyncio.create_task(self._read_loop(ws, generation))

    async def shutdown(self) -> None:
        """Stop the writer task. Safe to call repeatedly."""
        self._generation += 1
        self.outbound.unbind()

        writer, self._writer = self._writer, None
        if writer is not None:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass

    async def close(self) -> None:
        """Stop the writer and close the socket. Safe to call repeatedly."""
        await self.shutdown()

        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_socket(ws)

    async def _close_socket(self, ws) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing audio node socket: {e}")

    def send(self, payload: dict | str) -> None:
        self.outbound.send(payload)

    async def _write_loop(self, ws, queue: "asyncio.Queue[str]", generation: int) -> None:
        while generation == self._generation:
            payload = await queue.get()
            if generation != self._generation:
                return
            try:
                await ws.send(payload)
            except ConnectionClosed:
                return
            except Exception as e:
                logger.error(f"Audio node write failed: {e}")

    async def _read_loop(self, ws, generation: int) -> None:
        try:
            while True:
                raw = await ws.recv()
                try:
                    payload = json.loads(raw)
                except (TypeError, json.JSONDecodeError):
                    continue

                event = decode_node_event(payload)
                if event is not None and generation == self._generation:
                    self.events.put_nowait(event)
        except ConnectionClosed as e:
            close = e.rcvd
            if close is not None:
                logger.warning(f"Audio node closed: code={close.code} reason={close.reason!r}")
            else:
                logger.warning("Audio node connection ended without a close frame")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Audio node read failed: {e}")

        if generation == self._generation:
            self.events.put_nowait(NodeClosed())
