"""Shared sender handle for outbound websocket payloads."""

import asyncio
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


class Outbound:
    """Handle to the outbound queue of whichever connection is current.

    Sessions bind a fresh queue on every (re)connect and unbind it on
    shutdown. Everything else keeps a reference to the handle itself, so a
    reconnect never leaves a producer holding a dead queue.
    """

    def __init__(self, name: str):
        self.name = name
        self._queue: asyncio.Queue[str] | None = None

    @property
    def bound(self) -> bool:
        return self._queue is not None

    def bind(self, queue: "asyncio.Queue[str]") -> None:
        self._queue = queue

    def unbind(self) -> None:
        self._queue = None

    def send(self, payload: dict[str, Any] | str) -> bool:
        """Enqueue a payload without blocking.

        Returns False when no connection is bound; the payload is dropped.
        """
        queue = self._queue
        if queue is None:
            logger.debug(f"[{self.name}] dropped payload, no active connection")
            return False

        if not isinstance(payload, str):
            payload = json.dumps(payload)
        queue.put_nowait(payload)
        return True
