"""
WebSocket fan-out of change events.
"""

import asyncio
from typing import Set

import structlog
from fastapi import WebSocket

from api.models import ChangeMessage
from patrol.models import ChangeEvent, ObservationFailure

logger = structlog.get_logger(__name__)


class EventBroadcaster:
    """
    Notifier that pushes change events to every connected WebSocket client.
    Clients that cannot be written to are dropped.
    """

    def __init__(self):
        self._clients: Set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="event_broadcaster")

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def register(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.add(websocket)
        self.logger.info("WebSocket client connected", clients=len(self._clients))

    async def unregister(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(websocket)
        self.logger.info("WebSocket client disconnected", clients=len(self._clients))

    async def emit_change(self, event: ChangeEvent) -> None:
        message = ChangeMessage.from_event(event).model_dump()

        async with self._lock:
            clients = list(self._clients)

        stale = []
        for websocket in clients:
            try:
                await websocket.send_json(message)
            except Exception as e:
                self.logger.warning("Dropping WebSocket client", error=str(e))
                stale.append(websocket)

        if stale:
            async with self._lock:
                self._clients.difference_update(stale)

        self.logger.debug("Broadcast change event", target_id=event.target_id, clients=len(clients) - len(stale))

    async def emit_failure(self, failure: ObservationFailure) -> None:
        # only changes are broadcast
        return None
