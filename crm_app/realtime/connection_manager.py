import logging
from uuid import UUID

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Live sockets for one application instance.

    Created by the lifespan and kept on ``app.state.connections``; it dies
    with the app. Rooms are conversation ids, presence is user id to sockets.
    """

    def __init__(self):
        self.rooms: dict[UUID, set[WebSocket]] = {}
        self.presence: dict[UUID, list[WebSocket]] = {}

    async def connect(self, user_id: UUID, websocket: WebSocket) -> bool:
        """Accept the socket; True when this is the user's first one."""
        await websocket.accept()
        sockets = self.presence.setdefault(user_id, [])
        sockets.append(websocket)
        logger.info("WebSocket connected for user %s (%d open)", user_id, len(sockets))
        return len(sockets) == 1

    def disconnect(self, user_id: UUID, websocket: WebSocket) -> bool:
        """Forget the socket; True when the user has no sockets left."""
        for conversation_id in list(self.rooms):
            self.leave(conversation_id, websocket)

        sockets = self.presence.get(user_id, [])
        if websocket in sockets:
            sockets.remove(websocket)
        logger.info("WebSocket disconnected for user %s (%d open)", user_id, len(sockets))
        if sockets:
            return False
        self.presence.pop(user_id, None)
        return True

    def join(self, conversation_id: UUID, websocket: WebSocket) -> None:
        self.rooms.setdefault(conversation_id, set()).add(websocket)

    def leave(self, conversation_id: UUID, websocket: WebSocket) -> None:
        members = self.rooms.get(conversation_id)
        if not members:
            return
        members.discard(websocket)
        if not members:
            self.rooms.pop(conversation_id, None)

    def is_online(self, user_id: UUID) -> bool:
        return bool(self.presence.get(user_id))

    def online_users(self) -> list[UUID]:
        return list(self.presence)

    async def _send(self, websocket: WebSocket, payload: dict) -> bool:
        try:
            await websocket.send_json(payload)
            return True
        except Exception as e:
            logger.warning("Dropping socket after failed send: %s", e)
            return False

    async def _fan_out(self, sockets, payload: dict, exclude: WebSocket | None):
        dead = []
        for websocket in list(sockets):
            if websocket is exclude:
                continue
            if not await self._send(websocket, payload):
                dead.append(websocket)
        return dead

    async def broadcast(
        self,
        conversation_id: UUID,
        payload: dict,
        exclude: WebSocket | None = None,
    ) -> None:
        members = self.rooms.get(conversation_id, set())
        for websocket in await self._fan_out(members, payload, exclude):
            self.leave(conversation_id, websocket)

    async def broadcast_all(
        self, payload: dict, exclude: WebSocket | None = None
    ) -> None:
        for user_id, sockets in list(self.presence.items()):
            for websocket in await self._fan_out(sockets, payload, exclude):
                self.disconnect(user_id, websocket)
