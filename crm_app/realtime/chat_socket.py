import logging
from uuid import UUID

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import CRMError, ValidationError
from core.friendly_msg import get_friendly_message
from core.get_current_user import get_current_user_ws
from core.get_db import get_db_async
from core.mapper import ORMMapper
from models.enums import MessageType
from realtime.connection_manager import ConnectionManager
from services.chat_service import ConversationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat Realtime"])


class ChatSocketSession:
    """Event handling for one authenticated socket."""

    def __init__(
        self,
        db: AsyncSession,
        current_user,
        manager: ConnectionManager,
        websocket: WebSocket,
    ):
        self.current_user = current_user
        self.manager = manager
        self.websocket = websocket
        self.service = ConversationService(db)
        self.mapper = ORMMapper()
        self.handlers = {
            "room:join": self.on_join,
            "room:leave": self.on_leave,
            "message:send": self.on_send,
            "message:read": self.on_read,
            "typing:start": self.on_typing_start,
            "typing:stop": self.on_typing_stop,
        }

    async def on_connect(self):
        first = await self.manager.connect(self.current_user.id, self.websocket)
        if first:
            await self.manager.broadcast_all(
                {"event": "user:online", "data": {"user_id": str(self.current_user.id)}},
                exclude=self.websocket,
            )

    async def on_disconnect(self):
        last = self.manager.disconnect(self.current_user.id, self.websocket)
        if last:
            await self.manager.broadcast_all(
                {"event": "user:offline", "data": {"user_id": str(self.current_user.id)}}
            )

    async def dispatch(self, payload: dict):
        event = payload.get("event") if isinstance(payload, dict) else None
        try:
            handler = self.handlers.get(event) if isinstance(event, str) else None
            if handler is None:
                raise ValidationError(f"Unknown event: {event}", field="event")
            data = payload.get("data") or {}
            if not isinstance(data, dict):
                raise ValidationError("data must be an object", field="data")
            await handler(data)
        except WebSocketDisconnect:
            raise
        except CRMError as e:
            logger.warning("Socket event %s refused for %s: %s", event, self.current_user.id, e)
            await self.websocket.send_json({"event": "error", "data": e.to_dict()})
        except Exception as e:
            # One bad frame must not end the connection.
            logger.exception("Socket event %s failed for %s", event, self.current_user.id)
            await self.websocket.send_json(
                {
                    "event": "error",
                    "data": {
                        "success": False,
                        "error": "internal_error",
                        "message": get_friendly_message(e),
                    },
                }
            )

    def _conversation_id(self, data: dict) -> UUID:
        try:
            return UUID(str(data.get("conversation_id")))
        except ValueError:
            raise ValidationError("conversation_id is required", field="conversation_id")

    async def on_join(self, data: dict):
        conversation_id = self._conversation_id(data)
        await self.service.participant_ids(conversation_id, self.current_user)
        self.manager.join(conversation_id, self.websocket)

    async def on_leave(self, data: dict):
        self.manager.leave(self._conversation_id(data), self.websocket)

    async def on_send(self, data: dict):
        conversation_id = self._conversation_id(data)
        try:
            type = MessageType(data.get("type", MessageType.TEXT))
        except ValueError:
            raise ValidationError("Unknown message type", field="type")
        property_id = data.get("property_id")
        try:
            property_id = UUID(str(property_id)) if property_id else None
        except ValueError:
            raise ValidationError("Malformed property_id", field="property_id")

        message = await self.service.send_message(
            conversation_id,
            self.current_user,
            content=data.get("content", ""),
            type=type,
            property_id=property_id,
        )
        await self.manager.broadcast(
            conversation_id,
            {"event": "message:new", "data": self.mapper.dump(message)},
        )

    async def on_read(self, data: dict):
        conversation_id = self._conversation_id(data)
        result = await self.service.mark_read(conversation_id, self.current_user)
        payload = self.mapper.dump(result)
        payload["user_id"] = str(self.current_user.id)
        await self.manager.broadcast(
            conversation_id, {"event": "message:read", "data": payload}
        )

    async def _relay_typing(self, data: dict, event: str):
        conversation_id = self._conversation_id(data)
        if self.websocket not in self.manager.rooms.get(conversation_id, set()):
            return
        await self.manager.broadcast(
            conversation_id,
            {
                "event": event,
                "data": {
                    "conversation_id": str(conversation_id),
                    "user_id": str(self.current_user.id),
                    "full_name": self.current_user.full_name,
                },
            },
            exclude=self.websocket,
        )

    async def on_typing_start(self, data: dict):
        await self._relay_typing(data, "user:typing")

    async def on_typing_stop(self, data: dict):
        await self._relay_typing(data, "user:stop-typing")


@router.websocket("/ws/chat")
async def chat_endpoint(
    websocket: WebSocket,
    db: AsyncSession = Depends(get_db_async),
):
    current_user = await get_current_user_ws(websocket, db)
    if not current_user:
        return

    manager: ConnectionManager = websocket.app.state.connections
    session = ChatSocketSession(db, current_user, manager, websocket)

    await session.on_connect()
    try:
        while True:
            payload = await websocket.receive_json()
            await session.dispatch(payload)
    except WebSocketDisconnect as e:
        logger.info("Socket closed for user %s (code %s)", current_user.id, e.code)
    finally:
        await session.on_disconnect()
