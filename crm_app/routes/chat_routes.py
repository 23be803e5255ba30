import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.get_current_user import get_current_user
from core.get_db import get_db_async
from core.mapper import ORMMapper
from core.safe_handler import safe_handler
from core.throttling import rate_limit
from models.models import User
from schemas.schema import (
    ConversationCreateSchema,
    ConversationOut,
    ConversationSummaryOut,
    MarkReadOut,
    MessageCreateSchema,
    MessageOut,
    MessagePage,
    UnreadCountOut,
)
from services.chat_service import ConversationService

router = APIRouter(prefix="/chat", tags=["Chat"])


@cbv(router=router)
class ChatRoutes:
    db: AsyncSession = Depends(get_db_async)
    current_user: User = Depends(get_current_user)

    async def _broadcast(
        self, request: Request, conversation_id, event: str, data, **extra
    ):
        manager = getattr(request.app.state, "connections", None)
        if manager is None:
            return
        payload = ORMMapper.dump(data)
        payload.update(extra)
        await manager.broadcast(conversation_id, {"event": event, "data": payload})

    @router.post(
        "/conversations",
        dependencies=[rate_limit],
        response_model=ConversationOut,
        status_code=201,
    )
    @safe_handler
    async def create_conversation(self, data: ConversationCreateSchema):
        return await ConversationService(self.db).create_conversation(
            data=data, current_user=self.current_user
        )

    @router.get(
        "/conversations",
        dependencies=[rate_limit],
        response_model=List[ConversationSummaryOut],
    )
    @safe_handler
    async def list_conversations(self):
        return await ConversationService(self.db).list_conversations(
            current_user=self.current_user
        )

    @router.get(
        "/conversations/{conversation_id}",
        dependencies=[rate_limit],
        response_model=ConversationOut,
    )
    @safe_handler
    async def get_conversation(self, conversation_id: uuid.UUID):
        return await ConversationService(self.db).get_conversation(
            conversation_id=conversation_id, current_user=self.current_user
        )

    @router.get(
        "/conversations/{conversation_id}/messages",
        dependencies=[rate_limit],
        response_model=MessagePage,
    )
    @safe_handler
    async def list_messages(
        self,
        conversation_id: uuid.UUID,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ):
        return await ConversationService(self.db).list_messages(
            conversation_id, self.current_user, cursor=cursor, limit=limit
        )

    @router.post(
        "/conversations/{conversation_id}/messages",
        dependencies=[rate_limit],
        response_model=MessageOut,
        status_code=201,
    )
    @safe_handler
    async def send_message(
        self, request: Request, conversation_id: uuid.UUID, data: MessageCreateSchema
    ):
        message = await ConversationService(self.db).send_message(
            conversation_id,
            self.current_user,
            content=data.content,
            type=data.type,
            property_id=data.property_id,
        )
        await self._broadcast(request, conversation_id, "message:new", message)
        return message

    @router.post(
        "/conversations/{conversation_id}/read",
        dependencies=[rate_limit],
        response_model=MarkReadOut,
    )
    @safe_handler
    async def mark_read(self, request: Request, conversation_id: uuid.UUID):
        result = await ConversationService(self.db).mark_read(
            conversation_id, self.current_user
        )
        if result.updated:
            await self._broadcast(
                request,
                conversation_id,
                "message:read",
                result,
                user_id=str(self.current_user.id),
            )
        return result

    @router.get("/unread-count", dependencies=[rate_limit], response_model=UnreadCountOut)
    @safe_handler
    async def unread_count(self):
        return await ConversationService(self.db).unread_count(
            current_user=self.current_user
        )
