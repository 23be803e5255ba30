import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import selectinload

from core.paginate import Cursor
from models.enums import MessageType
from models.models import ConversationParticipant, Message


UNREAD_JOIN = and_(
    Message.conversation_id == ConversationParticipant.conversation_id,
    Message.sender_id != ConversationParticipant.user_id,
    or_(
        ConversationParticipant.last_read_at.is_(None),
        Message.created_at > ConversationParticipant.last_read_at,
    ),
)


class MessageRepo:
    def __init__(self, db):
        self.db = db

    async def create(
        self,
        *,
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        content: str,
        type: MessageType,
        property_id: uuid.UUID | None = None,
    ) -> Message:
        msg = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            type=type,
            property_id=property_id,
            is_read=False,
        )
        self.db.add(msg)
        await self.db.flush()
        return msg

    async def get_message_id(self, message_id: uuid.UUID) -> Optional[Message]:
        result = await self.db.execute(
            select(Message)
            .options(selectinload(Message.sender))
            .where(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_page(
        self,
        *,
        conversation_id: uuid.UUID,
        limit: int,
        cursor: Cursor | None = None,
    ) -> tuple[List[Message], bool]:
        conditions = [Message.conversation_id == conversation_id]
        if cursor:
            # Keyset on (created_at, id); stable under concurrent inserts.
            conditions.append(
                or_(
                    Message.created_at < cursor.created_at,
                    and_(
                        Message.created_at == cursor.created_at,
                        Message.id < cursor.id,
                    ),
                )
            )

        stmt = (
            select(Message)
            .options(selectinload(Message.sender))
            .where(*conditions)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit + 1)
        )
        result = await self.db.execute(stmt)
        messages = result.scalars().all()

        has_more = len(messages) > limit
        return messages[:limit], has_more

    async def count_unread_in(self, participant: ConversationParticipant) -> int:
        conditions = [
            Message.conversation_id == participant.conversation_id,
            Message.sender_id != participant.user_id,
        ]
        if participant.last_read_at is not None:
            conditions.append(Message.created_at > participant.last_read_at)

        result = await self.db.execute(
            select(func.count(Message.id)).where(*conditions)
        )
        return result.scalar_one()

    async def mark_conversation_as_read(
        self,
        conversation_id: uuid.UUID,
        reader_id: uuid.UUID,
        read_at: datetime,
    ) -> int:
        stmt = (
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_id != reader_id,
                Message.is_read.is_(False),
                Message.created_at <= read_at,
            )
            .values(is_read=True, read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def unread_counts_for_user(self, user_id: uuid.UUID) -> dict[uuid.UUID, int]:
        """Unread messages per conversation, one row per participant record."""
        stmt = (
            select(ConversationParticipant.conversation_id, func.count(Message.id))
            .select_from(ConversationParticipant)
            .join(Message, UNREAD_JOIN)
            .where(ConversationParticipant.user_id == user_id)
            .group_by(ConversationParticipant.conversation_id)
        )
        result = await self.db.execute(stmt)
        return {conversation_id: count for conversation_id, count in result.all()}

    async def last_messages(
        self, conversation_ids: list[uuid.UUID]
    ) -> dict[uuid.UUID, Message]:
        if not conversation_ids:
            return {}
        latest = (
            select(
                Message.conversation_id,
                func.max(Message.created_at).label("created_at"),
            )
            .where(Message.conversation_id.in_(conversation_ids))
            .group_by(Message.conversation_id)
            .subquery()
        )
        stmt = (
            select(Message)
            .options(selectinload(Message.sender))
            .join(
                latest,
                and_(
                    Message.conversation_id == latest.c.conversation_id,
                    Message.created_at == latest.c.created_at,
                ),
            )
        )
        result = await self.db.execute(stmt)
        return {msg.conversation_id: msg for msg in result.scalars().all()}
