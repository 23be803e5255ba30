import uuid
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from core.date_helper import utc_now
from models.enums import ConversationType
from models.models import Conversation, ConversationParticipant, User


def direct_key_for(first: uuid.UUID, second: uuid.UUID) -> str:
    return ":".join(sorted((str(first), str(second))))


class ConversationRepo:
    def __init__(self, db):
        self.db = db

    def _with_participants(self):
        return (
            select(Conversation)
            .options(
                selectinload(Conversation.participants).selectinload(
                    ConversationParticipant.user
                )
            )
            .execution_options(populate_existing=True)
        )

    async def get_conversation_by_id(
        self, conversation_id: uuid.UUID
    ) -> Optional[Conversation]:
        result = await self.db.execute(
            self._with_participants().where(Conversation.id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def get_direct(self, direct_key: str) -> Optional[Conversation]:
        result = await self.db.execute(
            self._with_participants().where(Conversation.direct_key == direct_key)
        )
        return result.scalar_one_or_none()

    async def existing_user_ids(self, user_ids: Sequence[uuid.UUID]) -> set[uuid.UUID]:
        result = await self.db.execute(
            select(User.id).where(User.id.in_(list(user_ids)), User.is_active.is_(True))
        )
        return set(result.scalars().all())

    async def create(
        self,
        *,
        type: ConversationType,
        participant_ids: Sequence[uuid.UUID],
        created_by: uuid.UUID,
        name: str | None = None,
        property_id: uuid.UUID | None = None,
        direct_key: str | None = None,
    ) -> Conversation:
        convo = Conversation(
            type=type,
            name=name,
            property_id=property_id,
            direct_key=direct_key,
            created_by_id=created_by,
            participants=[
                ConversationParticipant(user_id=user_id) for user_id in participant_ids
            ],
        )
        self.db.add(convo)
        await self.db.flush()
        return convo

    async def touch(self, conversation_id: uuid.UUID) -> None:
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    async def advance_read_cursor(
        self, participant_id: uuid.UUID, read_at
    ) -> bool:
        # Cursor only moves forward.
        stmt = (
            update(ConversationParticipant)
            .where(
                ConversationParticipant.id == participant_id,
                (ConversationParticipant.last_read_at.is_(None))
                | (ConversationParticipant.last_read_at < read_at),
            )
            .values(last_read_at=read_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def list_for_user(self, user_id: uuid.UUID) -> List[Conversation]:
        stmt = (
            self._with_participants()
            .join(
                ConversationParticipant,
                ConversationParticipant.conversation_id == Conversation.id,
            )
            .where(ConversationParticipant.user_id == user_id)
            .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        )
        result = await self.db.execute(stmt)
        return result.scalars().unique().all()
