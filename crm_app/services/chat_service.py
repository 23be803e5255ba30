import logging
import uuid
from typing import List

from sqlalchemy.exc import IntegrityError

from core.atomic import atomic
from core.breaker import CircuitBreaker, breaker
from core.check_permission import CheckRolePermission
from core.date_helper import utc_now
from core.exceptions import AuthorizationError, NotFoundError, ValidationError
from core.mapper import ORMMapper
from core.paginate import PaginatePage
from models.enums import ConversationType, MessageType
from models.models import Conversation, ConversationParticipant
from repos.conversation_repo import ConversationRepo, direct_key_for
from repos.message_repo import MessageRepo
from repos.property_repo import PropertyRepo
from schemas.schema import (
    ConversationCreateSchema,
    ConversationOut,
    ConversationSummaryOut,
    MarkReadOut,
    MessageOut,
    MessagePage,
    UnreadCountOut,
)

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(self, db):
        self.db = db
        self.repo: ConversationRepo = ConversationRepo(db)
        self.message_repo: MessageRepo = MessageRepo(db)
        self.property_repo: PropertyRepo = PropertyRepo(db)
        self.permission: CheckRolePermission = CheckRolePermission()
        self.paginate: PaginatePage = PaginatePage()
        self.mapper: ORMMapper = ORMMapper()
        self.breaker: CircuitBreaker = breaker

    async def _membership(
        self, conversation_id: uuid.UUID, current_user, action: str
    ) -> tuple[Conversation, ConversationParticipant]:
        self.permission.require(current_user, action)
        convo = await self.repo.get_conversation_by_id(conversation_id)
        if not convo:
            raise NotFoundError("Conversation", conversation_id)

        for participant in convo.participants:
            if participant.user_id == current_user.id:
                return convo, participant

        raise AuthorizationError(
            f"user {current_user.id} is not in conversation {conversation_id}"
        )

    async def _check_property(self, property_id: uuid.UUID | None) -> None:
        if property_id is None:
            return
        if not await self.property_repo.get_property_id(property_id):
            raise ValidationError("Unknown property", field="property_id")

    async def create_conversation(
        self, data: ConversationCreateSchema, current_user
    ) -> ConversationOut:
        async def handler():
            self.permission.require(current_user, "chat:write")

            others = []
            for user_id in data.participant_ids:
                if user_id != current_user.id and user_id not in others:
                    others.append(user_id)

            if data.type == ConversationType.DIRECT:
                if len(others) != 1:
                    raise ValidationError(
                        "A direct conversation needs exactly two distinct participants",
                        field="participant_ids",
                    )
            else:
                if not data.name:
                    raise ValidationError(
                        "A group conversation needs a name", field="name"
                    )
                if not others:
                    raise ValidationError(
                        "A group conversation needs at least one other participant",
                        field="participant_ids",
                    )

            known = await self.repo.existing_user_ids(others)
            missing = [str(user_id) for user_id in others if user_id not in known]
            if missing:
                raise ValidationError(
                    f"Unknown participants: {', '.join(missing)}",
                    field="participant_ids",
                )
            await self._check_property(data.property_id)

            user_id = current_user.id
            if data.type == ConversationType.DIRECT:
                key = direct_key_for(user_id, others[0])
                existing = await self.repo.get_direct(key)
                if existing:
                    return self.mapper.one(existing, ConversationOut)
                try:
                    async with atomic(self.db):
                        convo = await self.repo.create(
                            type=ConversationType.DIRECT,
                            participant_ids=[user_id, others[0]],
                            created_by=user_id,
                            property_id=data.property_id,
                            direct_key=key,
                        )
                except IntegrityError:
                    # Another request created the pair first.
                    existing = await self.repo.get_direct(key)
                    if existing is None:
                        raise
                    logger.info("Direct conversation %s raced, reusing it", key)
                    return self.mapper.one(existing, ConversationOut)
            else:
                async with atomic(self.db):
                    convo = await self.repo.create(
                        type=ConversationType.GROUP,
                        participant_ids=[user_id, *others],
                        created_by=user_id,
                        name=data.name,
                        property_id=data.property_id,
                    )

            convo = await self.repo.get_conversation_by_id(convo.id)
            logger.info(
                "Conversation %s (%s) created by %s with %d participants",
                convo.id,
                convo.type.value,
                user_id,
                len(convo.participants),
            )
            return self.mapper.one(convo, ConversationOut)

        return await self.breaker.call(handler)

    async def get_conversation(
        self, conversation_id: uuid.UUID, current_user
    ) -> ConversationOut:
        async def handler():
            convo, _ = await self._membership(conversation_id, current_user, "chat:read")
            return self.mapper.one(convo, ConversationOut)

        return await self.breaker.call(handler)

    async def list_conversations(self, current_user) -> List[ConversationSummaryOut]:
        async def handler():
            self.permission.require(current_user, "chat:read")
            conversations = await self.repo.list_for_user(current_user.id)
            ids = [convo.id for convo in conversations]
            last = await self.message_repo.last_messages(ids)
            unread = await self.message_repo.unread_counts_for_user(current_user.id)

            summaries = []
            for convo in conversations:
                summary = ConversationSummaryOut.model_validate(convo)
                if convo.id in last:
                    summary.last_message = self.mapper.one(last[convo.id], MessageOut)
                summary.unread_count = unread.get(convo.id, 0)
                summaries.append(summary)
            return summaries

        return await self.breaker.call(handler)

    async def send_message(
        self,
        conversation_id: uuid.UUID,
        current_user,
        content: str,
        type: MessageType = MessageType.TEXT,
        property_id: uuid.UUID | None = None,
    ) -> MessageOut:
        async def handler():
            text = (content or "").strip()
            if not text:
                raise ValidationError("Message content cannot be empty", field="content")
            if type == MessageType.PROPERTY_SHARE and property_id is None:
                raise ValidationError(
                    "A shared property message needs a property", field="property_id"
                )

            convo, _ = await self._membership(
                conversation_id, current_user, "chat:write"
            )
            await self._check_property(property_id)

            async with atomic(self.db):
                message = await self.message_repo.create(
                    conversation_id=convo.id,
                    sender_id=current_user.id,
                    content=text,
                    type=type,
                    property_id=property_id,
                )
                await self.repo.touch(convo.id)
                message_id = message.id

            stored = await self.message_repo.get_message_id(message_id)
            return self.mapper.one(stored, MessageOut)

        return await self.breaker.call(handler)

    async def list_messages(
        self,
        conversation_id: uuid.UUID,
        current_user,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> MessagePage:
        async def handler():
            convo, _ = await self._membership(conversation_id, current_user, "chat:read")
            page_size = self.paginate.clamp_limit(limit)
            position = self.paginate.decode_cursor(cursor) if cursor else None

            messages, has_more = await self.message_repo.list_page(
                conversation_id=convo.id, limit=page_size, cursor=position
            )
            next_cursor = None
            if has_more and messages:
                tail = messages[-1]
                next_cursor = self.paginate.encode_cursor(tail.created_at, tail.id)

            return MessagePage(
                items=self.mapper.many(messages, MessageOut),
                next_cursor=next_cursor,
            )

        return await self.breaker.call(handler)

    async def mark_read(self, conversation_id: uuid.UUID, current_user) -> MarkReadOut:
        async def handler():
            convo, participant = await self._membership(
                conversation_id, current_user, "chat:read"
            )
            read_at = utc_now()
            unread = await self.message_repo.count_unread_in(participant)

            last_read_at = participant.last_read_at
            async with atomic(self.db):
                await self.message_repo.mark_conversation_as_read(
                    convo.id, current_user.id, read_at
                )
                if unread and await self.repo.advance_read_cursor(
                    participant.id, read_at
                ):
                    last_read_at = read_at

            logger.info(
                "User %s read %d messages in conversation %s",
                current_user.id,
                unread,
                convo.id,
            )
            return MarkReadOut(
                conversation_id=convo.id,
                updated=unread,
                last_read_at=last_read_at,
            )

        return await self.breaker.call(handler)

    async def unread_count(self, current_user) -> UnreadCountOut:
        async def handler():
            self.permission.require(current_user, "chat:read")
            by_conversation = await self.message_repo.unread_counts_for_user(
                current_user.id
            )
            return UnreadCountOut(
                total=sum(by_conversation.values()),
                by_conversation=by_conversation,
            )

        return await self.breaker.call(handler)

    async def participant_ids(
        self, conversation_id: uuid.UUID, current_user
    ) -> list[uuid.UUID]:
        convo, _ = await self._membership(conversation_id, current_user, "chat:read")
        return [participant.user_id for participant in convo.participants]
