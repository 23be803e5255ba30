import uuid

import pytest
from sqlalchemy import func, select

from core.exceptions import AuthorizationError, NotFoundError, ValidationError
from models.enums import ConversationType, MessageType
from models.models import Conversation
from repos.conversation_repo import ConversationRepo, direct_key_for
from schemas.schema import ConversationCreateSchema
from services.chat_service import ConversationService


async def direct(db, first, second, **extra):
    return await ConversationService(db).create_conversation(
        ConversationCreateSchema(
            type=ConversationType.DIRECT, participant_ids=[second.id], **extra
        ),
        first,
    )


async def send(db, convo_id, sender, content="hello", **extra):
    return await ConversationService(db).send_message(
        convo_id, sender, content=content, **extra
    )


async def test_direct_conversation_is_idempotent_by_pair(db, seed):
    first = await direct(db, seed.sales, seed.manager)
    again = await direct(db, seed.sales, seed.manager)
    reversed_pair = await direct(db, seed.manager, seed.sales)

    assert first.id == again.id == reversed_pair.id
    assert first.type == ConversationType.DIRECT
    assert {p.user_id for p in first.participants} == {seed.sales.id, seed.manager.id}

    stored = await ConversationRepo(db).get_direct(
        direct_key_for(seed.manager.id, seed.sales.id)
    )
    assert stored.id == first.id


async def test_direct_create_race_reuses_the_winner(db, session_factory, seed):
    async with session_factory() as other:
        winner = await direct(other, seed.manager, seed.sales)

    service = ConversationService(db)
    real_get_direct = service.repo.get_direct
    lookups = []

    async def lagging_get_direct(key):
        # the first lookup runs before the other request has committed
        lookups.append(key)
        if len(lookups) == 1:
            return None
        return await real_get_direct(key)

    service.repo.get_direct = lagging_get_direct
    loser = await service.create_conversation(
        ConversationCreateSchema(
            type=ConversationType.DIRECT, participant_ids=[seed.manager.id]
        ),
        seed.sales,
    )

    assert loser.id == winner.id
    assert len(lookups) == 2
    async with session_factory() as fresh:
        count = await fresh.scalar(select(func.count(Conversation.id)))
    assert count == 1


async def test_created_conversation_is_committed(db, session_factory, seed):
    group = await ConversationService(db).create_conversation(
        ConversationCreateSchema(
            type=ConversationType.GROUP,
            participant_ids=[seed.manager.id],
            name="Handover",
        ),
        seed.sales,
    )

    async with session_factory() as fresh:
        stored = await ConversationRepo(fresh).get_conversation_by_id(group.id)
    assert stored is not None
    assert {p.user_id for p in stored.participants} == {seed.sales.id, seed.manager.id}


async def test_direct_key_is_order_independent():
    a, b = uuid.uuid4(), uuid.uuid4()
    assert direct_key_for(a, b) == direct_key_for(b, a)


@pytest.mark.parametrize("others", ["none", "self", "two"])
async def test_direct_needs_exactly_two_participants(db, seed, others):
    participants = {
        "none": [seed.sales.id],
        "self": [seed.sales.id, seed.sales.id],
        "two": [seed.manager.id, seed.support.id],
    }[others]

    with pytest.raises(ValidationError) as exc:
        await ConversationService(db).create_conversation(
            ConversationCreateSchema(
                type=ConversationType.DIRECT, participant_ids=participants
            ),
            seed.sales,
        )

    assert exc.value.field == "participant_ids"


async def test_group_needs_name_and_another_member(db, seed):
    service = ConversationService(db)

    with pytest.raises(ValidationError) as exc:
        await service.create_conversation(
            ConversationCreateSchema(
                type=ConversationType.GROUP, participant_ids=[seed.manager.id]
            ),
            seed.sales,
        )
    assert exc.value.field == "name"

    with pytest.raises(ValidationError) as exc:
        await service.create_conversation(
            ConversationCreateSchema(
                type=ConversationType.GROUP,
                participant_ids=[seed.sales.id],
                name="Just me",
            ),
            seed.sales,
        )
    assert exc.value.field == "participant_ids"

    group = await service.create_conversation(
        ConversationCreateSchema(
            type=ConversationType.GROUP,
            participant_ids=[seed.manager.id, seed.support.id],
            name="Sky Garden team",
            property_id=seed.properties[0].id,
        ),
        seed.sales,
    )
    assert group.name == "Sky Garden team"
    assert group.property_id == seed.properties[0].id
    assert len(group.participants) == 3


async def test_unknown_or_inactive_participants_rejected(db, seed):
    service = ConversationService(db)

    for user_id in (uuid.uuid4(), seed.inactive.id):
        with pytest.raises(ValidationError):
            await service.create_conversation(
                ConversationCreateSchema(
                    type=ConversationType.DIRECT, participant_ids=[user_id]
                ),
                seed.sales,
            )


async def test_roles_without_chat_cannot_open_conversations(db, seed):
    with pytest.raises(AuthorizationError):
        await direct(db, seed.accountant, seed.manager)


async def test_send_requires_participant(db, seed):
    convo = await direct(db, seed.sales, seed.manager)

    with pytest.raises(AuthorizationError):
        await send(db, convo.id, seed.support)

    with pytest.raises(NotFoundError):
        await send(db, uuid.uuid4(), seed.sales)


async def test_send_validates_content(db, seed):
    convo = await direct(db, seed.sales, seed.manager)

    with pytest.raises(ValidationError) as exc:
        await send(db, convo.id, seed.sales, content="   ")
    assert exc.value.field == "content"

    with pytest.raises(ValidationError) as exc:
        await send(db, convo.id, seed.sales, type=MessageType.PROPERTY_SHARE)
    assert exc.value.field == "property_id"

    shared = await send(
        db,
        convo.id,
        seed.sales,
        content="Take a look at this unit",
        type=MessageType.PROPERTY_SHARE,
        property_id=seed.properties[0].id,
    )
    assert shared.property_id == seed.properties[0].id


async def test_send_persists_unread_message(db, seed):
    convo = await direct(db, seed.sales, seed.manager)

    message = await send(db, convo.id, seed.sales, content="  Hi there  ")

    assert message.content == "Hi there"
    assert message.is_read is False
    assert message.sender.id == seed.sales.id

    view = await ConversationService(db).get_conversation(convo.id, seed.manager)
    assert all(p.last_read_at is None for p in view.participants)
    assert view.updated_at >= convo.updated_at


async def test_list_messages_is_reverse_chronological(db, seed):
    service = ConversationService(db)
    convo = await direct(db, seed.sales, seed.manager)
    sent = [await send(db, convo.id, seed.sales, content=f"m{i}") for i in range(3)]

    page = await service.list_messages(convo.id, seed.manager)

    assert [m.id for m in page.items] == [m.id for m in reversed(sent)]
    assert page.next_cursor is None

    with pytest.raises(AuthorizationError):
        await service.list_messages(convo.id, seed.support)


async def test_cursor_pages_survive_concurrent_inserts(db, seed):
    service = ConversationService(db)
    convo = await direct(db, seed.sales, seed.manager)
    sent = [await send(db, convo.id, seed.sales, content=f"m{i}") for i in range(5)]

    first = await service.list_messages(convo.id, seed.manager, limit=2)
    assert first.next_cursor

    late = await send(db, convo.id, seed.manager, content="arrived mid-scroll")

    second = await service.list_messages(
        convo.id, seed.manager, cursor=first.next_cursor, limit=2
    )
    third = await service.list_messages(
        convo.id, seed.manager, cursor=second.next_cursor, limit=2
    )

    seen = [m.id for m in first.items + second.items + third.items]
    assert seen == [m.id for m in reversed(sent)]
    assert late.id not in seen
    assert third.next_cursor is None


async def test_malformed_cursor_is_a_validation_error(db, seed):
    convo = await direct(db, seed.sales, seed.manager)

    with pytest.raises(ValidationError) as exc:
        await ConversationService(db).list_messages(
            convo.id, seed.manager, cursor="not-a-cursor"
        )

    assert exc.value.field == "cursor"


async def test_mark_read_is_idempotent(db, seed):
    service = ConversationService(db)
    convo = await direct(db, seed.sales, seed.manager)
    for i in range(2):
        await send(db, convo.id, seed.sales, content=f"m{i}")

    first = await service.mark_read(convo.id, seed.manager)
    second = await service.mark_read(convo.id, seed.manager)

    assert first.updated == 2
    assert first.last_read_at is not None
    assert second.updated == 0
    assert second.last_read_at == first.last_read_at

    page = await service.list_messages(convo.id, seed.manager)
    assert all(m.is_read and m.read_at is not None for m in page.items)


async def test_mark_read_requires_participant(db, seed):
    convo = await direct(db, seed.sales, seed.manager)

    with pytest.raises(AuthorizationError):
        await ConversationService(db).mark_read(convo.id, seed.support)


async def test_own_messages_are_never_unread(db, seed):
    service = ConversationService(db)
    convo = await direct(db, seed.sales, seed.manager)
    await send(db, convo.id, seed.sales)

    result = await service.mark_read(convo.id, seed.sales)

    assert result.updated == 0
    assert (await service.unread_count(seed.sales)).total == 0
    assert (await service.unread_count(seed.manager)).total == 1


async def test_unread_count_is_zero_after_reading_everything(db, seed):
    service = ConversationService(db)
    with_manager = await direct(db, seed.sales, seed.manager)
    with_support = await direct(db, seed.support, seed.sales)
    group = await service.create_conversation(
        ConversationCreateSchema(
            type=ConversationType.GROUP,
            participant_ids=[seed.sales.id, seed.support.id],
            name="Launch",
        ),
        seed.manager,
    )
    await send(db, with_manager.id, seed.manager)
    await send(db, with_support.id, seed.support)
    await send(db, with_support.id, seed.support)
    await send(db, group.id, seed.manager)
    await send(db, group.id, seed.sales)

    before = await service.unread_count(seed.sales)
    assert before.total == 4
    assert before.by_conversation == {
        with_manager.id: 1,
        with_support.id: 2,
        group.id: 1,
    }

    for convo in (with_manager, with_support, group):
        await service.mark_read(convo.id, seed.sales)

    after = await service.unread_count(seed.sales)
    assert after.total == 0
    assert after.by_conversation == {}

    # support still has the group messages to read
    assert (await service.unread_count(seed.support)).total == 2


async def test_messages_after_read_count_again(db, seed):
    service = ConversationService(db)
    convo = await direct(db, seed.sales, seed.manager)
    await send(db, convo.id, seed.sales, content="before")
    await service.mark_read(convo.id, seed.manager)

    await send(db, convo.id, seed.sales, content="after")

    assert (await service.unread_count(seed.manager)).total == 1


async def test_list_conversations_with_preview_and_unread(db, seed):
    service = ConversationService(db)
    older = await direct(db, seed.sales, seed.support)
    newer = await direct(db, seed.sales, seed.manager)
    await send(db, newer.id, seed.manager, content="first")
    await send(db, newer.id, seed.manager, content="latest")
    await send(db, older.id, seed.support, content="bump")

    conversations = await service.list_conversations(seed.sales)

    assert [c.id for c in conversations] == [older.id, newer.id]
    by_id = {c.id: c for c in conversations}
    assert by_id[newer.id].last_message.content == "latest"
    assert by_id[newer.id].unread_count == 2
    assert by_id[older.id].unread_count == 1

    assert await service.list_conversations(seed.admin) == []


async def test_example_read_scenario(db, seed):
    service = ConversationService(db)
    convo = await direct(db, seed.sales, seed.manager)
    a, b = seed.sales, seed.manager

    a_before = (await service.unread_count(a)).total
    b_before = (await service.unread_count(b)).total
    for i in range(3):
        await send(db, convo.id, a, content=f"message {i}")

    b_pending = await service.unread_count(b)
    assert b_pending.total == b_before + 3
    assert b_pending.by_conversation[convo.id] == 3

    result = await service.mark_read(convo.id, b)

    assert result.updated == 3
    assert (await service.unread_count(b)).total == b_before
    assert (await service.unread_count(a)).total == a_before
