import uuid

from models.enums import ConversationType
from realtime.chat_socket import ChatSocketSession
from realtime.connection_manager import ConnectionManager
from schemas.schema import ConversationCreateSchema
from services.chat_service import ConversationService


class FakeSocket:
    def __init__(self, broken=False):
        self.accepted = False
        self.broken = broken
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, payload):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(payload)

    def events(self):
        return [payload["event"] for payload in self.sent]


async def test_connect_reports_first_socket():
    manager = ConnectionManager()
    user_id = uuid.uuid4()
    phone, laptop = FakeSocket(), FakeSocket()

    assert await manager.connect(user_id, phone) is True
    assert await manager.connect(user_id, laptop) is False
    assert phone.accepted and laptop.accepted
    assert manager.is_online(user_id)

    assert manager.disconnect(user_id, phone) is False
    assert manager.disconnect(user_id, laptop) is True
    assert not manager.is_online(user_id)
    assert manager.online_users() == []


async def test_broadcast_skips_excluded_and_drops_dead_sockets():
    manager = ConnectionManager()
    room = uuid.uuid4()
    sender, listener, dead = FakeSocket(), FakeSocket(), FakeSocket(broken=True)
    for ws in (sender, listener, dead):
        manager.join(room, ws)

    await manager.broadcast(room, {"event": "ping"}, exclude=sender)

    assert sender.sent == []
    assert listener.events() == ["ping"]
    assert manager.rooms[room] == {sender, listener}


async def test_disconnect_leaves_every_room():
    manager = ConnectionManager()
    user_id = uuid.uuid4()
    ws = FakeSocket()
    await manager.connect(user_id, ws)
    first, second = uuid.uuid4(), uuid.uuid4()
    manager.join(first, ws)
    manager.join(second, ws)

    manager.disconnect(user_id, ws)

    assert manager.rooms == {}


async def test_broadcast_all_reaches_every_user():
    manager = ConnectionManager()
    alice, bob = FakeSocket(), FakeSocket()
    gone = FakeSocket(broken=True)
    gone_user = uuid.uuid4()
    await manager.connect(uuid.uuid4(), alice)
    await manager.connect(uuid.uuid4(), bob)
    await manager.connect(gone_user, gone)

    await manager.broadcast_all({"event": "user:online"}, exclude=alice)

    assert alice.sent == []
    assert bob.events() == ["user:online"]
    assert not manager.is_online(gone_user)


async def open_direct(db, first, second):
    return await ConversationService(db).create_conversation(
        ConversationCreateSchema(type=ConversationType.DIRECT, participant_ids=[second.id]),
        first,
    )


async def sessions(db, manager, *users):
    opened = []
    for user in users:
        session = ChatSocketSession(db, user, manager, FakeSocket())
        await session.on_connect()
        opened.append(session)
    return opened


async def test_presence_events(db, seed):
    manager = ConnectionManager()
    sales, manager_user = await sessions(db, manager, seed.sales, seed.manager)

    assert sales.websocket.events() == ["user:online"]
    assert manager_user.websocket.events() == []

    await manager_user.on_disconnect()

    assert sales.websocket.sent[-1] == {
        "event": "user:offline",
        "data": {"user_id": str(seed.manager.id)},
    }


async def test_join_requires_participation(db, seed):
    convo = await open_direct(db, seed.sales, seed.manager)
    manager = ConnectionManager()
    (outsider,) = await sessions(db, manager, seed.support)

    await outsider.dispatch(
        {"event": "room:join", "data": {"conversation_id": str(convo.id)}}
    )

    error = outsider.websocket.sent[-1]
    assert error["event"] == "error"
    assert error["data"]["error"] == "authorization_error"
    assert convo.id not in manager.rooms


async def test_message_send_reaches_the_room(db, seed):
    convo = await open_direct(db, seed.sales, seed.manager)
    manager = ConnectionManager()
    sales, other = await sessions(db, manager, seed.sales, seed.manager)
    for session in (sales, other):
        await session.dispatch(
            {"event": "room:join", "data": {"conversation_id": str(convo.id)}}
        )

    await sales.dispatch(
        {
            "event": "message:send",
            "data": {"conversation_id": str(convo.id), "content": "Unit A-01 is ready"},
        }
    )

    delivered = other.websocket.sent[-1]
    assert delivered["event"] == "message:new"
    assert delivered["data"]["content"] == "Unit A-01 is ready"
    assert delivered["data"]["sender_id"] == str(seed.sales.id)
    assert sales.websocket.sent[-1]["event"] == "message:new"

    await other.dispatch(
        {"event": "message:read", "data": {"conversation_id": str(convo.id)}}
    )

    receipt = sales.websocket.sent[-1]
    assert receipt["event"] == "message:read"
    assert receipt["data"]["updated"] == 1
    assert receipt["data"]["user_id"] == str(seed.manager.id)


async def test_typing_is_relayed_to_others_in_the_room(db, seed):
    convo = await open_direct(db, seed.sales, seed.manager)
    manager = ConnectionManager()
    sales, other = await sessions(db, manager, seed.sales, seed.manager)
    room = {"conversation_id": str(convo.id)}

    # not joined yet, nothing is relayed
    await sales.dispatch({"event": "typing:start", "data": room})
    assert "user:typing" not in other.websocket.events()

    for session in (sales, other):
        await session.dispatch({"event": "room:join", "data": room})
    await sales.dispatch({"event": "typing:start", "data": room})
    await sales.dispatch({"event": "typing:stop", "data": room})

    assert other.websocket.events()[-2:] == ["user:typing", "user:stop-typing"]
    assert other.websocket.sent[-2]["data"]["user_id"] == str(seed.sales.id)
    assert "user:typing" not in sales.websocket.events()


async def test_bad_events_answer_with_error(db, seed):
    manager = ConnectionManager()
    (session,) = await sessions(db, manager, seed.sales)

    await session.dispatch({"event": "room:explode", "data": {}})
    await session.dispatch({"event": "room:join", "data": {}})
    await session.dispatch(
        {
            "event": "message:send",
            "data": {"conversation_id": str(uuid.uuid4()), "content": "hi"},
        }
    )

    errors = [payload["data"] for payload in session.websocket.sent]
    assert [e["error"] for e in errors] == [
        "validation_error",
        "validation_error",
        "not_found",
    ]
    assert errors[0]["details"] == {"field": "event"}
    assert errors[1]["details"] == {"field": "conversation_id"}


async def test_malformed_frames_answer_with_validation_error(db, seed):
    manager = ConnectionManager()
    (session,) = await sessions(db, manager, seed.sales)

    await session.dispatch({"event": "room:join", "data": "not-an-object"})
    await session.dispatch({"event": "message:send", "data": ["hi"]})
    await session.dispatch({"event": ["room:join"], "data": {}})
    await session.dispatch(["room:join"])

    errors = [payload["data"] for payload in session.websocket.sent]
    assert [e["error"] for e in errors] == ["validation_error"] * 4
    assert [e["details"]["field"] for e in errors] == ["data", "data", "event", "event"]


async def test_unexpected_failure_keeps_the_socket_usable(db, seed, caplog):
    convo = await open_direct(db, seed.sales, seed.manager)
    manager = ConnectionManager()
    (session,) = await sessions(db, manager, seed.sales)
    room = {"conversation_id": str(convo.id)}

    async def broken_mark_read(*args, **kwargs):
        raise RuntimeError("driver exploded")

    session.service.mark_read = broken_mark_read
    await session.dispatch({"event": "message:read", "data": room})

    error = session.websocket.sent[-1]
    assert error["event"] == "error"
    assert error["data"]["error"] == "internal_error"
    assert "driver exploded" not in error["data"]["message"]
    assert "Socket event message:read failed" in caplog.text

    await session.dispatch({"event": "room:join", "data": room})
    assert session.websocket in manager.rooms[convo.id]


async def test_socket_ignores_client_timestamps(db, seed):
    convo = await open_direct(db, seed.sales, seed.manager)
    manager = ConnectionManager()
    (sales,) = await sessions(db, manager, seed.sales)
    await sales.dispatch(
        {"event": "room:join", "data": {"conversation_id": str(convo.id)}}
    )

    await sales.dispatch(
        {
            "event": "message:send",
            "data": {
                "conversation_id": str(convo.id),
                "content": "backdated",
                "created_at": "2000-01-01T00:00:00",
            },
        }
    )

    delivered = sales.websocket.sent[-1]
    assert delivered["event"] == "message:new"
    assert not delivered["data"]["created_at"].startswith("2000-")
