"""
Tests for the chat HTTP endpoints and live sockets.
"""

import asyncio
import uuid

import pytest
from starlette.websockets import WebSocketDisconnect

from barter.chat import service as chat_service
from barter.chat.routers import SocketSender

from fake_supabase import api_error
from helpers import make_token


def new_message(conversation, sender, content):
    return {
        "conversation_id": conversation["id"],
        "sender_id": sender.id,
        "content": content,
    }


class TestConversationList:
    def test_requires_authentication(self, client):
        response = client.get("/chat/conversations")

        assert response.status_code in (401, 403)

    def test_expired_token(self, client, alice):
        token = make_token(alice.id, alice.email, expires_in=-3600)

        response = client.get(
            "/chat/conversations", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Token expired"

    def test_garbage_token(self, client):
        response = client.get(
            "/chat/conversations", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"

    def test_lists_entries_in_camel_case(
        self, client, alice, bob, create_conversation, create_message
    ):
        conversation = create_conversation(alice.id, bob.id)
        create_message(conversation, bob.id, "Would you swap for a bike?")

        response = client.get("/chat/conversations", headers=alice.headers)

        assert response.status_code == 200
        [entry] = response.json()["conversations"]
        assert entry["conversationId"] == conversation["id"]
        assert entry["otherUser"]["id"] == bob.id
        assert entry["otherUser"]["fullName"] == "Bob Buyer"
        assert entry["lastMessage"]["content"] == "Would you swap for a bike?"
        assert entry["lastMessage"]["isFromMe"] is False
        assert entry["path"] == f"/chat/conversations/{conversation['id']}"

    def test_empty_list(self, client, alice):
        response = client.get("/chat/conversations", headers=alice.headers)

        assert response.status_code == 200
        assert response.json() == {"conversations": []}

    def test_backend_failure(self, client, fake, alice):
        fake.fail_next("conversations", "select", api_error("57014", "statement timeout"))

        response = client.get("/chat/conversations", headers=alice.headers)

        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to fetch conversations"


class TestDirectConversation:
    def test_get_or_create(self, client, fake, alice, bob):
        first = client.post(
            "/chat/conversations/direct", json={"receiver_id": bob.id}, headers=alice.headers
        )
        second = client.post(
            "/chat/conversations/direct", json={"receiver_id": alice.id}, headers=bob.headers
        )

        assert first.status_code == 200
        assert first.json()["is_new"] is True
        assert second.json()["is_new"] is False
        assert second.json()["conversation_id"] == first.json()["conversation_id"]
        assert first.json()["path"] == f"/chat/conversations/{first.json()['conversation_id']}"
        assert len(fake.tables["conversations"]) == 1

    def test_with_self(self, client, alice):
        response = client.post(
            "/chat/conversations/direct", json={"receiver_id": alice.id}, headers=alice.headers
        )

        assert response.status_code == 400

    def test_invalid_receiver(self, client, alice):
        response = client.post(
            "/chat/conversations/direct", json={"receiver_id": "nope"}, headers=alice.headers
        )

        assert response.status_code == 422


class TestChatSessionEndpoint:
    def test_snapshot(self, client, alice, bob, create_conversation, create_message):
        conversation = create_conversation(alice.id, bob.id)
        create_message(conversation, alice.id, "first")
        create_message(conversation, bob.id, "second")

        response = client.get(f"/chat/conversations/{conversation['id']}", headers=bob.headers)

        assert response.status_code == 200
        body = response.json()
        assert body["conversation"]["id"] == conversation["id"]
        assert body["other_user"]["id"] == alice.id
        assert {p["id"] for p in body["participants"]} == {alice.id, bob.id}
        assert [m["content"] for m in body["messages"]] == ["first", "second"]

    def test_outsider(self, client, alice, bob, carol, create_conversation):
        conversation = create_conversation(alice.id, bob.id)

        response = client.get(f"/chat/conversations/{conversation['id']}", headers=carol.headers)

        assert response.status_code == 403

    def test_missing(self, client, alice):
        response = client.get(f"/chat/conversations/{uuid.uuid4()}", headers=alice.headers)

        assert response.status_code == 404


class TestPostMessage:
    def test_send(self, client, fake, alice, bob, create_conversation):
        conversation = create_conversation(alice.id, bob.id)

        response = client.post(
            f"/chat/conversations/{conversation['id']}/messages",
            json={"content": "  Still available?  "},
            headers=bob.headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["sent"] is True
        assert body["message"]["content"] == "Still available?"
        assert body["message"]["sender_id"] == bob.id

    def test_blank_is_not_sent(self, client, fake, alice, bob, create_conversation):
        conversation = create_conversation(alice.id, bob.id)

        response = client.post(
            f"/chat/conversations/{conversation['id']}/messages",
            json={"content": "   "},
            headers=bob.headers,
        )

        assert response.status_code == 201
        assert response.json() == {"sent": False, "message": None}
        assert fake.count("messages", "insert") == 0

    def test_outsider_cannot_send(self, client, fake, alice, bob, carol, create_conversation):
        conversation = create_conversation(alice.id, bob.id)

        response = client.post(
            f"/chat/conversations/{conversation['id']}/messages",
            json={"content": "hi"},
            headers=carol.headers,
        )

        assert response.status_code == 403
        assert fake.tables["messages"] == []


class TestConversationsSocket:
    def test_rejects_missing_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/chat/ws/conversations"):
                pass

        assert exc.value.code == 4401

    def test_rejects_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/chat/ws/conversations?token=bad"):
                pass

        assert exc.value.code == 4401

    def test_closes_without_realtime(self, client, app, alice):
        app.state.realtime = None

        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/chat/ws/conversations?token={alice.token}"):
                pass

        assert exc.value.code == 1011

    def test_sends_list_then_refreshes_on_change(
        self, client, fake, alice, bob, create_conversation
    ):
        conversation = create_conversation(alice.id, bob.id)

        with client.websocket_connect(f"/chat/ws/conversations?token={alice.token}") as ws:
            frame = ws.receive_json()
            assert frame["type"] == "conversations"
            assert frame["loading"] is False
            assert frame["error"] is None
            assert frame["conversations"][0]["lastMessage"] is None

            fake.insert_row("messages", new_message(conversation, bob, "Offer: two books"))

            frame = ws.receive_json()
            assert frame["conversations"][0]["conversationId"] == conversation["id"]
            assert frame["conversations"][0]["lastMessage"]["content"] == "Offer: two books"

    def test_failed_refresh_keeps_list(self, client, fake, alice, bob, create_conversation):
        conversation = create_conversation(alice.id, bob.id)

        with client.websocket_connect(f"/chat/ws/conversations?token={alice.token}") as ws:
            assert len(ws.receive_json()["conversations"]) == 1

            fake.fail_next("conversations", "select", api_error("57014", "statement timeout"))
            fake.insert_row("messages", new_message(conversation, bob, "ping"))

            frame = ws.receive_json()
            assert frame["error"] == "Failed to fetch conversations"
            assert frame["loading"] is False
            assert len(frame["conversations"]) == 1

    def test_change_during_first_refresh_is_not_lost(
        self, client, fake, alice, bob, create_conversation, monkeypatch
    ):
        conversation = create_conversation(alice.id, bob.id)
        aggregate = chat_service.aggregate_conversations
        reads = []

        def aggregate_then_message(client_, user_id):
            entries = aggregate(client_, user_id)
            reads.append(entries)
            if len(reads) == 1:
                # Lands after the first read was taken, before it is sent
                fake.insert_row("messages", new_message(conversation, bob, "Still available?"))
            return entries

        monkeypatch.setattr(chat_service, "aggregate_conversations", aggregate_then_message)

        with client.websocket_connect(f"/chat/ws/conversations?token={alice.token}") as ws:
            first = ws.receive_json()
            last = ws.receive_json()

        assert first["conversations"][0]["lastMessage"] is None
        assert last["conversations"][0]["lastMessage"]["content"] == "Still available?"
        assert len(reads) == 2


class TestChatSocket:
    @pytest.fixture
    def conversation(self, alice, bob, create_conversation):
        return create_conversation(alice.id, bob.id)

    def url(self, conversation_id, user):
        return f"/chat/ws/conversations/{conversation_id}?token={user.token}"

    def test_session_frame_first(self, client, alice, bob, conversation, create_message):
        create_message(conversation, bob.id, "hello")

        with client.websocket_connect(self.url(conversation["id"], alice)) as ws:
            frame = ws.receive_json()

        assert frame["type"] == "session"
        assert frame["conversation"]["id"] == conversation["id"]
        assert frame["other_user"]["id"] == bob.id
        assert [m["content"] for m in frame["messages"]] == ["hello"]

    def test_outsider_is_rejected(self, client, carol, conversation):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(self.url(conversation["id"], carol)):
                pass

        assert exc.value.code == 4403

    def test_missing_conversation(self, client, alice):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(self.url(uuid.uuid4(), alice)):
                pass

        assert exc.value.code == 4404

    def test_receives_new_messages(self, client, fake, alice, bob, conversation):
        with client.websocket_connect(self.url(conversation["id"], alice)) as ws:
            ws.receive_json()

            fake.insert_row("messages", new_message(conversation, bob, "Counter offer?"))

            frame = ws.receive_json()

        assert frame["type"] == "message"
        assert frame["message"]["content"] == "Counter offer?"
        assert frame["message"]["sender_id"] == bob.id

    def test_send_round_trips_through_live_stream(self, client, fake, alice, conversation):
        with client.websocket_connect(self.url(conversation["id"], alice)) as ws:
            ws.receive_json()

            ws.send_json({"type": "send", "content": "  Deal  "})
            frames = [ws.receive_json(), ws.receive_json()]

        by_type = {frame["type"]: frame for frame in frames}
        assert set(by_type) == {"sent", "message"}
        assert by_type["message"]["message"]["content"] == "Deal"
        assert by_type["sent"]["message_id"] == by_type["message"]["message"]["id"]
        assert len(fake.tables["messages"]) == 1

    def test_blank_send_is_ignored(self, client, fake, alice, conversation):
        with client.websocket_connect(self.url(conversation["id"], alice)) as ws:
            ws.receive_json()

            ws.send_json({"type": "send", "content": "   "})
            frame = ws.receive_json()

        assert frame == {"type": "ignored"}
        assert fake.tables["messages"] == []

    @pytest.mark.parametrize(
        "raw, detail",
        [
            ("not json", "Frames must be JSON."),
            ('{"type": "typing"}', "Unknown frame type."),
            ('{"type": "send", "content": 5}', "Content must be text."),
        ],
    )
    def test_bad_frames(self, client, alice, conversation, raw, detail):
        with client.websocket_connect(self.url(conversation["id"], alice)) as ws:
            ws.receive_json()

            ws.send_text(raw)
            frame = ws.receive_json()

        assert frame == {"type": "error", "detail": detail}

    def test_send_failure_is_reported(self, client, fake, alice, conversation):
        with client.websocket_connect(self.url(conversation["id"], alice)) as ws:
            ws.receive_json()

            fake.fail_next("messages", "insert", api_error("42501", "permission denied"))
            ws.send_json({"type": "send", "content": "hi"})
            frame = ws.receive_json()

        assert frame == {"type": "error", "detail": "Failed to send message."}

    def test_late_message_frame_carries_its_position(
        self, client, fake, alice, bob, conversation, create_message
    ):
        hello = create_message(conversation, bob.id, "hello")

        with client.websocket_connect(self.url(conversation["id"], alice)) as ws:
            ws.receive_json()

            fake.insert_row(
                "messages",
                {**new_message(conversation, bob, "second"), "created_at": "2099-01-01T00:00:02+00:00"},
            )
            second = ws.receive_json()
            fake.insert_row(
                "messages",
                {**new_message(conversation, alice, "first"), "created_at": "2099-01-01T00:00:01+00:00"},
            )
            first = ws.receive_json()

        assert (second["index"], second["after_id"]) == (1, str(hello["id"]))
        assert (first["index"], first["after_id"]) == (1, str(hello["id"]))
        assert first["message"]["content"] == "first"

    def test_first_message_has_no_predecessor(self, client, fake, alice, conversation):
        with client.websocket_connect(self.url(conversation["id"], alice)) as ws:
            ws.receive_json()

            fake.insert_row("messages", new_message(conversation, alice, "opening offer"))
            frame = ws.receive_json()

        assert frame["index"] == 0
        assert frame["after_id"] is None

    def test_subscription_is_scoped_to_the_conversation(self, client, fake, alice, conversation):
        with client.websocket_connect(self.url(conversation["id"], alice)) as ws:
            ws.receive_json()
            [channel] = fake.realtime.subscribed()
            assert channel.bindings[0]["filter"] == f"conversation_id=eq.{conversation['id']}"


class RecordingSocket:
    def __init__(self):
        self.events = []

    async def send_json(self, frame):
        self.events.append(("start", frame["n"]))
        await asyncio.sleep(0.01)
        self.events.append(("end", frame["n"]))


@pytest.mark.asyncio
async def test_socket_sender_does_not_interleave_frames():
    socket = RecordingSocket()
    sender = SocketSender(socket)

    await asyncio.gather(*(sender.send({"n": n}) for n in range(3)))

    assert socket.events == [
        ("start", 0), ("end", 0),
        ("start", 1), ("end", 1),
        ("start", 2), ("end", 2),
    ]
