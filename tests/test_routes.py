from __future__ import annotations

import json

from fastapi.testclient import TestClient

from livechat.config import LiveChatConfig
from livechat.main import create_app
from livechat.services.formatting import PHOTO_PLACEHOLDER
from livechat.services.media import ChatImageUploader
from livechat.services.memory_store import MemoryStore


class UploadedBlob:
    def __init__(self, name: str) -> None:
        self.name = name

    def upload_from_string(self, data: bytes, content_type: str | None = None) -> None:
        self.data = data


class UploadBucket:
    name = "demo-bucket"

    def blob(self, name: str) -> UploadedBlob:
        return UploadedBlob(name)


def build_client() -> tuple[TestClient, MemoryStore]:
    store = MemoryStore()
    app = create_app(LiveChatConfig(), store=store)
    return TestClient(app), store


def create_chat(client: TestClient, user_id: str = "a", other_id: str = "b") -> str:
    response = client.post(
        "/v1/chats",
        json={"userId": user_id, "otherUserId": other_id, "otherProfile": {"userName": "bob"}},
    )
    assert response.status_code == 200
    return response.json()["chatId"]


def test_health() -> None:
    client, _store = build_client()

    response = client.get("/v1/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "store_backend": "memory"}


def test_chat_flow_over_http() -> None:
    client, _store = build_client()
    chat_id = create_chat(client)
    assert create_chat(client, "b", "a") == chat_id

    sent = client.post(
        f"/v1/chats/{chat_id}/messages",
        json={"senderId": "a", "senderName": "alice", "message": "Hello"},
    )
    assert sent.status_code == 201
    assert sent.json()["success"] is True

    messages = client.get(f"/v1/chats/{chat_id}/messages").json()["value"]
    assert [item["message"] for item in messages] == ["Hello"]

    assert client.get(f"/v1/chats/{chat_id}/unread/b").json() == {"unreadCount": 1}
    assert client.post(f"/v1/chats/{chat_id}/read", json={"userId": "b"}).status_code == 200
    assert client.get(f"/v1/chats/{chat_id}/unread/b").json() == {"unreadCount": 0}

    inbox = client.get("/v1/users/a/conversations").json()["value"]
    assert inbox[0]["userName"] == "bob"
    assert inbox[0]["lastMessage"] == "Hello"


def test_create_chat_with_self_is_bad_request() -> None:
    client, _store = build_client()

    response = client.post("/v1/chats", json={"userId": "a", "otherUserId": "a"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BadRequest"


def test_blocked_send_returns_403() -> None:
    client, _store = build_client()
    chat_id = create_chat(client)

    assert client.post("/v1/blocks", json={"userId": "b", "targetUserId": "a"}).status_code == 200
    status = client.get("/v1/blocks/a/b").json()
    assert status == {"hasBlockedOther": False, "isBlockedByOther": True}
    assert client.get("/v1/blocks/b").json() == {"value": ["a"]}

    response = client.post(
        f"/v1/chats/{chat_id}/messages",
        json={"senderId": "a", "senderName": "alice", "message": "Hello"},
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "Forbidden"

    assert client.delete("/v1/blocks/b/a").status_code == 200
    assert client.get("/v1/blocks/b").json() == {"value": []}


def test_send_to_unknown_chat_returns_404() -> None:
    client, _store = build_client()

    response = client.post(
        "/v1/chats/missing/messages",
        json={"senderId": "a", "senderName": "alice", "message": "Hello"},
    )

    assert response.status_code == 404
    assert client.get("/v1/chats/missing/messages").status_code == 404


def test_offline_beacon_accepts_text_plain() -> None:
    client, store = build_client()
    client.post("/v1/presence/a", json={"online": True})

    response = client.post(
        "/api/presence/offline",
        content=json.dumps({"userId": "a", "online": False, "timestamp": 1}),
        headers={"content-type": "text/plain;charset=UTF-8"},
    )

    assert response.status_code == 200
    assert store.documents["presence/a"]["online"] is False
    assert client.get("/v1/presence/a").json()["online"] is False
    assert client.post("/api/presence/offline", content=b"not json").status_code == 400


def test_typing_and_profile_refresh() -> None:
    client, store = build_client()
    chat_id = create_chat(client)

    assert client.put(f"/v1/chats/{chat_id}/typing", json={"userId": "a", "isTyping": True}).status_code == 200
    assert store.documents[f"chats/{chat_id}"]["typing_a"] is True

    refreshed = client.post("/v1/users/a/profile", json={"userName": "alice", "profilePhoto": "a.png"})
    assert refreshed.json() == {"updated": 1}
    assert client.get("/v1/users/b/conversations").json()["value"][0]["userName"] == "alice"


def test_room_messages_over_http() -> None:
    client, _store = build_client()

    sent = client.post(
        "/v1/rooms/show1/messages",
        json={
            "senderId": "viewer",
            "senderName": "Viewer",
            "message": "hi @host",
            "mentions": [{"id": "host", "name": "Host"}],
        },
    )
    listed = client.get("/v1/rooms/show1/messages").json()["value"]

    assert sent.status_code == 201
    assert listed[0]["message"] == "hi @host"
    assert listed[0]["mentions"] == [{"id": "host", "name": "Host"}]


def test_image_upload_sends_a_photo_message() -> None:
    store = MemoryStore()
    app = create_app(LiveChatConfig(), store=store)
    app.state.live.uploader = ChatImageUploader(bucket=UploadBucket())
    client = TestClient(app)
    chat_id = create_chat(client)

    response = client.post(
        f"/v1/chats/{chat_id}/images",
        params={"senderId": "a", "senderName": "alice", "filename": "cat.png"},
        content=b"\x89PNG",
        headers={"content-type": "image/png"},
    )

    assert response.status_code == 201
    assert store.documents[f"chats/{chat_id}"]["lastMessage"] == PHOTO_PLACEHOLDER
    assert client.post(f"/v1/chats/{chat_id}/images", params={"senderId": "a"}, content=b"").status_code == 400


def test_conversation_feed_websocket() -> None:
    client, _store = build_client()
    create_chat(client)

    with client.websocket_connect("/v1/users/a/conversations/ws") as websocket:
        payload = websocket.receive_json()

    assert [item["otherUserId"] for item in payload["value"]] == ["b"]
