import asyncio
import json
import threading

from sqlalchemy.exc import OperationalError

from conftest import login_as
from schoolchat.models.conversation import Chat, Message, MessageRole
from schoolchat.models.user import Role
from schoolchat.services.relay import CompletionRelay


def _frames(body: str):
    return [json.loads(line[len("data: "):]) for line in body.split("\n\n") if line.startswith("data: ")]


def _new_chat(client):
    return client.post("/api/chats", json={}).json()["id"]


def test_stream_relays_tokens_and_persists_reply(client, make_user, db_session, llm):
    login_as(client, make_user())
    chat_id = _new_chat(client)

    r = client.post(f"/api/chats/{chat_id}/message", json={"content": "What is a prime number?"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")

    frames = _frames(r.text)
    assert frames[:-1] == [
        {"content": "Hello", "done": False},
        {"content": ", ", "done": False},
        {"content": "world", "done": False},
    ]
    assert frames[-1] == {"content": "", "done": True}

    call = llm.calls[0]
    assert call["stream"] is True
    assert call["model"] == "gpt-4o-mini"
    assert call["messages"] == [{"role": "user", "content": "What is a prime number?"}]

    db_session.expire_all()
    msgs = db_session.query(Message).filter_by(chat_id=chat_id).order_by(Message.id).all()
    assert [m.role for m in msgs] == [MessageRole.USER, MessageRole.ASSISTANT]
    reply = msgs[1]
    assert reply.content == "Hello, world"
    assert (reply.prompt_tokens, reply.completion_tokens, reply.total_tokens) == (11, 3, 14)
    assert db_session.get(Chat, chat_id).title == "What is a prime number?"


def test_history_is_sent_in_order(client, make_user, llm):
    login_as(client, make_user())
    chat_id = _new_chat(client)

    client.post(f"/api/chats/{chat_id}/message", json={"content": "first"})
    client.post(f"/api/chats/{chat_id}/message", json={"content": "second"})

    assert llm.calls[1]["messages"] == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "Hello, world"},
        {"role": "user", "content": "second"},
    ]


def test_long_first_message_truncates_title(client, make_user, db_session):
    login_as(client, make_user())
    chat_id = _new_chat(client)
    text = "x" * 80

    client.post(f"/api/chats/{chat_id}/message", json={"content": text})
    db_session.expire_all()
    assert db_session.get(Chat, chat_id).title == "x" * 50 + "..."


def test_upstream_failure_keeps_user_message_only(client, make_user, db_session, llm):
    llm.fail_after = 1
    login_as(client, make_user())
    chat_id = _new_chat(client)

    r = client.post(f"/api/chats/{chat_id}/message", json={"content": "hi"})
    assert r.status_code == 200
    frames = _frames(r.text)
    assert frames[0] == {"content": "Hello", "done": False}
    assert frames[-1] == {"error": "AI service temporarily unavailable"}
    assert not any(f.get("done") for f in frames)

    db_session.expire_all()
    msgs = db_session.query(Message).filter_by(chat_id=chat_id).all()
    assert [m.role for m in msgs] == [MessageRole.USER]
    assert msgs[0].content == "hi"


def test_upstream_failure_before_first_token(client, make_user, db_session, llm):
    llm.fail_after = 0
    login_as(client, make_user())
    chat_id = _new_chat(client)

    r = client.post(f"/api/chats/{chat_id}/message", json={"content": "hi"})
    assert _frames(r.text) == [{"error": "AI service temporarily unavailable"}]
    db_session.expire_all()
    assert db_session.query(Message).filter_by(chat_id=chat_id, role=MessageRole.ASSISTANT).count() == 0


def test_only_owner_may_post(client, make_user, llm):
    login_as(client, make_user())
    chat_id = _new_chat(client)

    login_as(client, make_user(Role.ADMIN))
    r = client.post(f"/api/chats/{chat_id}/message", json={"content": "hijack"})
    assert r.status_code == 404
    assert llm.calls == []


def test_rejects_empty_content_and_unknown_model(client, make_user, llm):
    login_as(client, make_user())
    chat_id = _new_chat(client)

    assert client.post(f"/api/chats/{chat_id}/message", json={"content": "   "}).status_code == 400
    r = client.post(f"/api/chats/{chat_id}/message", json={"content": "hi", "model": "davinci-001"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Unsupported model requested"
    assert llm.calls == []


def test_message_requires_login(client):
    assert client.post("/api/chats/1/message", json={"content": "hi"}).status_code == 401


def test_unexpected_stream_error_still_ends_with_error_frame(client, make_user, db_session, llm):
    llm.fail_after = 1
    llm.fail_with = asyncio.TimeoutError("upstream read stalled")
    login_as(client, make_user())
    chat_id = _new_chat(client)

    r = client.post(f"/api/chats/{chat_id}/message", json={"content": "hi"})
    assert r.status_code == 200
    frames = _frames(r.text)
    assert frames == [{"content": "Hello", "done": False}, {"error": "AI service temporarily unavailable"}]

    db_session.expire_all()
    assert db_session.query(Message).filter_by(chat_id=chat_id, role=MessageRole.ASSISTANT).count() == 0


def test_failed_reply_write_ends_with_error_frame(client, make_user, db_session, monkeypatch):
    def broken_persist(self, text, usage):
        raise OperationalError("INSERT INTO messages", {}, Exception("database is locked"))

    monkeypatch.setattr(CompletionRelay, "_persist", broken_persist)
    login_as(client, make_user())
    chat_id = _new_chat(client)

    r = client.post(f"/api/chats/{chat_id}/message", json={"content": "hi"})
    frames = _frames(r.text)
    assert frames[-1] == {"error": "AI service temporarily unavailable"}
    assert not any(f.get("done") for f in frames)

    db_session.expire_all()
    assert db_session.query(Message).filter_by(chat_id=chat_id, role=MessageRole.ASSISTANT).count() == 0


def test_reply_is_written_off_the_event_loop(client, make_user, llm, monkeypatch):
    threads = {}
    create = llm._create
    persist = CompletionRelay._persist

    async def create_on_loop(**kwargs):
        threads["loop"] = threading.get_ident()
        return await create(**kwargs)

    def persist_in_worker(self, text, usage):
        threads["persist"] = threading.get_ident()
        return persist(self, text, usage)

    llm.chat.completions.create = create_on_loop
    monkeypatch.setattr(CompletionRelay, "_persist", persist_in_worker)
    login_as(client, make_user())
    chat_id = _new_chat(client)

    frames = _frames(client.post(f"/api/chats/{chat_id}/message", json={"content": "hi"}).text)
    assert frames[-1] == {"content": "", "done": True}
    assert threads["persist"] != threads["loop"]
