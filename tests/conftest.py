import uuid
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient
from openai import APIConnectionError

from schoolchat.core.config import Settings
from schoolchat.core.security import get_password_hash
from schoolchat.main import create_app
from schoolchat.models.user import Role, User

SUPERADMIN = ("root", "RootPass1")
PASSWORD = "TestPass1"


def _chunk(content=None, usage=None):
    choices = [] if content is None else [SimpleNamespace(delta=SimpleNamespace(content=content))]
    return SimpleNamespace(choices=choices, usage=usage)


class FakeStream:
    def __init__(self, parts, usage=None, fail_after=None, fail_with=None):
        self.parts = parts
        self.usage = usage
        self.fail_after = fail_after
        self.fail_with = fail_with

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for i, part in enumerate(self.parts):
            if self.fail_after is not None and i >= self.fail_after:
                raise self.fail_with or APIConnectionError(
                    request=httpx.Request("POST", "http://upstream/v1/chat/completions")
                )
            yield _chunk(part)
        if self.usage:
            yield _chunk(usage=SimpleNamespace(**self.usage))


class FakeLLM:
    """Stands in for AsyncOpenAI; records every completion request."""

    def __init__(self):
        self.calls = []
        self.parts = ["Hello", ", ", "world"]
        self.usage = {"prompt_tokens": 11, "completion_tokens": 3, "total_tokens": 14}
        self.fail_after = None
        self.fail_with = None
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        return FakeStream(self.parts, self.usage, self.fail_after, self.fail_with)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        jwt_secret="test-secret",
        environment="test",
        superadmin_username=SUPERADMIN[0],
        superadmin_password=SUPERADMIN[1],
        log_level="WARNING",
    )


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def app(settings, llm):
    return create_app(settings, llm_client=llm)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db_session(client):
    session = client.app.state.db.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db_session):
    def _make(role=Role.USER, password=PASSWORD, **fields):
        user = User(
            username=fields.pop("username", f"user_{uuid.uuid4().hex[:8]}"),
            display_name=fields.pop("display_name", "Test User"),
            role=role,
            hashed_password=get_password_hash(password),
            must_change_password=False,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make


def login(client, username, password=PASSWORD):
    r = client.post("/api/auth/login", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return r


def login_as(client, user, password=PASSWORD):
    return login(client, user.username, password)


def login_superadmin(client):
    return login(client, *SUPERADMIN)
