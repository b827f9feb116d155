import sys
from pathlib import Path
from typing import Callable, List, Optional, Union

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from inkwell import create_app
from inkwell.config import TestConfig
from inkwell.extensions import db
from inkwell.models import User
from inkwell.services.llm_gateway import LLMGateway, load_prompt_config
from inkwell.services.manuscript import create_project

Reply = Union[str, Exception, Callable[[str], str]]


class FakeTextClient:
    """Stands in for a hosted model: replies with ``reply`` and records every prompt."""

    def __init__(self, reply: Optional[Reply] = "") -> None:
        self.reply = reply
        self.calls: List[dict] = []

    def generate_response(self, prompt: str, **kwargs: object) -> str:
        self.calls.append({"prompt": prompt, **kwargs})
        reply = self.reply
        if isinstance(reply, list):
            reply = reply.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply or ""


@pytest.fixture
def fake_client():
    return FakeTextClient()


@pytest.fixture
def app_instance(fake_client):
    gateway = LLMGateway(fake_client, load_prompt_config(TestConfig.PROMPT_CONFIG_PATH))
    app = create_app(TestConfig, gateway=gateway)
    app.config["WTF_CSRF_ENABLED"] = False
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


def make_user(username: str = "writer", password: str = "password123") -> User:
    user = User(username=username, display_name=username.title())
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def user(app_instance):
    return make_user()


@pytest.fixture
def project(app_instance, user):
    return create_project(user, "Demo Project", "Desc")


@pytest.fixture
def logged_in(client, user):
    response = client.post("/auth/login", json={"username": user.username, "password": "password123"})
    assert response.status_code == 200
    return client
