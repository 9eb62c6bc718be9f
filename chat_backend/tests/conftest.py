# chat_backend/tests/conftest.py
# Each test gets a fresh app on its own SQLite file and a fake OpenAI client.

import pytest

from chat_backend import create_app, shutdown_app
from chat_backend.config import db
from chat_backend.services.openai_client import InferenceClient

from .fakes import fake_client, make_response, output_message


@pytest.fixture
def openai_fake():
    client = fake_client()
    client.responses.result = make_response(output_message("Hi there"))
    yield client
    client.responses.release.set()  # unblock any abandoned worker


@pytest.fixture
def app(tmp_path, openai_fake):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
            "AUTO_CREATE_TABLES": True,
            "RATELIMIT_ENABLED": False,
            "BCRYPT_LOG_ROUNDS": 4,
        },
        inference_client=InferenceClient(openai_fake, model="gpt-test", timeout=5.0),
    )
    yield app
    with app.app_context():
        db.session.remove()
    shutdown_app(app)


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c


@pytest.fixture
def store(app):
    with app.app_context():
        yield app.extensions["chat_store"]
