import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest

from app import app as flask_app
from models import db
from storage import storage

PASSWORD = "secret-pw"


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
    yield flask_app


@pytest.fixture
def ctx(app):
    """An app context for tests that talk to storage directly."""
    with app.app_context():
        yield
        db.session.remove()


def make_user(username="alice", email=None):
    return storage.create_user({
        "username": username,
        "email": email or f"{username}@example.com",
        "password": PASSWORD,
        "first_name": username.capitalize(),
        "last_name": "Tester",
    })


@pytest.fixture
def user(ctx):
    return make_user()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user_id(app):
    with app.app_context():
        return make_user().id


@pytest.fixture
def auth_client(client, user_id):
    resp = client.post("/login", data={"username": "alice", "password": PASSWORD})
    assert resp.status_code == 302
    return client
