import pytest

from passkey_rp.api import create_app
from passkey_rp.config import RelyingPartyConfig

ORIGIN = "https://localhost"
ANDROID_HASH = ":".join(["AB"] * 32)
XHR = {"X-Requested-With": "XMLHttpRequest"}

RP_CONFIG = RelyingPartyConfig(
    rp_name="Test RP",
    rp_id="localhost",
    origin=ORIGIN,
    android_cert_hash=ANDROID_HASH,
)


def signup(client, username, password="secret123"):
    """Create an account and sign the client in."""
    resp = client.post("/auth/register", json={"username": username, "password": password})
    assert resp.status_code == 201
    resp = client.post("/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200


def post(client, path, body=None, **kwargs):
    headers = dict(XHR)
    headers.update(kwargs.pop("headers", {}))
    return client.post(path, json=body if body is not None else {}, headers=headers, **kwargs)


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {"TESTING": True, "DATABASE": str(tmp_path / "users.db"), "SECRET_KEY": "test"},
        rp_config=RP_CONFIG,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def alice(client):
    signup(client, "alice")
    return client
