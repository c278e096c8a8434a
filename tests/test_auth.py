# tests/test_auth.py
import uuid

import pytest

from passkey_rp.crypto_utils import hash_password, verify_password


@pytest.mark.parametrize("algo", ["argon2", "bcrypt"])
def test_hash_and_verify(algo):
    stored = hash_password("secret123", algo)
    assert verify_password(stored, "secret123")
    assert not verify_password(stored, "wrongpassword")


def test_unsupported_algorithm():
    with pytest.raises(ValueError):
        hash_password("secret123", "md5")


def test_register_and_login(client):
    # Use a unique username to avoid collisions
    username = "alice_" + uuid.uuid4().hex
    password = "secret123"

    resp = client.post("/auth/register", json={"username": username, "password": password})
    assert resp.status_code == 201
    assert resp.get_json()["status"] == "registered"

    resp = client.post("/auth/register", json={"username": username, "password": password})
    assert resp.status_code == 400

    resp = client.post("/auth/login", json={"username": username, "password": "wrongpassword"})
    assert resp.status_code == 401
    assert "error" in resp.get_json()

    resp = client.post("/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200
    with client.session_transaction() as sess:
        assert sess["user_id"] == 1


def test_register_requires_username_and_password(client):
    assert client.post("/auth/register", json={"username": "x"}).status_code == 400
    assert client.post("/auth/register", json={"username": "x", "password": "y",
                                               "algo": "sha256"}).status_code == 400


def test_logout_ends_the_session(client):
    client.post("/auth/register", json={"username": "frank", "password": "pw"})
    client.post("/auth/login", json={"username": "frank", "password": "pw"})
    client.post("/auth/logout")
    resp = client.post("/webauthn/getCredentials", json={},
                       headers={"X-Requested-With": "XMLHttpRequest"})
    assert resp.status_code == 401
