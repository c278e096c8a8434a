import logging
import os
import sqlite3

from flask import Blueprint, Flask, jsonify, request, session

from . import db
from .ceremony import CeremonyOrchestrator
from .config import RelyingPartyConfig
from .credentials import CredentialRepository
from .crypto_utils import SUPPORTED_ALGORITHMS, hash_password, verify_password
from .verifier import Fido2Verifier
from .webauthn import webauthn_bp

# Minimal session sign-in; the WebAuthn routes only need session["user_id"].
auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password")
    algo = data.get("algo", "argon2")

    if not username or not password:
        return jsonify({"error": "Missing username or password"}), 400
    if algo not in SUPPORTED_ALGORITHMS:
        return jsonify({"error": "Unsupported algorithm"}), 400

    try:
        user_id = db.create_user(username, hash_password(password, algo), data.get("displayName"))
    except sqlite3.IntegrityError:
        return jsonify({"error": "username already exists"}), 400
    return jsonify({"status": "registered", "user_id": user_id}), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    user = db.get_user_by_username((data.get("username") or "").strip())

    if user and verify_password(user["hash"], data.get("password") or ""):
        session.clear()
        session["user_id"] = user["id"]
        return jsonify({"status": "ok"}), 200
    return jsonify({"error": "invalid credentials"}), 401


@auth_bp.post("/logout")
def logout():
    session.clear()
    return jsonify({"status": "ok"})


def create_app(settings=None, rp_config=None):
    """Build the Flask app.

    ``settings`` overrides Flask config keys (``DATABASE``, ``SECRET_KEY``, ...).
    ``rp_config`` defaults to :meth:`RelyingPartyConfig.from_env`.
    """
    app = Flask(__name__)
    app.config.update(
        SECRET_KEY=os.environ.get("SECRET_KEY") or os.urandom(32),
        DATABASE=os.environ.get("DATABASE", db.DB_FILE),
        LOG_LEVEL=os.environ.get("LOG_LEVEL", "INFO"),
    )
    app.config.update(settings or {})
    app.logger.setLevel(app.config["LOG_LEVEL"])
    logging.getLogger("passkey_rp").setLevel(app.config["LOG_LEVEL"])

    rp_config = rp_config or RelyingPartyConfig.from_env()
    db.init_db(app.config["DATABASE"])
    app.extensions["passkey_rp"] = CeremonyOrchestrator(
        rp_config, CredentialRepository(), Fido2Verifier(rp_config.rp_name, rp_config.timeout))

    app.register_blueprint(auth_bp)
    app.register_blueprint(webauthn_bp)
    return app


if __name__ == "__main__":
    create_app().run(debug=True)
