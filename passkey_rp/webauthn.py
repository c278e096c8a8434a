"""
Blueprint exposing the WebAuthn relying party API. All routes are POST,
take and return JSON, and need a signed-in session:

POST /webauthn/getCredentials   -> the user's credentials
POST /webauthn/removeCredential -> remove one credential ({credId})
POST /webauthn/registerRequest  -> begin registration (creation options)
POST /webauthn/registerResponse -> finish registration (stores the credential)
POST /webauthn/authRequest      -> begin authentication (request options)
POST /webauthn/authResponse     -> finish authentication (updated credential)

Requests must also carry ``X-Requested-With: XMLHttpRequest``.
"""
from functools import wraps

from flask import Blueprint, current_app, g, jsonify, request, session

from . import db as DB
from .ceremony import CreationPreferences, RequestPreferences, User
from .challenges import ChallengeStore
from .errors import WebAuthnError

webauthn_bp = Blueprint("webauthn", __name__, url_prefix="/webauthn")


def _orchestrator():
    return current_app.extensions["passkey_rp"]


def _challenges() -> ChallengeStore:
    return ChallengeStore(session)


def current_user():
    """The signed-in user, or None."""
    user_id = session.get("user_id")
    if user_id is None:
        return None
    row = DB.get_user_by_id(user_id)
    if not row:
        return None
    return User(user_id=row["id"], username=row["username"], display_name=row["display_name"])


def authz(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        g.user = current_user()
        if g.user is None:
            return jsonify(status=False, error="Unauthorized"), 401
        return fn(*args, **kwargs)
    return wrapper


@webauthn_bp.before_request
def csrf_check():
    if request.headers.get("X-Requested-With") != "XMLHttpRequest":
        return jsonify(error="invalid access."), 400


@webauthn_bp.errorhandler(WebAuthnError)
def handle_webauthn_error(e):
    current_app.logger.info("%s %s failed: %s", request.method, request.path, e.message)
    return jsonify(status=False, error=e.message), e.status_code


def _body():
    return request.get_json(force=True, silent=True)


@webauthn_bp.post("/getCredentials")
@authz
def get_credentials():
    credentials = _orchestrator().list_credentials(g.user)
    return jsonify([c.to_json() for c in credentials])


@webauthn_bp.post("/removeCredential")
@authz
def remove_credential():
    data = _body()
    if not isinstance(data, dict):
        data = {}
    cred_id = request.args.get("credId") or data.get("credId") or data.get("credential_id")
    _orchestrator().remove_credential(g.user, cred_id)
    return jsonify(status=True)


@webauthn_bp.post("/registerRequest")
@authz
def register_request():
    prefs = CreationPreferences.from_json(_body())
    options = _orchestrator().register_begin(g.user, prefs, _challenges())
    return jsonify(options)


@webauthn_bp.post("/registerResponse")
@authz
def register_response():
    credential = _body()
    result = _orchestrator().register_finish(
        g.user, credential, _challenges(), request.headers.get("User-Agent"))
    return jsonify(result)


@webauthn_bp.post("/authRequest")
@authz
def auth_request():
    prefs = RequestPreferences.from_json(_body(), credential_id=request.args.get("credId"))
    options = _orchestrator().authenticate_begin(g.user, prefs, _challenges())
    return jsonify(options)


@webauthn_bp.post("/authResponse")
@authz
def auth_response():
    assertion = _body()
    credential = _orchestrator().authenticate_finish(
        g.user, assertion, _challenges(), request.headers.get("User-Agent"))
    return jsonify(credential.to_json())

