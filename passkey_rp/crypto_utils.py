"""Password hashing for the session sign-in that fronts the WebAuthn routes."""
import json
import os

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

# Load PEPPER from environment (defined in .env or system)
PEPPER = os.getenv("PEPPER", "")

SUPPORTED_ALGORITHMS = ("argon2", "bcrypt")

_hasher = PasswordHasher()


def hash_password(password: str, algorithm: str = "argon2", pepper=None) -> str:
    """Hash ``password`` and return a JSON record naming the algorithm."""
    algorithm = algorithm.lower()
    password_bytes = (password + (pepper or PEPPER)).encode("utf-8")

    if algorithm == "argon2":
        h = _hasher.hash(password_bytes)
    elif algorithm == "bcrypt":
        h = bcrypt.hashpw(password_bytes, bcrypt.gensalt()).decode()
    else:
        raise ValueError("Unsupported algorithm")

    return json.dumps({"algo": algorithm, "hash": h})


def verify_password(stored_json: str, password: str, pepper=None) -> bool:
    data = json.loads(stored_json)
    stored_hash = data["hash"]
    password_bytes = (password + (pepper or PEPPER)).encode("utf-8")

    if data["algo"] == "argon2":
        try:
            return _hasher.verify(stored_hash, password_bytes)
        except (VerificationError, InvalidHashError):
            return False
    if data["algo"] == "bcrypt":
        return bcrypt.checkpw(password_bytes, stored_hash.encode())
    return False
