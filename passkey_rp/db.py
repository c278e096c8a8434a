import json
import sqlite3
from contextlib import contextmanager
from typing import Optional

# Filename of the SQLite database; sqlite3.connect creates it if missing.
# init_db() may point it elsewhere (tests use a tmp_path file).
DB_FILE = "users.db"

USER_COLS = ["id", "username", "display_name", "hash"]
CREDENTIAL_COLS = ["credential_id", "user_id", "public_key", "sign_count",
                   "transports", "registered_at", "last_used_at"]


def get_connection():
    conn = sqlite3.connect(DB_FILE)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def connection():
    """Connection that commits on success and is always closed."""
    conn = get_connection()
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_db(db_file: Optional[str] = None):
    global DB_FILE
    if db_file:
        DB_FILE = db_file

    with connection() as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT UNIQUE NOT NULL,
                display_name TEXT,
                hash TEXT NOT NULL
            )
        """)

        # credential_id is the primary key: ids are unique across all users.
        conn.execute("""
            CREATE TABLE IF NOT EXISTS webauthn_credentials(
                credential_id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                public_key TEXT NOT NULL,
                sign_count INTEGER NOT NULL DEFAULT 0,
                transports TEXT NOT NULL DEFAULT '[]',
                registered_at INTEGER NOT NULL,
                last_used_at INTEGER,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)


def query_one(sql: str, params: tuple = ()):
    """Execute a query and return a single row (or None)."""
    with connection() as conn:
        return conn.execute(sql, params).fetchone()


def query_all(sql: str, params: tuple = ()):
    """Execute a query and return all rows as a list of tuples."""
    with connection() as conn:
        return conn.execute(sql, params).fetchall()


def exec_sql(sql: str, params: tuple = ()) -> int:
    """Execute a write statement, commit, and return the affected row count."""
    with connection() as conn:
        return conn.execute(sql, params).rowcount


# Users

def create_user(username: str, password_hash: str, display_name: Optional[str] = None) -> int:
    """Insert a user; raises sqlite3.IntegrityError when the username is taken."""
    with connection() as conn:
        cur = conn.execute("INSERT INTO users (username, display_name, hash) VALUES (?, ?, ?)",
                           (username, display_name or username, password_hash))
        return cur.lastrowid


def _user_row(row) -> Optional[dict]:
    return dict(zip(USER_COLS, row)) if row else None


def get_user_by_username(username: str) -> Optional[dict]:
    return _user_row(query_one("SELECT id, username, display_name, hash FROM users WHERE username=?",
                               (username,)))


def get_user_by_id(user_id: int) -> Optional[dict]:
    return _user_row(query_one("SELECT id, username, display_name, hash FROM users WHERE id=?",
                               (user_id,)))


# WebAuthn helpers

_SELECT_CREDENTIAL = "SELECT " + ", ".join(CREDENTIAL_COLS) + " FROM webauthn_credentials"


def _credential_row(row) -> dict:
    d = dict(zip(CREDENTIAL_COLS, row))
    d["transports"] = json.loads(d["transports"] or "[]")
    return d


def webauthn_list_credentials(user_id: int) -> list[dict]:
    """Return the user's credentials in registration order."""
    rows = query_all(_SELECT_CREDENTIAL + " WHERE user_id=? ORDER BY registered_at, rowid",
                     (user_id,))
    return [_credential_row(r) for r in rows]


def webauthn_get_credential(credential_id: str) -> Optional[dict]:
    """Look a credential up by id, whoever owns it."""
    row = query_one(_SELECT_CREDENTIAL + " WHERE credential_id=?", (credential_id,))
    return _credential_row(row) if row else None


def webauthn_save_credential(record: dict) -> None:
    """Insert a credential; raises sqlite3.IntegrityError if the id exists."""
    exec_sql("""INSERT INTO webauthn_credentials(credential_id, user_id, public_key, sign_count,
                                                 transports, registered_at, last_used_at)
                VALUES(?,?,?,?,?,?,?)""", _credential_params(record))


def webauthn_save_credential_if_absent(record: dict) -> bool:
    """Insert unless the id is already stored. Returns True if a row was written."""
    return exec_sql("""INSERT OR IGNORE INTO webauthn_credentials(credential_id, user_id, public_key,
                                                                  sign_count, transports,
                                                                  registered_at, last_used_at)
                       VALUES(?,?,?,?,?,?,?)""", _credential_params(record)) == 1


def _credential_params(record: dict) -> tuple:
    return (record["credential_id"], record["user_id"], record["public_key"],
            record["sign_count"], json.dumps(list(record["transports"])),
            record["registered_at"], record.get("last_used_at"))


def webauthn_update_usage(credential_id: str, sign_count: int, last_used_at: int) -> None:
    """Record the counter and time of a successful authentication."""
    exec_sql("UPDATE webauthn_credentials SET sign_count=?, last_used_at=? WHERE credential_id=?",
             (sign_count, last_used_at, credential_id))


def webauthn_delete_credential(user_id: int, credential_id: str) -> int:
    return exec_sql("DELETE FROM webauthn_credentials WHERE user_id=? AND credential_id=?",
                    (user_id, credential_id))
