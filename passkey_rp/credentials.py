"""Stored authenticator credentials and the repository over the sqlite tables."""
from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from . import db as DB
from .errors import CredentialExists


@dataclass(frozen=True)
class Credential:
    credential_id: str                      # base64url, no padding
    owner_user_id: int
    public_key: str                         # base64url CBOR COSE key
    signature_counter: int
    registered_at: int
    transports: List[str] = field(default_factory=list)
    last_used_at: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict) -> "Credential":
        return cls(
            credential_id=row["credential_id"],
            owner_user_id=row["user_id"],
            public_key=row["public_key"],
            signature_counter=row["sign_count"],
            registered_at=row["registered_at"],
            transports=list(row["transports"]),
            last_used_at=row["last_used_at"],
        )

    def to_row(self) -> dict:
        return {
            "credential_id": self.credential_id,
            "user_id": self.owner_user_id,
            "public_key": self.public_key,
            "sign_count": self.signature_counter,
            "transports": self.transports,
            "registered_at": self.registered_at,
            "last_used_at": self.last_used_at,
        }

    def to_json(self) -> dict:
        return asdict(self)


class CredentialRepository:
    def list_by_user(self, user_id: int) -> List[Credential]:
        return [Credential.from_row(r) for r in DB.webauthn_list_credentials(user_id)]

    def find_by_credential_id(self, credential_id: str) -> Optional[Credential]:
        row = DB.webauthn_get_credential(credential_id)
        return Credential.from_row(row) if row else None

    def store(self, credential: Credential) -> None:
        try:
            DB.webauthn_save_credential(credential.to_row())
        except sqlite3.IntegrityError as e:
            raise CredentialExists(credential.credential_id) from e

    def insert_if_absent(self, credential: Credential) -> bool:
        return DB.webauthn_save_credential_if_absent(credential.to_row())

    def update_usage(self, credential_id: str, counter: int, last_used_at: int) -> None:
        DB.webauthn_update_usage(credential_id, counter, last_used_at)

    def remove(self, credential_id: str, owner_user_id: int) -> None:
        # Unknown ids are not an error.
        DB.webauthn_delete_credential(owner_user_id, credential_id)
