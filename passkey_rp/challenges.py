"""Single-slot challenge storage bound to the client's session.

The backing mapping is the caller's session (Flask ``session`` in the app),
so every client owns exactly one slot. Issuing overwrites the slot; expiry is
recorded but never enforced here.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import MutableMapping, Optional

SESSION_KEY = "webauthn_challenge"
CHALLENGE_TTL = 60 * 5                      # seconds


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ChallengeSession:
    challenge: str
    expires_at: int                         # epoch ms
    user_verification: Optional[str] = None

    def is_expired(self, at: Optional[int] = None) -> bool:
        return (now_ms() if at is None else at) > self.expires_at


class ChallengeStore:
    def __init__(self, backend: MutableMapping, key: str = SESSION_KEY):
        self.backend = backend
        self.key = key

    def issue(self, challenge: str, ttl: int = CHALLENGE_TTL,
              user_verification: Optional[str] = None) -> ChallengeSession:
        entry = ChallengeSession(challenge, now_ms() + ttl * 1000, user_verification)
        self.backend[self.key] = {
            "challenge": entry.challenge,
            "expires_at": entry.expires_at,
            "user_verification": entry.user_verification,
        }
        return entry

    def get(self) -> Optional[ChallengeSession]:
        raw = self.backend.get(self.key)
        if not raw or not raw.get("challenge"):
            return None
        return ChallengeSession(raw["challenge"], int(raw.get("expires_at") or 0),
                                raw.get("user_verification"))

    def clear(self) -> None:
        self.backend.pop(self.key, None)
