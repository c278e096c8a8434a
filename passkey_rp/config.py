"""Relying party configuration, read once at process start."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv
from fido2.utils import websafe_encode

from .errors import ConfigurationError

load_dotenv()                               # load .env in os.environ

WEBAUTHN_TIMEOUT = 1000 * 60 * 5            # 5 minutes, in milliseconds
DEFAULT_NATIVE_APP_USER_AGENT = "okhttp"


def android_origin(cert_hash: str) -> str:
    """Build the origin an Android app presents from its signing cert SHA-256.

    ``cert_hash`` is colon separated hex, as printed by ``keytool``.
    """
    try:
        raw = bytes.fromhex(cert_hash.replace(":", "").strip())
    except ValueError:
        raise ConfigurationError("ANDROID_SHA256HASH is not a valid hex fingerprint.")
    return "android:apk-key-hash:" + websafe_encode(raw)


@dataclass(frozen=True)
class RelyingPartyConfig:
    rp_name: str = "WebAuthn"
    rp_id: Optional[str] = None
    origin: Optional[str] = None
    android_cert_hash: Optional[str] = None
    native_app_user_agent: str = DEFAULT_NATIVE_APP_USER_AGENT
    timeout: int = WEBAUTHN_TIMEOUT

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> "RelyingPartyConfig":
        """Build from ``os.environ`` style keys; blank values count as unset."""

        def _get(key):
            value = values.get(key)
            if isinstance(value, str):
                value = value.strip()
            return value or None

        user_agent = values.get("NATIVE_APP_USER_AGENT")
        if user_agent is None:
            user_agent = DEFAULT_NATIVE_APP_USER_AGENT
        return cls(
            rp_name=_get("PROJECT_NAME") or "WebAuthn",
            rp_id=_get("HOSTNAME"),
            origin=_get("ORIGIN"),
            android_cert_hash=_get("ANDROID_SHA256HASH"),
            native_app_user_agent=str(user_agent).strip(),
        )

    @classmethod
    def from_env(cls) -> "RelyingPartyConfig":
        return cls.from_mapping(os.environ)

    def require_rp_id(self) -> str:
        if not self.rp_id:
            raise ConfigurationError("HOSTNAME not configured as an environment variable.")
        return self.rp_id

    def require_origin(self) -> str:
        if not self.origin:
            raise ConfigurationError("ORIGIN not configured as an environment variable.")
        return self.origin

    def is_native_app(self, user_agent: Optional[str]) -> bool:
        return bool(self.native_app_user_agent and user_agent
                    and self.native_app_user_agent in user_agent)

    def expected_origin(self, user_agent: Optional[str] = None) -> str:
        """Origin a finish-step must carry for a client with ``user_agent``.

        Clients matching the native app policy are bound to the APK signing
        certificate instead of the web origin.
        """
        if self.is_native_app(user_agent):
            if not self.android_cert_hash:
                raise ConfigurationError(
                    "ANDROID_SHA256HASH not configured as an environment variable.")
            return android_origin(self.android_cert_hash)
        return self.require_origin()
