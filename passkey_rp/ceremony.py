"""
WebAuthn ceremony orchestration.

Sequences the four ceremony steps (registration begin/finish, authentication
begin/finish) against three collaborators: the per-session ChallengeStore,
the CredentialRepository and a verifier (Fido2Verifier in the app).

Rules kept here rather than in the verifier:

* a begin-step always replaces the session's challenge;
* a finish-step never reaches the verifier without a live challenge, and
  always consumes the challenge, whatever the outcome;
* authentication is only attempted against the signed-in user's own
  credentials;
* registering an already stored credential id is a silent no-op.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .challenges import CHALLENGE_TTL, ChallengeStore, now_ms
from .config import RelyingPartyConfig
from .credentials import Credential, CredentialRepository
from .errors import InvalidRequest, ProtocolViolation, Unauthorized, VerificationFailed
from .verifier import CredentialDescriptor, StoredAuthenticator

logger = logging.getLogger(__name__)

ATTESTATION_PREFERENCES = (
    AttestationConveyancePreference.NONE,
    AttestationConveyancePreference.INDIRECT,
    AttestationConveyancePreference.DIRECT,
)


@dataclass(frozen=True)
class User:
    user_id: int
    username: str
    display_name: Optional[str] = None

    def entity(self) -> PublicKeyCredentialUserEntity:
        return PublicKeyCredentialUserEntity(
            name=self.username or "Unnamed User",
            id=str(self.user_id).encode("utf-8"),
            display_name=self.display_name or self.username or "Unnamed User",
        )


def _enum(enum_type, value, field_name, allowed=None):
    if value is None:
        return None
    try:
        member = enum_type(value)
    except ValueError:
        member = None
    if member is None or (allowed is not None and member not in allowed):
        raise InvalidRequest(f"Unsupported {field_name}: {value!r}")
    return member


@dataclass(frozen=True)
class CreationPreferences:
    """Client-requested options for registration-begin.

    Unrecognized values are rejected rather than dropped, so a caller never
    ends up with a weaker policy than the one it asked for.
    """

    authenticator_attachment: Optional[AuthenticatorAttachment] = None
    resident_key: Optional[ResidentKeyRequirement] = None
    user_verification: Optional[UserVerificationRequirement] = None
    attestation: AttestationConveyancePreference = AttestationConveyancePreference.NONE
    extensions: Optional[Mapping[str, Any]] = None
    exclude_credentials: bool = False

    @classmethod
    def from_json(cls, data: Optional[Mapping[str, Any]]) -> "CreationPreferences":
        data = data or {}
        if not isinstance(data, Mapping):
            raise InvalidRequest("Creation options must be a JSON object.")
        selection = data.get("authenticatorSelection") or {}
        if not isinstance(selection, Mapping):
            raise InvalidRequest("authenticatorSelection must be a JSON object.")
        extensions = data.get("extensions")
        if extensions is not None and not isinstance(extensions, Mapping):
            raise InvalidRequest("extensions must be a JSON object.")

        return cls(
            authenticator_attachment=_enum(AuthenticatorAttachment,
                                           selection.get("authenticatorAttachment"),
                                           "authenticatorAttachment"),
            resident_key=_enum(ResidentKeyRequirement, selection.get("residentKey"),
                               "residentKey"),
            user_verification=_enum(UserVerificationRequirement,
                                    selection.get("userVerification"), "userVerification"),
            attestation=_enum(AttestationConveyancePreference, data.get("attestation"),
                              "attestation", ATTESTATION_PREFERENCES)
            or AttestationConveyancePreference.NONE,
            extensions=dict(extensions) if extensions else None,
            exclude_credentials=bool(data.get("excludeCredentials")),
        )


@dataclass(frozen=True)
class RequestPreferences:
    """Client-requested options for authentication-begin."""

    credential_id: Optional[str] = None
    empty_allow_credentials: bool = False
    user_verification: UserVerificationRequirement = UserVerificationRequirement.PREFERRED

    @classmethod
    def from_json(cls, data: Optional[Mapping[str, Any]],
                  credential_id: Optional[str] = None) -> "RequestPreferences":
        data = data or {}
        if not isinstance(data, Mapping):
            raise InvalidRequest("Request options must be a JSON object.")
        return cls(
            credential_id=credential_id or data.get("credId") or data.get("credential_id"),
            empty_allow_credentials=bool(data.get("emptyAllowCredentials")),
            user_verification=_enum(UserVerificationRequirement, data.get("userVerification"),
                                    "userVerification")
            or UserVerificationRequirement.PREFERRED,
        )


def _transports(credential: Mapping[str, Any]) -> list:
    response = credential.get("response")
    transports = None
    if isinstance(response, Mapping):
        transports = response.get("transports")
    if transports is None:
        transports = credential.get("transports")
    return [t for t in (transports or []) if isinstance(t, str)]


class CeremonyOrchestrator:
    def __init__(self, config: RelyingPartyConfig, repository: CredentialRepository, verifier):
        self.config = config
        self.repository = repository
        self.verifier = verifier

    @staticmethod
    def _require_user(user: Optional[User]) -> User:
        if user is None:
            raise Unauthorized("Unauthorized.")
        return user

    @staticmethod
    def _require_challenge(challenges: ChallengeStore):
        entry = challenges.get()
        if entry is None:
            raise ProtocolViolation("No challenge found.")
        if entry.is_expired():
            raise ProtocolViolation("Challenge expired.")
        return entry

    # Credential management

    def list_credentials(self, user: Optional[User]) -> list[Credential]:
        user = self._require_user(user)
        return self.repository.list_by_user(user.user_id)

    def remove_credential(self, user: Optional[User], credential_id: Optional[str]) -> None:
        user = self._require_user(user)
        if not credential_id:
            raise InvalidRequest("credId is required.")
        self.repository.remove(credential_id, user.user_id)
        logger.info("Removed credential %s for user %s", credential_id, user.user_id)

    # Registration

    def register_begin(self, user: Optional[User], prefs: CreationPreferences,
                       challenges: ChallengeStore) -> dict:
        user = self._require_user(user)
        rp_id = self.config.require_rp_id()

        exclude = []
        if prefs.exclude_credentials:
            exclude = [
                CredentialDescriptor(websafe_decode(c.credential_id), tuple(c.transports))
                for c in self.repository.list_by_user(user.user_id)
            ]

        options, challenge = self.verifier.build_registration_options(
            rp_id,
            user.entity(),
            exclude_credentials=exclude,
            authenticator_attachment=prefs.authenticator_attachment,
            resident_key=prefs.resident_key,
            user_verification=prefs.user_verification,
            attestation=prefs.attestation,
            extensions=prefs.extensions,
        )
        uv = prefs.user_verification.value if prefs.user_verification else None
        challenges.issue(challenge, CHALLENGE_TTL, uv)
        return options

    def register_finish(self, user: Optional[User], credential: Mapping[str, Any],
                        challenges: ChallengeStore, user_agent: Optional[str] = None) -> Mapping:
        try:
            user = self._require_user(user)
            entry = self._require_challenge(challenges)
            rp_id = self.config.require_rp_id()
            origin = self.config.expected_origin(user_agent)
            if not isinstance(credential, Mapping):
                raise InvalidRequest("Credential must be a JSON object.")

            result = self.verifier.verify_registration(
                credential, entry.challenge, origin, rp_id, entry.user_verification)
            if not result.verified or not result.credential_id:
                raise VerificationFailed("User verification failed.")

            record = Credential(
                credential_id=websafe_encode(result.credential_id),
                owner_user_id=user.user_id,
                public_key=websafe_encode(result.public_key),
                signature_counter=result.counter,
                registered_at=now_ms(),
                transports=_transports(credential),
            )
            if self.repository.insert_if_absent(record):
                logger.info("Registered credential %s for user %s",
                            record.credential_id, user.user_id)
            else:
                logger.info("Credential %s already registered, not stored again",
                            record.credential_id)
            return credential
        finally:
            challenges.clear()

    # Authentication

    def authenticate_begin(self, user: Optional[User], prefs: RequestPreferences,
                           challenges: ChallengeStore) -> dict:
        user = self._require_user(user)
        rp_id = self.config.require_rp_id()

        allow = []
        if not prefs.empty_allow_credentials:
            allow = [
                CredentialDescriptor(websafe_decode(c.credential_id), tuple(c.transports))
                for c in self.repository.list_by_user(user.user_id)
                if not prefs.credential_id or c.credential_id == prefs.credential_id
            ]

        options, challenge = self.verifier.build_authentication_options(
            rp_id,
            allow_credentials=allow,
            user_verification=prefs.user_verification,
        )
        challenges.issue(challenge, CHALLENGE_TTL, prefs.user_verification.value)
        return options

    def authenticate_finish(self, user: Optional[User], assertion: Mapping[str, Any],
                            challenges: ChallengeStore,
                            user_agent: Optional[str] = None) -> Credential:
        try:
            user = self._require_user(user)
            entry = self._require_challenge(challenges)
            rp_id = self.config.require_rp_id()
            origin = self.config.expected_origin(user_agent)
            if not isinstance(assertion, Mapping):
                raise InvalidRequest("Credential must be a JSON object.")

            # Only the signed-in user's credentials are eligible.
            claimed_id = assertion.get("id")
            stored = next((c for c in self.repository.list_by_user(user.user_id)
                           if c.credential_id == claimed_id), None)
            if stored is None:
                raise ProtocolViolation("Authenticating credential not found.")

            authenticator = StoredAuthenticator(
                public_key=websafe_decode(stored.public_key),
                credential_id=websafe_decode(stored.credential_id),
                counter=stored.signature_counter,
                transports=tuple(stored.transports),
            )
            result = self.verifier.verify_authentication(
                assertion, entry.challenge, origin, rp_id, authenticator,
                entry.user_verification)
            if not result.verified:
                raise VerificationFailed("User verification failed.")

            updated = replace(stored, signature_counter=result.new_counter,
                              last_used_at=now_ms())
            self.repository.update_usage(updated.credential_id, updated.signature_counter,
                                         updated.last_used_at)
            logger.info("User %s authenticated with credential %s",
                        user.user_id, updated.credential_id)
            return updated
        finally:
            challenges.clear()
