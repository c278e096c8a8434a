"""
python-fido2 backed verifier.

All cryptographic work (challenge generation, attestation and assertion
parsing, COSE keys, signature checks, origin and RP id binding) is done by
``fido2.server.Fido2Server``. This module only shapes its inputs and outputs:

* options are returned in the WebAuthn JSON mapping (binary as base64url);
* library rejections (``ValueError``) become ``verified=False`` results;
* the signature counter rule is applied on top of the library's checks.

A new ``Fido2Server`` is built for each call so that the expected origin and
RP id can differ per request.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple

import fido2.features
from fido2 import cbor
from fido2.cose import ES256, RS256, CoseKey
from fido2.server import Fido2Server
from fido2.utils import websafe_encode
from fido2.webauthn import (
    Aaguid,
    AttestationConveyancePreference,
    AttestedCredentialData,
    AuthenticationResponse,
    AuthenticatorAttachment,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialParameters,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .config import WEBAUTHN_TIMEOUT

fido2.features.webauthn_json_mapping.enabled = True

logger = logging.getLogger(__name__)

# ES256 and RS256 only.
SUPPORTED_ALGORITHMS = (ES256.ALGORITHM, RS256.ALGORITHM)

_KNOWN_TRANSPORTS = {t.value for t in AuthenticatorTransport}


@dataclass(frozen=True)
class CredentialDescriptor:
    credential_id: bytes
    transports: Sequence[str] = ()


@dataclass(frozen=True)
class StoredAuthenticator:
    public_key: bytes                       # CBOR encoded COSE key
    credential_id: bytes
    counter: int
    transports: Sequence[str] = ()


@dataclass(frozen=True)
class RegistrationResult:
    verified: bool
    public_key: Optional[bytes] = None
    credential_id: Optional[bytes] = None
    counter: int = 0
    reason: Optional[str] = None


@dataclass(frozen=True)
class AuthenticationResult:
    verified: bool
    new_counter: int = 0
    reason: Optional[str] = None


def _descriptor(desc: CredentialDescriptor) -> PublicKeyCredentialDescriptor:
    transports = [AuthenticatorTransport(t) for t in desc.transports if t in _KNOWN_TRANSPORTS]
    return PublicKeyCredentialDescriptor(
        type=PublicKeyCredentialType.PUBLIC_KEY,
        id=desc.credential_id,
        transports=transports or None,
    )


def _jsonable(value: Any) -> Any:
    """Plain JSON types for a fido2 options object (nested Mappings, bytes)."""
    if isinstance(value, Mapping):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return websafe_encode(bytes(value))
    return value


def _state(challenge: str, user_verification: Optional[str]) -> dict:
    return {
        "challenge": challenge,
        "user_verification": UserVerificationRequirement(user_verification)
        if user_verification else None,
    }


class Fido2Verifier:
    def __init__(self, rp_name: str, timeout: int = WEBAUTHN_TIMEOUT,
                 algorithms: Sequence[int] = SUPPORTED_ALGORITHMS):
        self.rp_name = rp_name
        self.timeout = timeout
        self.algorithms = tuple(algorithms)

    def _server(self, rp_id: str, origin: Optional[str] = None,
                attestation: Optional[AttestationConveyancePreference] = None) -> Fido2Server:
        rp = PublicKeyCredentialRpEntity(name=self.rp_name, id=rp_id)
        verify_origin = (lambda o: o == origin) if origin is not None else None
        server = Fido2Server(rp, attestation=attestation, verify_origin=verify_origin)
        server.timeout = self.timeout
        server.allowed_algorithms = [
            PublicKeyCredentialParameters(type=PublicKeyCredentialType.PUBLIC_KEY, alg=alg)
            for alg in self.algorithms
        ]
        return server

    # Registration

    def build_registration_options(
        self,
        rp_id: str,
        user: PublicKeyCredentialUserEntity,
        exclude_credentials: Sequence[CredentialDescriptor] = (),
        authenticator_attachment: Optional[AuthenticatorAttachment] = None,
        resident_key: Optional[ResidentKeyRequirement] = None,
        user_verification: Optional[UserVerificationRequirement] = None,
        attestation: AttestationConveyancePreference = AttestationConveyancePreference.NONE,
        extensions: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[dict, str]:
        """Return the ``publicKey`` creation options and the challenge they carry."""
        server = self._server(rp_id, attestation=attestation)
        options, state = server.register_begin(
            user,
            [_descriptor(d) for d in exclude_credentials],
            resident_key_requirement=resident_key,
            user_verification=user_verification,
            authenticator_attachment=authenticator_attachment,
            extensions=extensions,
        )
        return _jsonable(options["publicKey"]), state["challenge"]

    def verify_registration(
        self,
        credential: Mapping[str, Any],
        expected_challenge: str,
        expected_origin: str,
        expected_rp_id: str,
        user_verification: Optional[str] = None,
    ) -> RegistrationResult:
        server = self._server(expected_rp_id, origin=expected_origin)
        try:
            auth_data = server.register_complete(
                _state(expected_challenge, user_verification), dict(credential))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Registration rejected: %s", e)
            return RegistrationResult(verified=False, reason=str(e))

        cred = auth_data.credential_data
        if cred is None:
            return RegistrationResult(verified=False, reason="No attested credential data")
        return RegistrationResult(
            verified=True,
            public_key=cbor.encode(cred.public_key),
            credential_id=cred.credential_id,
            counter=auth_data.counter,
        )

    # Authentication

    def build_authentication_options(
        self,
        rp_id: str,
        allow_credentials: Sequence[CredentialDescriptor] = (),
        user_verification: UserVerificationRequirement = UserVerificationRequirement.PREFERRED,
    ) -> Tuple[dict, str]:
        server = self._server(rp_id)
        options, state = server.authenticate_begin(
            [_descriptor(d) for d in allow_credentials] or None,
            user_verification=user_verification,
        )
        return _jsonable(options["publicKey"]), state["challenge"]

    def verify_authentication(
        self,
        assertion: Mapping[str, Any],
        expected_challenge: str,
        expected_origin: str,
        expected_rp_id: str,
        authenticator: StoredAuthenticator,
        user_verification: Optional[str] = None,
    ) -> AuthenticationResult:
        server = self._server(expected_rp_id, origin=expected_origin)
        try:
            stored = AttestedCredentialData.create(
                Aaguid.NONE,
                authenticator.credential_id,
                CoseKey.parse(cbor.decode(authenticator.public_key)),
            )
            response = AuthenticationResponse.from_dict(dict(assertion))
            server.authenticate_complete(
                _state(expected_challenge, user_verification), [stored], dict(assertion))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Assertion rejected: %s", e)
            return AuthenticationResult(verified=False, reason=str(e))

        new_counter = response.response.authenticator_data.counter
        # Authenticators without a counter always report 0.
        if (new_counter > 0 or authenticator.counter > 0) and new_counter <= authenticator.counter:
            logger.warning("Signature counter did not increase: stored=%d, received=%d",
                           authenticator.counter, new_counter)
            return AuthenticationResult(verified=False, reason="Signature counter did not increase")
        return AuthenticationResult(verified=True, new_counter=new_counter)
