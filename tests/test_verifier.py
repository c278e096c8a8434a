import os

import pytest
from fido2.webauthn import (
    AttestationConveyancePreference,
    PublicKeyCredentialUserEntity,
    UserVerificationRequirement,
)

from passkey_rp.verifier import CredentialDescriptor, Fido2Verifier, StoredAuthenticator
from software_authenticator import SoftwareAuthenticator

RP_ID = "example.com"
ORIGIN = "https://example.com"
USER = PublicKeyCredentialUserEntity(name="erin", id=b"1", display_name="Erin")


@pytest.fixture
def verifier():
    return Fido2Verifier("Example")


def registered(verifier, authenticator):
    options, challenge = verifier.build_registration_options(RP_ID, USER)
    credential = authenticator.make_credential(options, ORIGIN)
    result = verifier.verify_registration(credential, challenge, ORIGIN, RP_ID)
    assert result.verified
    return StoredAuthenticator(result.public_key, result.credential_id, result.counter)


def test_registration_options(verifier):
    cred_id = os.urandom(16)
    options, challenge = verifier.build_registration_options(
        RP_ID, USER,
        exclude_credentials=[CredentialDescriptor(cred_id, ("usb", "carrier-pigeon"))],
        attestation=AttestationConveyancePreference.DIRECT,
    )
    assert options["challenge"] == challenge
    assert options["rp"]["id"] == RP_ID
    assert [p["alg"] for p in options["pubKeyCredParams"]] == [-7, -257]
    assert options["timeout"] == 5 * 60 * 1000
    assert options["attestation"] == "direct"
    assert options["excludeCredentials"][0]["transports"] == ["usb"]


def test_each_ceremony_gets_a_fresh_challenge(verifier):
    _, first = verifier.build_registration_options(RP_ID, USER)
    _, second = verifier.build_registration_options(RP_ID, USER)
    _, third = verifier.build_authentication_options(RP_ID)
    assert len({first, second, third}) == 3


def test_registration_and_authentication(verifier):
    authenticator = SoftwareAuthenticator()
    stored = registered(verifier, authenticator)
    assert stored.credential_id in authenticator.keys
    assert stored.counter == 0

    options, challenge = verifier.build_authentication_options(
        RP_ID, [CredentialDescriptor(stored.credential_id)],
        UserVerificationRequirement.REQUIRED)
    assert options["userVerification"] == "required"
    assertion = authenticator.get_assertion(options, ORIGIN)
    result = verifier.verify_authentication(assertion, challenge, ORIGIN, RP_ID, stored,
                                            "required")
    assert result.verified
    assert result.new_counter == 1


def test_registration_with_wrong_challenge_is_not_verified(verifier):
    options, _ = verifier.build_registration_options(RP_ID, USER)
    credential = SoftwareAuthenticator().make_credential(options, ORIGIN)
    _, other = verifier.build_registration_options(RP_ID, USER)
    result = verifier.verify_registration(credential, other, ORIGIN, RP_ID)
    assert not result.verified
    assert result.public_key is None


def test_registration_for_another_rp_is_not_verified(verifier):
    options, challenge = verifier.build_registration_options("evil.example", USER)
    credential = SoftwareAuthenticator().make_credential(options, ORIGIN)
    assert not verifier.verify_registration(credential, challenge, ORIGIN, RP_ID).verified


def test_malformed_registration_is_not_verified(verifier):
    _, challenge = verifier.build_registration_options(RP_ID, USER)
    result = verifier.verify_registration({"id": "x", "response": {}}, challenge, ORIGIN, RP_ID)
    assert not result.verified


def test_assertion_signed_by_another_key_is_not_verified(verifier):
    stored = registered(verifier, SoftwareAuthenticator())
    impostor = SoftwareAuthenticator()
    registered(verifier, impostor)
    (impostor_id,) = impostor.keys
    # Same credential id, different private key.
    impostor.keys[stored.credential_id] = impostor.keys.pop(impostor_id)

    options, challenge = verifier.build_authentication_options(RP_ID)
    assertion = impostor.get_assertion(options, ORIGIN, credential_id=stored.credential_id)
    assert not verifier.verify_authentication(assertion, challenge, ORIGIN, RP_ID, stored).verified


def test_counter_must_increase(verifier):
    authenticator = SoftwareAuthenticator()
    stored = registered(verifier, authenticator)
    stored = StoredAuthenticator(stored.public_key, stored.credential_id, counter=10)

    options, challenge = verifier.build_authentication_options(RP_ID)
    assertion = authenticator.get_assertion(options, ORIGIN, credential_id=stored.credential_id,
                                            counter=10)
    result = verifier.verify_authentication(assertion, challenge, ORIGIN, RP_ID, stored)
    assert not result.verified


def test_zero_counters_are_accepted(verifier):
    authenticator = SoftwareAuthenticator()
    stored = registered(verifier, authenticator)

    options, challenge = verifier.build_authentication_options(RP_ID)
    assertion = authenticator.get_assertion(options, ORIGIN, credential_id=stored.credential_id,
                                            counter=0)
    result = verifier.verify_authentication(assertion, challenge, ORIGIN, RP_ID, stored)
    assert result.verified
    assert result.new_counter == 0
