"""Error taxonomy for the WebAuthn ceremonies.

Every error carries a client-visible message and the HTTP status the
blueprint answers with.
"""


class WebAuthnError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(WebAuthnError):
    """No authenticated principal on the request."""
    status_code = 401


class ConfigurationError(WebAuthnError):
    """A required deployment setting is missing."""


class ProtocolViolation(WebAuthnError):
    """Missing or expired challenge, unknown credential, etc."""


class InvalidRequest(ProtocolViolation):
    """Malformed body or an unrecognized ceremony preference."""


class VerificationFailed(WebAuthnError):
    """The verifier rejected the attestation or assertion."""


class CredentialExists(Exception):
    """Raised by the repository when a credential id is already stored."""
