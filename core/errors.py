"""
core/errors.py -- Error taxonomy shared by every SecureCMS layer.

Each class carries the machine-readable code and HTTP status the API layer
uses when the error reaches the boundary (see api/main.py exception
handlers). Domain code raises these; it never raises HTTPException.

Expected conditions in the pure components (wrong password, expired token,
missing permission) are reported as return values, not exceptions:
  CredentialStore.verify  -> False
  SessionIssuer.validate  -> None
  PermissionEvaluator     -> False
The services that sit above them decide whether to raise.

Layer rule: core/ is the kernel. No imports from other project packages.
"""

from __future__ import annotations


class CMSError(Exception):
    """Base class for all SecureCMS errors."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = "", detail: str | None = None) -> None:
        self.message = message or self.__class__.__doc__ or self.code
        self.detail = detail
        super().__init__(self.message)


class AuthenticationError(CMSError):
    """Missing, expired or forged session token, or wrong credentials."""

    code = "unauthenticated"
    status_code = 401


class AuthorizationError(CMSError):
    """Valid identity without the permission the operation requires."""

    code = "forbidden"
    status_code = 403


class NotFoundError(CMSError):
    """The requested entity does not exist."""

    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: object = None) -> None:
        message = f"{entity} not found"
        if entity_id is not None:
            message = f"{entity} {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(CMSError):
    """A unique key (username, email, role name, permission pair, assignment) already exists."""

    code = "conflict"
    status_code = 409


class InvalidInputError(CMSError):
    """Input the domain cannot accept, such as a password longer than bcrypt allows."""

    code = "invalid_input"
    status_code = 422


class ConfigurationError(CMSError):
    """A required setting is missing or invalid. Fatal at startup."""

    code = "configuration_error"


class CryptoError(CMSError):
    """Field encryption or decryption failed."""

    code = "crypto_error"
    status_code = 422


class DecryptionError(CryptoError):
    """Ciphertext is malformed or was not produced under this installation's key."""

    code = "decryption_failed"


class AuditWriteError(CMSError):
    """The audit record for a mutation could not be written.

    Raised inside a unit of work, so the mutation it describes is rolled back
    with it.
    """

    code = "audit_write_failed"
