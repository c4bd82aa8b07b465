"""
Error taxonomy for wallet operations.

Every error carries a short machine-checkable ``kind`` and a human readable
message. All of them are recoverable: an operation that raises one has not
written anything.
"""

from typing import Dict


class WalletError(Exception):
    """Base class for all recoverable wallet errors"""
    kind = "wallet_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = message or self.__class__.__doc__ or self.kind

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class NoIdentity(WalletError):
    """No DID found. Create one first."""
    kind = "no_identity"


class MalformedCredential(WalletError):
    """Invalid credential structure"""
    kind = "malformed_credential"


class CredentialNotFound(WalletError):
    """Credential not found"""
    kind = "credential_not_found"


class NotFound(WalletError):
    """Record not found"""
    kind = "not_found"


class Unauthorized(WalletError):
    """Authentication required"""
    kind = "unauthorized"


class AlreadyRevoked(WalletError):
    """Credential is already revoked"""
    kind = "already_revoked"


class ValidationError(WalletError):
    """Validation error"""
    kind = "validation_error"
