"""
DID Credential Wallet
=====================

Self-issued verifiable credentials tied to per-user decentralized identifiers.

Components:
- key_manager: P-256 keys, DID derivation, signing, content hashes
- DIDManager: Create and resolve DIDs, manage the current DID
- CredentialIssuer: Issue and revoke credentials
- CredentialVerifier: Verify credentials under a TrustPolicy
- SelectiveDisclosure: Disclose chosen subject fields with a hash commitment
- WalletService: Main integration service

Standards (loosely followed):
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- W3C Verifiable Credentials: https://www.w3.org/TR/vc-data-model/
"""

from .credential_issuer import CredentialIssuer
from .credential_verifier import CredentialVerifier, TrustPolicy, VerificationResult
from .did_manager import DIDManager
from .did_service import WalletService
from .errors import (
    AlreadyRevoked,
    CredentialNotFound,
    MalformedCredential,
    NoIdentity,
    NotFound,
    Unauthorized,
    ValidationError,
    WalletError,
)
from .identity import IdentityProvider, SessionManager
from .key_manager import KeyPair
from .models import Credential, CredentialStatus, DIDRecord
from .selective_disclosure import SelectiveDisclosure
from .storage import MemoryStorage

__version__ = "1.0.0"
__all__ = [
    # Core DID
    "DIDManager",
    "DIDRecord",
    "KeyPair",

    # Credentials
    "Credential",
    "CredentialStatus",
    "CredentialIssuer",
    "CredentialVerifier",
    "TrustPolicy",
    "VerificationResult",
    "SelectiveDisclosure",

    # Infrastructure
    "MemoryStorage",
    "IdentityProvider",
    "SessionManager",

    # Errors
    "WalletError",
    "NoIdentity",
    "MalformedCredential",
    "CredentialNotFound",
    "NotFound",
    "Unauthorized",
    "AlreadyRevoked",
    "ValidationError",

    # Service
    "WalletService",
]
