"""
Core records of the DID wallet.

These describe the objects the wallet persists:
- accounts (end users and verifier organizations)
- DIDs with their key material
- credentials, content records and templates
- verification records and activity entries (both append-only)

Wire dictionaries use camelCase keys; attributes use snake_case.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import Unauthorized


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp or date into an aware UTC datetime.

    Naive values are taken to be UTC. Raises ValueError on anything that is
    not None, a datetime, or an ISO string.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_status(status: Any) -> str:
    return status.strip().lower() if isinstance(status, str) else ""


class CredentialStatus(str, Enum):
    VERIFIED = "verified"
    PENDING = "pending"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ActivityType(str, Enum):
    DID_CREATED = "did_created"
    CREDENTIAL_ISSUED = "credential_issued"
    CREDENTIAL_VERIFIED = "credential_verified"
    CREDENTIAL_SHARED = "credential_shared"
    CREDENTIAL_REVOKED = "credential_revoked"


# ==================== ACCOUNTS ====================

@dataclass
class User:
    """An end user; current_did_id points at the DID used for issuance"""
    username: str
    email: str
    external_id: str
    id: str = field(default_factory=new_id)
    current_did_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username, "email": self.email}


@dataclass
class Organization:
    """A verifier organization using the admin portal"""
    name: str
    email: str
    external_id: str
    role: str = "verifier"
    id: str = field(default_factory=new_id)
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def verifier_did(self) -> str:
        return f"did:org:{self.id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
        }


# ==================== DIDs ====================

class SensitiveKey:
    """
    Owner-only key material.

    Held in cleartext; the only way out is reveal(), so encryption at rest
    can be added here without touching callers.
    """

    def __init__(self, material: str):
        self._material = material

    def reveal(self) -> str:
        return self._material

    def __repr__(self) -> str:
        return "SensitiveKey(***)"

    def __eq__(self, other) -> bool:
        return isinstance(other, SensitiveKey) and other._material == self._material


@dataclass
class DIDRecord:
    """
    One self-sovereign identity.

    did_string is derived from public_key and is unique across storage.
    Records are never mutated after creation.
    """
    user_id: str
    did_string: str
    public_key: str
    private_key: SensitiveKey = field(repr=False)
    method: str = "key"
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def private_key_for(self, user_id: str) -> str:
        """Return the private key, but only to the owning user"""
        if user_id != self.user_id:
            raise Unauthorized("Only the owner may use this DID's private key")
        return self.private_key.reveal()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "didString": self.did_string,
            "publicKey": self.public_key,
            "method": self.method,
            "createdAt": to_iso(self.created_at),
            "metadata": self.metadata,
        }


# ==================== CREDENTIALS ====================

@dataclass
class Credential:
    """
    A signed, shareable JSON document.

    Only ``status`` changes after creation, and only towards ``revoked``.
    ``expired`` is derived from expires_at, never stored.
    """
    did_id: str
    type: str
    title: str
    issuer: str
    credential_subject: Dict[str, Any]
    proof: Dict[str, Any]
    status: str = CredentialStatus.VERIFIED.value
    issuer_did: Optional[str] = None
    id: str = field(default_factory=new_id)
    issued_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    ipfs_cid: Optional[str] = None
    image_url: Optional[str] = None
    document_url: Optional[str] = None
    share_token: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_revoked(self) -> bool:
        return normalize_status(self.status) == CredentialStatus.REVOKED.value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Expired once now reaches expires_at (the boundary itself is expired)"""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def effective_status(self, now: Optional[datetime] = None) -> str:
        if self.is_revoked:
            return CredentialStatus.REVOKED.value
        if self.is_expired(now):
            return CredentialStatus.EXPIRED.value
        return normalize_status(self.status)

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "id": self.id,
            "didId": self.did_id,
            "type": self.type,
            "title": self.title,
            "issuer": self.issuer,
            "issuerDid": self.issuer_did,
            "issuedAt": to_iso(self.issued_at),
            "expiresAt": to_iso(self.expires_at),
            "status": self.status,
            "effectiveStatus": self.effective_status(now),
            "credentialSubject": self.credential_subject,
            "proof": self.proof,
            "ipfsCid": self.ipfs_cid,
            "imageUrl": self.image_url,
            "documentUrl": self.document_url,
            "shareToken": self.share_token,
            "metadata": self.metadata,
        }

    def to_public_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """View for unauthenticated callers: no owner or account identifiers"""
        data = self.to_dict(now)
        data.pop("didId")
        data.pop("metadata")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        """
        Build a credential from a wire dictionary.

        Raises ValueError when timestamps cannot be parsed.
        """
        return cls(
            id=data.get("id") or new_id(),
            did_id=data.get("didId") or "",
            type=data.get("type") or "",
            title=data.get("title") or "",
            issuer=data.get("issuer") or "",
            issuer_did=data.get("issuerDid"),
            issued_at=parse_datetime(data.get("issuedAt")) or utcnow(),
            expires_at=parse_datetime(data.get("expiresAt")),
            status=data.get("status") if isinstance(data.get("status"), str) else "",
            credential_subject=data.get("credentialSubject") or {},
            proof=data.get("proof") or {},
            ipfs_cid=data.get("ipfsCid"),
            image_url=data.get("imageUrl"),
            document_url=data.get("documentUrl"),
            share_token=data.get("shareToken"),
            metadata=data.get("metadata") or {},
        )


@dataclass
class ContentRecord:
    """Metadata for a CID-shaped content hash"""
    cid: str
    file_name: str
    file_size: int
    mime_type: str = "application/json"
    id: str = field(default_factory=new_id)
    uploaded_at: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "cid": self.cid,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "mimeType": self.mime_type,
            "uploadedAt": to_iso(self.uploaded_at),
            "metadata": self.metadata,
        }


@dataclass
class CredentialTemplate:
    name: str
    type: str
    issuer: str
    schema: Dict[str, str]
    required_fields: List[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "issuer": self.issuer,
            "schema": self.schema,
            "requiredFields": self.required_fields,
            "createdAt": to_iso(self.created_at),
        }


# ==================== AUDIT ====================

@dataclass
class VerificationRecord:
    """One verification attempt; append-only"""
    is_valid: bool
    verifier_did: str
    result: Dict[str, Any]
    credential_id: Optional[str] = None
    verification_method: str = "signature"
    id: str = field(default_factory=new_id)
    verified_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "credentialId": self.credential_id,
            "verifierDid": self.verifier_did,
            "verifiedAt": to_iso(self.verified_at),
            "isValid": self.is_valid,
            "verificationMethod": self.verification_method,
            "result": self.result,
        }


@dataclass
class Activity:
    """A line on a DID's timeline; append-only and never read by business logic"""
    type: ActivityType
    description: str
    did_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "didId": self.did_id,
            "type": self.type.value,
            "description": self.description,
            "timestamp": to_iso(self.timestamp),
            "metadata": self.metadata,
        }
