"""
Verifiable Credentials Issuer
=============================

Issues self-signed credentials from the caller's current DID.

Flow: resolve current DID -> build credentialSubject -> content hash ->
sign -> share token -> persist credential + activity.

Also owns revocation, the only status change a credential ever sees.
"""

import logging
import re
import secrets
import string
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from . import key_manager
from .did_manager import DIDManager
from .errors import AlreadyRevoked, CredentialNotFound, Unauthorized, ValidationError
from .models import (
    Activity,
    ActivityType,
    ContentRecord,
    Credential,
    CredentialStatus,
    DIDRecord,
    normalize_status,
    parse_datetime,
    to_iso,
    utcnow,
)
from .storage import MemoryStorage

logger = logging.getLogger(__name__)

# P-256 is secp256r1
PROOF_TYPE = "EcdsaSecp256r1Signature2019"
PROOF_PURPOSE = "assertionMethod"

EDUCATIONAL = "EducationalCredential"
GOVERNMENT_ID = "GovernmentID"
EMPLOYMENT = "EmploymentCredential"


def issuer_did_for(issuer: str) -> str:
    """did:web identifier synthesised from a free-text issuer name"""
    slug = re.sub(r"\s+", "-", issuer.strip().lower())
    return f"did:web:{slug}.com"


def build_template_subject(did_string: str, credential_type: str, issuer: str) -> Dict[str, Any]:
    """
    Build a demo credentialSubject for one of the known credential types.

    Unknown types get only ``id`` and ``type``.
    """
    subject: Dict[str, Any] = {"id": did_string, "type": credential_type}

    if credential_type == EDUCATIONAL:
        subject.update(
            degree="Bachelor of Science",
            major="Computer Science",
            graduationYear=2024,
            institution=issuer,
        )
    elif credential_type == GOVERNMENT_ID:
        alphabet = string.ascii_uppercase + string.digits
        subject.update(
            idNumber="ID-" + "".join(secrets.choice(alphabet) for _ in range(8)),
            fullName="Demo User",
            dateOfBirth="1990-01-01",
            nationality="Digital Nation",
        )
    elif credential_type == EMPLOYMENT:
        subject.update(
            position="Senior Software Engineer",
            company=issuer,
            startDate="2020-01-01",
            endDate="Present",
        )

    return subject


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


def _parse_date(name: str, value: Optional[str]) -> Optional[datetime]:
    try:
        return parse_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} is not a valid ISO-8601 date: {value!r}")


class CredentialIssuer:
    """
    Issues and revokes credentials

    Features:
    - Issue templated demo credentials
    - Issue credentials from custom claims with optional media URLs
    - Revoke credentials (owner only, one-way)
    """

    def __init__(
        self,
        storage: MemoryStorage,
        did_manager: DIDManager,
        government_id_validity_days: int = 5 * 365,
    ):
        self.storage = storage
        self.did_manager = did_manager
        self.government_id_validity_days = government_id_validity_days

    # ==================== CREDENTIAL ISSUANCE ====================

    def issue_from_template(
        self,
        user_id: str,
        credential_type: str,
        title: str,
        issuer: str,
        issued_date: Optional[str] = None,
        expires_date: Optional[str] = None,
    ) -> Credential:
        """
        Issue a credential whose claims are synthesised from its type.

        Args:
            user_id: Caller; their current DID signs the credential
            credential_type: e.g. "EducationalCredential"
            title: Display title
            issuer: Free-text issuer name (not checked against any registry)
            issued_date: Optional ISO date, defaults to now
            expires_date: Optional ISO date; GovernmentID defaults to +5 years

        Returns:
            The stored Credential
        """
        credential_type = _require_text("Type", credential_type)
        title = _require_text("Title", title)
        issuer = _require_text("Issuer", issuer)
        issued_at = _parse_date("issuedDate", issued_date) or utcnow()
        expires_at = _parse_date("expiresDate", expires_date)

        if expires_at is None and credential_type == GOVERNMENT_ID:
            expires_at = issued_at + timedelta(days=self.government_id_validity_days)

        did = self.did_manager.require_current_did(user_id)
        subject = build_template_subject(did.did_string, credential_type, issuer)

        return self._issue(
            user_id,
            did,
            subject,
            credential_type=credential_type,
            title=title,
            issuer=issuer,
            issued_at=issued_at,
            expires_at=expires_at,
            description=f"Received {title} from {issuer}",
        )

    def issue_custom(
        self,
        user_id: str,
        credential_type: str,
        title: str,
        issuer: str,
        credential_data: Any,
        issued_date: Optional[str] = None,
        expires_date: Optional[str] = None,
        image_url: Optional[str] = None,
        document_url: Optional[str] = None,
    ) -> Credential:
        """
        Issue a credential from arbitrary custom claims.

        credential_data must be a JSON object; it is merged over
        ``{"id": <did string>}`` to form the subject.
        """
        credential_type = _require_text("Type", credential_type)
        title = _require_text("Title", title)
        issuer = _require_text("Issuer", issuer)
        if not isinstance(credential_data, dict):
            raise ValidationError("credentialData must be a JSON object")
        issued_at = _parse_date("issuedDate", issued_date) or utcnow()
        expires_at = _parse_date("expiresDate", expires_date)

        did = self.did_manager.require_current_did(user_id)
        subject = {"id": did.did_string, **credential_data}

        return self._issue(
            user_id,
            did,
            subject,
            credential_type=credential_type,
            title=title,
            issuer=issuer,
            issued_at=issued_at,
            expires_at=expires_at,
            description=f"Created custom credential: {title}",
            image_url=image_url or None,
            document_url=document_url or None,
        )

    def _issue(
        self,
        user_id: str,
        did: DIDRecord,
        subject: Dict[str, Any],
        credential_type: str,
        title: str,
        issuer: str,
        issued_at: datetime,
        expires_at: Optional[datetime],
        description: str,
        image_url: Optional[str] = None,
        document_url: Optional[str] = None,
    ) -> Credential:
        # No writes above this point
        try:
            signature = key_manager.sign(subject, did.private_key_for(user_id))
            cid = key_manager.content_hash(subject)
            payload_size = len(key_manager.canonical_json(subject))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Credential data is not serializable: {e}")

        proof = {
            "type": PROOF_TYPE,
            "created": to_iso(utcnow()),
            "proofPurpose": PROOF_PURPOSE,
            "verificationMethod": f"{did.did_string}#keys-1",
            "signature": signature,
        }

        credential = Credential(
            did_id=did.id,
            type=credential_type,
            title=title,
            issuer=issuer,
            issuer_did=issuer_did_for(issuer),
            issued_at=issued_at,
            expires_at=expires_at,
            status=CredentialStatus.VERIFIED.value,
            credential_subject=subject,
            proof=proof,
            ipfs_cid=cid,
            image_url=image_url,
            document_url=document_url,
            share_token=self._new_share_token(),
            metadata={"issuanceDate": to_iso(issued_at)},
        )

        self.storage.create_content(
            ContentRecord(
                cid=cid,
                file_name=f"{title}.json",
                file_size=payload_size,
                mime_type="application/json",
            )
        )
        self.storage.create_credential(credential)
        self.storage.create_activity(
            Activity(
                did_id=did.id,
                type=ActivityType.CREDENTIAL_ISSUED,
                description=description,
                metadata={"credentialId": credential.id, "type": credential_type},
            )
        )

        logger.info(
            "Issued %s credential %s from %s", credential_type, credential.id, did.did_string
        )
        return credential

    def _new_share_token(self) -> str:
        token = str(uuid.uuid4())
        while self.storage.get_credential_by_share_token(token) is not None:
            token = str(uuid.uuid4())
        return token

    # ==================== REVOCATION ====================

    def revoke_credential(self, user_id: str, credential_id: str) -> Credential:
        """
        Revoke a credential owned by the caller.

        Ownership is checked by walking credential -> DID -> user.
        Revoking twice raises AlreadyRevoked.
        """
        credential = self.storage.get_credential(credential_id)
        if credential is None:
            raise CredentialNotFound()

        did = self.storage.get_did(credential.did_id)
        if did is None or did.user_id != user_id:
            raise Unauthorized("You do not own this credential")

        previous = self.storage.revoke_credential(credential_id)
        if previous is None:
            raise CredentialNotFound()
        if normalize_status(previous) == CredentialStatus.REVOKED.value:
            raise AlreadyRevoked()

        self.storage.create_activity(
            Activity(
                did_id=did.id,
                type=ActivityType.CREDENTIAL_REVOKED,
                description=f"Revoked {credential.title}",
                metadata={"credentialId": credential.id},
            )
        )
        logger.info("Revoked credential %s", credential_id)
        return credential
