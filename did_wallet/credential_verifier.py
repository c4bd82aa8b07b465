"""
Verifiable Credentials Verifier
================================

Resolves an opaque input (share link, bare token/id, or raw JSON) to a
credential and computes its checks:

- signatureValid: embedded signature against the issuing DID's public key
- notExpired: expiresAt is unset or still in the future
- issuerTrusted: always true, there is no issuer registry
- proofVerified: the proof carries a non-empty signature
- statusVerified: status is "verified" (trimmed, case-insensitive)
- isRevoked: status is "revoked"

isValid requires every positive check and no revocation. All entry points
share this code and differ only in TrustPolicy and verifier identity.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from . import key_manager
from .did_manager import DIDManager
from .errors import CredentialNotFound, MalformedCredential, ValidationError
from .models import (
    Activity,
    ActivityType,
    Credential,
    CredentialStatus,
    DIDRecord,
    VerificationRecord,
    normalize_status,
    to_iso,
    utcnow,
)
from .storage import MemoryStorage

logger = logging.getLogger(__name__)

ANONYMOUS_VERIFIER = "did:example:verifier"
SHARE_LINK_PATTERN = re.compile(r"/verify/([A-Za-z0-9-]+)")
REQUIRED_FIELDS = ("proof", "credentialSubject", "title")


class TrustPolicy(str, Enum):
    """
    What signatureValid falls back to when the issuing DID cannot be resolved.

    TRUST_STORED_STATUS: fall back to statusVerified.
    REQUIRE_SIGNATURE_MATCH: fall back to False.

    When the DID resolves, both policies verify the signature for real.
    """
    TRUST_STORED_STATUS = "trust_stored_status"
    REQUIRE_SIGNATURE_MATCH = "require_signature_match"


@dataclass
class VerificationChecks:
    signature_valid: bool
    not_expired: bool
    issuer_trusted: bool
    proof_verified: bool
    status_verified: bool
    is_revoked: bool

    @property
    def is_valid(self) -> bool:
        return (
            not self.is_revoked
            and self.status_verified
            and self.not_expired
            and self.issuer_trusted
            and self.proof_verified
            and self.signature_valid
        )

    def to_dict(self) -> Dict[str, bool]:
        return {
            "signatureValid": self.signature_valid,
            "notExpired": self.not_expired,
            "issuerTrusted": self.issuer_trusted,
            "proofVerified": self.proof_verified,
            "statusVerified": self.status_verified,
            "isRevoked": self.is_revoked,
        }


@dataclass
class VerificationResult:
    """Result of one verification attempt"""
    is_valid: bool
    checks: VerificationChecks
    credential: Credential
    stored: bool
    policy: TrustPolicy
    record: VerificationRecord
    verified_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "credential": self.credential.to_public_dict(self.verified_at),
            "details": self.checks.to_dict(),
            "policy": self.policy.value,
            "verificationId": self.record.id,
            "timestamp": to_iso(self.verified_at),
        }

    def to_share_summary(self) -> Dict[str, Any]:
        """Minimal result for the anonymous share-link page"""
        return {
            "isValid": self.is_valid,
            "credential": self.credential.to_public_dict(self.verified_at),
            "verification": {
                "verified": self.checks.status_verified,
                "notExpired": self.checks.not_expired,
                "issuer": self.credential.issuer,
                "issuedAt": to_iso(self.credential.issued_at),
            },
        }


class CredentialVerifier:
    """
    Verifies stored and ad-hoc credentials

    Performs the following steps:
    1. Input resolution (JSON first, then lookup keys)
    2. Structure validation
    3. Check computation under a TrustPolicy
    4. Verification record, plus an activity entry for signed-in users
    """

    def __init__(
        self,
        storage: MemoryStorage,
        did_manager: DIDManager,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.did_manager = did_manager
        self.clock = clock or utcnow

    # ==================== INPUT RESOLUTION ====================

    def resolve_input(self, raw: Any) -> Tuple[Credential, bool]:
        """
        Resolve verifier input to a credential.

        Args:
            raw: Share link, bare share token or credential id, or a
                credential JSON document

        Returns:
            (credential, stored) where stored says whether the credential
            is a record in storage

        Raises:
            ValidationError: empty input
            MalformedCredential: JSON missing proof, credentialSubject or title,
                nested too deeply, or holding NaN/Infinity
            CredentialNotFound: no lookup path matched
        """
        if not isinstance(raw, str) or not raw.strip():
            raise ValidationError("Credential data is required")

        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        except RecursionError:
            raise MalformedCredential("Credential JSON is nested too deeply")

        if isinstance(parsed, dict):
            return self._from_document(parsed)

        key = parsed if isinstance(parsed, str) else raw
        return self.lookup(key), True

    def lookup(self, key: str) -> Credential:
        """Resolve a link, share token or id; raises CredentialNotFound"""
        trimmed = key.strip()
        match = SHARE_LINK_PATTERN.search(trimmed)
        possible_token = match.group(1) if match else trimmed

        credential = (
            self.storage.get_credential(trimmed)
            or self.storage.get_credential_by_share_token(possible_token)
            or self.storage.get_credential(possible_token)
        )

        if credential is None and "?" in trimmed:
            query = parse_qs(urlparse(trimmed).query)
            for token in query.get("shareToken", []):
                credential = self.storage.get_credential_by_share_token(token.strip())
                if credential is not None:
                    break

        if credential is None:
            raise CredentialNotFound()
        return credential

    def _from_document(self, data: Dict[str, Any]) -> Tuple[Credential, bool]:
        missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise MalformedCredential(
                "Invalid credential structure - missing required fields "
                f"({', '.join(missing)})"
            )
        if not isinstance(data["credentialSubject"], dict):
            raise MalformedCredential("credentialSubject must be a JSON object")
        if not isinstance(data["proof"], dict):
            raise MalformedCredential("proof must be a JSON object")

        try:
            key_manager.canonical_json(data)
        except (TypeError, ValueError, RecursionError) as e:
            raise MalformedCredential(f"Credential JSON cannot be canonicalized: {e}")

        try:
            credential = Credential.from_dict(data)
        except ValueError as e:
            raise MalformedCredential(f"Invalid credential timestamps: {e}")

        # Registry data wins over what the document claims about itself
        record_id = data.get("id")
        stored = (
            self.storage.get_credential(record_id) if isinstance(record_id, str) else None
        )
        if stored is None:
            return credential, False
        credential.did_id = stored.did_id
        credential.status = stored.status
        credential.expires_at = stored.expires_at
        credential.share_token = stored.share_token
        return credential, True

    # ==================== CHECKS ====================

    def compute_checks(
        self,
        credential: Credential,
        policy: TrustPolicy,
        now: Optional[datetime] = None,
        issuer: Optional[DIDRecord] = None,
    ) -> VerificationChecks:
        now = now or self.clock()
        status = normalize_status(credential.status)
        status_verified = status == CredentialStatus.VERIFIED.value

        proof = credential.proof if isinstance(credential.proof, dict) else {}
        signature = proof.get("signature")
        proof_verified = isinstance(signature, str) and bool(signature)

        if issuer is None:
            issuer = self.did_manager.resolve_issuer(credential)

        if not proof_verified:
            signature_valid = False
        elif issuer is not None:
            signature_valid = key_manager.verify(
                credential.credential_subject, signature, issuer.public_key
            )
        elif policy == TrustPolicy.TRUST_STORED_STATUS:
            signature_valid = status_verified
        else:
            signature_valid = False

        return VerificationChecks(
            signature_valid=signature_valid,
            not_expired=not credential.is_expired(now),
            issuer_trusted=True,
            proof_verified=proof_verified,
            status_verified=status_verified,
            is_revoked=status == CredentialStatus.REVOKED.value,
        )

    # ==================== VERIFICATION ====================

    def verify(
        self,
        raw: Any,
        policy: TrustPolicy,
        verifier_did: str = ANONYMOUS_VERIFIER,
        actor_user_id: Optional[str] = None,
        extra_result: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        """
        Resolve and verify one input, recording the attempt.

        Args:
            raw: See resolve_input()
            policy: Fallback rule for unresolvable issuing DIDs
            verifier_did: Identity written to the verification record
            actor_user_id: Signed-in end user, if any; receives a
                credential_verified activity for stored credentials
            extra_result: Additional fields stored in the record's result
        """
        credential, stored = self.resolve_input(raw)
        return self.verify_credential(
            credential,
            stored=stored,
            policy=policy,
            verifier_did=verifier_did,
            actor_user_id=actor_user_id,
            extra_result=extra_result,
        )

    def verify_credential(
        self,
        credential: Credential,
        stored: bool,
        policy: TrustPolicy,
        verifier_did: str = ANONYMOUS_VERIFIER,
        actor_user_id: Optional[str] = None,
        extra_result: Optional[Dict[str, Any]] = None,
    ) -> VerificationResult:
        now = self.clock()
        checks = self.compute_checks(credential, policy, now=now)
        is_valid = checks.is_valid

        result = checks.to_dict()
        result.update(extra_result or {})
        result["policy"] = policy.value
        result["verifiedAt"] = to_iso(now)

        record = self.storage.create_verification(
            VerificationRecord(
                credential_id=credential.id if stored else None,
                verifier_did=verifier_did,
                is_valid=is_valid,
                verification_method="signature",
                result=result,
                verified_at=now,
            )
        )

        if stored and actor_user_id:
            actor_did = self.did_manager.get_current_did(actor_user_id)
            if actor_did is not None:
                self.storage.create_activity(
                    Activity(
                        did_id=actor_did.id,
                        type=ActivityType.CREDENTIAL_VERIFIED,
                        description=f"Verified {credential.title or 'credential'}",
                        metadata={"credentialId": credential.id, "isValid": is_valid},
                    )
                )

        logger.info(
            "Verified credential %s (stored=%s, policy=%s): valid=%s",
            credential.id,
            stored,
            policy.value,
            is_valid,
        )
        return VerificationResult(
            is_valid=is_valid,
            checks=checks,
            credential=credential,
            stored=stored,
            policy=policy,
            record=record,
            verified_at=now,
        )

    def verify_share_token(self, share_token: str) -> VerificationResult:
        """
        Anonymous verification of a shared credential.

        Only share tokens resolve here; credential ids do not.
        """
        if not isinstance(share_token, str) or not share_token.strip():
            raise ValidationError("Share token is required")
        credential = self.storage.get_credential_by_share_token(share_token.strip())
        if credential is None:
            raise CredentialNotFound()
        return self.verify_credential(
            credential,
            stored=True,
            policy=TrustPolicy.TRUST_STORED_STATUS,
            verifier_did=ANONYMOUS_VERIFIER,
        )
