"""
DID Wallet Service
==================

Wires storage, identity, issuance, verification and disclosure into one
facade that the HTTP layer (or any other caller) talks to:

- Accounts: end users and verifier organizations
- DIDs: create, list, switch, reveal private key
- Credentials: issue, list, revoke, share
- Verification: self-serve, public share link, admin portal
"""

import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .credential_issuer import CredentialIssuer
from .credential_verifier import (
    ANONYMOUS_VERIFIER,
    CredentialVerifier,
    TrustPolicy,
    VerificationResult,
)
from .did_manager import DIDManager
from .errors import CredentialNotFound, NotFound, Unauthorized, ValidationError
from .identity import IdentityProvider, PrincipalKind, SessionManager
from .models import (
    Activity,
    ContentRecord,
    Credential,
    CredentialTemplate,
    DIDRecord,
    Organization,
    User,
    VerificationRecord,
)
from .selective_disclosure import DisclosureResult, SelectiveDisclosure
from .storage import IntegrityError, MemoryStorage

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_length(name: str, value: Any, minimum: int, maximum: Optional[int] = None) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{name} is required")
    value = value.strip()
    if len(value) < minimum:
        raise ValidationError(f"{name} must be at least {minimum} characters")
    if maximum is not None and len(value) > maximum:
        raise ValidationError(f"{name} must be at most {maximum} characters")
    return value


def _check_email(email: Any) -> str:
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError("Invalid email address")
    return email.strip()


def _check_password(password: Any) -> str:
    if not isinstance(password, str) or len(password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    return password


class WalletService:
    """
    Main service class for wallet operations

    Provides a unified interface for:
    - Account registration, login and deletion
    - DID management
    - Credential issuance, revocation and disclosure
    - Credential verification under the three trust levels
    """

    def __init__(
        self,
        storage: Optional[MemoryStorage] = None,
        identity: Optional[IdentityProvider] = None,
        sessions: Optional[SessionManager] = None,
        public_base_url: str = "http://localhost:5000",
        government_id_validity_days: int = 5 * 365,
        disclosure_requires_owner: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage or MemoryStorage()
        self.identity = identity or IdentityProvider()
        self.sessions = sessions or SessionManager()
        self.public_base_url = public_base_url.rstrip("/")

        self.did_manager = DIDManager(self.storage)
        self.credential_issuer = CredentialIssuer(
            self.storage,
            self.did_manager,
            government_id_validity_days=government_id_validity_days,
        )
        self.credential_verifier = CredentialVerifier(
            self.storage, self.did_manager, clock=clock
        )
        self.disclosure = SelectiveDisclosure(
            self.storage, require_owner=disclosure_requires_owner
        )

    # ==================== USER ACCOUNTS ====================

    def register_user(self, username: str, email: str, password: str) -> Tuple[User, str]:
        """
        Register an end user and open a session.

        Returns:
            Tuple of (user, session_token)
        """
        username = _check_length("Username", username, 3, 50)
        email = _check_email(email)
        password = _check_password(password)

        if self.storage.get_user_by_username(username) is not None:
            raise ValidationError("Username already exists")
        if self.storage.get_user_by_email(email) is not None:
            raise ValidationError("Email already registered")

        external_id = self.identity.register(email, password)
        try:
            user = self.storage.create_user(
                User(username=username, email=email, external_id=external_id)
            )
        except IntegrityError as e:
            # Lost a race with a concurrent registration
            self.identity.remove(email)
            raise ValidationError(str(e))
        logger.info("Registered user %s", user.id)
        return user, self.sessions.issue(PrincipalKind.USER, user.id)

    def login_user(self, email: str, password: str) -> Tuple[User, str]:
        external_id = self.identity.authenticate(email, password)
        user = self.storage.get_user_by_external_id(external_id)
        if user is None:
            raise Unauthorized("Invalid credentials")
        return user, self.sessions.issue(PrincipalKind.USER, user.id)

    def current_user(self, token: Optional[str]) -> User:
        principal = self.sessions.validate(token, PrincipalKind.USER)
        user = self.storage.get_user(principal.id)
        if user is None:
            raise Unauthorized("User no longer exists")
        return user

    def logout(self, token: str) -> None:
        self.sessions.revoke(token)

    def delete_account(self, user_id: str) -> None:
        """Delete a user with all their DIDs, credentials and history"""
        user = self.storage.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        self.storage.delete_user(user_id)
        self.identity.remove(user.email)
        self.sessions.revoke_principal(PrincipalKind.USER, user_id)

    # ==================== ORGANIZATIONS ====================

    def register_organization(
        self, name: str, email: str, password: str, role: str = "verifier"
    ) -> Tuple[Organization, str]:
        name = _check_length("Organization name", name, 2, 100)
        email = _check_email(email)
        password = _check_password(password)

        if self.storage.get_organization_by_email(email) is not None:
            raise ValidationError("Organization with this email already exists")

        # Organization logins live in their own namespace
        external_id = self.identity.register(f"org:{email}", password)
        try:
            organization = self.storage.create_organization(
                Organization(
                    name=name, email=email, external_id=external_id, role=role or "verifier"
                )
            )
        except IntegrityError as e:
            self.identity.remove(f"org:{email}")
            raise ValidationError(str(e))
        logger.info("Registered organization %s (%s)", organization.id, organization.role)
        return organization, self.sessions.issue(PrincipalKind.ORGANIZATION, organization.id)

    def login_organization(self, email: str, password: str) -> Tuple[Organization, str]:
        external_id = self.identity.authenticate(f"org:{email}", password)
        organization = self.storage.get_organization_by_external_id(external_id)
        if organization is None:
            raise Unauthorized("Invalid credentials")
        if not organization.is_active:
            raise Unauthorized("Organization account is inactive")
        return organization, self.sessions.issue(PrincipalKind.ORGANIZATION, organization.id)

    def current_organization(self, token: Optional[str]) -> Organization:
        principal = self.sessions.validate(token, PrincipalKind.ORGANIZATION)
        organization = self.storage.get_organization(principal.id)
        if organization is None or not organization.is_active:
            raise Unauthorized("Organization account is inactive")
        return organization

    def seed_default_admin(
        self, email: Optional[str], password: Optional[str], name: str = "Default Admin Organization"
    ) -> Optional[Organization]:
        """Create the default admin organization once; no-op without credentials"""
        if not email or not password:
            return None
        existing = self.storage.get_organization_by_email(email)
        if existing is not None:
            return existing
        organization, _ = self.register_organization(name, email, password, role="admin")
        logger.info("Seeded default admin organization %s", organization.email)
        return organization

    # ==================== DIDs ====================

    def create_identity(self, user_id: str) -> DIDRecord:
        return self.did_manager.create_did(user_id)

    def current_identity(self, user_id: str) -> DIDRecord:
        did = self.did_manager.get_current_did(user_id)
        if did is None:
            raise NotFound("No DID found")
        return did

    def list_identities(self, user_id: str) -> List[DIDRecord]:
        return self.did_manager.list_dids(user_id)

    def switch_identity(self, user_id: str, did_id: str) -> DIDRecord:
        return self.did_manager.switch_current_did(user_id, did_id)

    def reveal_private_key(self, user_id: str, did_id: str) -> str:
        return self.did_manager.reveal_private_key(user_id, did_id)

    # ==================== CREDENTIALS ====================

    def issue_credential(
        self,
        user_id: str,
        credential_type: str,
        title: str,
        issuer: str,
        issued_date: Optional[str] = None,
        expires_date: Optional[str] = None,
    ) -> Credential:
        return self.credential_issuer.issue_from_template(
            user_id, credential_type, title, issuer, issued_date, expires_date
        )

    def issue_custom_credential(
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
        return self.credential_issuer.issue_custom(
            user_id,
            credential_type,
            title,
            issuer,
            credential_data,
            issued_date=issued_date,
            expires_date=expires_date,
            image_url=image_url,
            document_url=document_url,
        )

    def revoke_credential(self, user_id: str, credential_id: str) -> Credential:
        return self.credential_issuer.revoke_credential(user_id, credential_id)

    def list_credentials(self, user_id: str) -> List[Credential]:
        return self.storage.list_credentials_by_user(user_id)

    def get_credential(self, user_id: str, credential_id: str) -> Credential:
        """Fetch one credential owned by the caller"""
        credential = self.storage.get_credential(credential_id)
        if credential is None:
            raise CredentialNotFound()
        did = self.storage.get_did(credential.did_id)
        if did is None or did.user_id != user_id:
            raise Unauthorized("You do not own this credential")
        return credential

    def list_verifications(self, user_id: str, credential_id: str) -> List[VerificationRecord]:
        credential = self.get_credential(user_id, credential_id)
        return self.storage.list_verifications_by_credential(credential.id)

    def share_link(self, credential: Credential) -> str:
        return f"{self.public_base_url}/verify/{credential.share_token}"

    def disclose(
        self, credential_id: str, fields: List[str], caller_id: Optional[str] = None
    ) -> DisclosureResult:
        return self.disclosure.disclose(credential_id, fields, caller_id=caller_id)

    def list_activities(self, user_id: str) -> List[Activity]:
        return self.storage.list_activities_by_user(user_id)

    def get_content(self, cid: str) -> ContentRecord:
        record = self.storage.get_content(cid)
        if record is None:
            raise NotFound(f"Content not found: {cid}")
        return record

    def list_templates(self) -> List[CredentialTemplate]:
        return self.storage.list_templates()

    # ==================== VERIFICATION ====================

    def verify_self_serve(self, raw: Any, user_id: Optional[str] = None) -> VerificationResult:
        """
        Verify a link, token, id or JSON document for any caller.

        A signed-in caller is recorded under their current DID and gets an
        activity entry when the credential is stored.
        """
        verifier_did = ANONYMOUS_VERIFIER
        if user_id:
            did = self.did_manager.get_current_did(user_id)
            if did is not None:
                verifier_did = did.did_string
        return self.credential_verifier.verify(
            raw,
            TrustPolicy.TRUST_STORED_STATUS,
            verifier_did=verifier_did,
            actor_user_id=user_id,
        )

    def verify_share_token(self, share_token: str) -> VerificationResult:
        return self.credential_verifier.verify_share_token(share_token)

    def verify_admin(self, raw: Any, organization_id: str) -> VerificationResult:
        """Verify on behalf of a verifier organization; signatures must match"""
        organization = self.storage.get_organization(organization_id)
        if organization is None or not organization.is_active:
            raise Unauthorized("Organization authentication required")
        return self.credential_verifier.verify(
            raw,
            TrustPolicy.REQUIRE_SIGNATURE_MATCH,
            verifier_did=organization.verifier_did,
            extra_result={
                "verifiedBy": organization.name,
                "organizationRole": organization.role,
            },
        )

    # ==================== STATISTICS ====================

    def get_statistics(self) -> Dict[str, int]:
        return self.storage.get_statistics()
