"""
In-memory storage for the DID wallet.

Plain dictionaries keyed by UUID, with secondary indexes for the fields that
must stay unique (DID string, share token, CID, account emails). Each
method is atomic under a single lock; nothing spans calls.
"""

import logging
import threading
from typing import Dict, List, Optional

from .models import (
    Activity,
    ContentRecord,
    Credential,
    CredentialStatus,
    CredentialTemplate,
    DIDRecord,
    Organization,
    User,
    VerificationRecord,
)

logger = logging.getLogger(__name__)


class IntegrityError(Exception):
    """A unique field collided with an existing record"""


DEFAULT_TEMPLATES = [
    CredentialTemplate(
        name="Educational Credential",
        type="EducationalCredential",
        issuer="University of Blockchain",
        schema={
            "degree": "string",
            "major": "string",
            "graduationYear": "number",
            "institution": "string",
        },
        required_fields=["degree", "major", "graduationYear"],
    ),
    CredentialTemplate(
        name="Government ID",
        type="GovernmentID",
        issuer="Digital Government Authority",
        schema={
            "idNumber": "string",
            "fullName": "string",
            "dateOfBirth": "string",
            "nationality": "string",
        },
        required_fields=["idNumber", "fullName", "dateOfBirth"],
    ),
    CredentialTemplate(
        name="Employment Credential",
        type="EmploymentCredential",
        issuer="Tech Corp Inc.",
        schema={
            "position": "string",
            "company": "string",
            "startDate": "string",
            "endDate": "string",
        },
        required_fields=["position", "company", "startDate"],
    ),
]


class MemoryStorage:
    """
    Storage backend for users, organizations, DIDs, credentials and audit data

    Features:
    - CRUD by id
    - Lookup by unique field (email, DID string, share token, CID)
    - Listing by owner, newest first
    - Cascading account deletion
    """

    def __init__(self, seed_templates: bool = True):
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}
        self._organizations: Dict[str, Organization] = {}
        self._dids: Dict[str, DIDRecord] = {}
        self._credentials: Dict[str, Credential] = {}
        self._verifications: Dict[str, VerificationRecord] = {}
        self._contents: Dict[str, ContentRecord] = {}  # cid -> record
        self._activities: Dict[str, Activity] = {}
        self._templates: Dict[str, CredentialTemplate] = {}

        self._did_by_string: Dict[str, str] = {}
        self._credential_by_token: Dict[str, str] = {}

        if seed_templates:
            for template in DEFAULT_TEMPLATES:
                self.create_template(
                    CredentialTemplate(
                        name=template.name,
                        type=template.type,
                        issuer=template.issuer,
                        schema=dict(template.schema),
                        required_fields=list(template.required_fields),
                    )
                )

    # ==================== USERS ====================

    def create_user(self, user: User) -> User:
        with self._lock:
            for existing in self._users.values():
                if existing.username == user.username:
                    raise IntegrityError(f"Username already exists: {user.username}")
                if existing.email.lower() == user.email.lower():
                    raise IntegrityError(f"Email already registered: {user.email}")
                if existing.external_id == user.external_id:
                    raise IntegrityError("External identity already linked")
            self._users[user.id] = user
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            return next(
                (u for u in self._users.values() if u.username == username), None
            )

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return next(
                (u for u in self._users.values() if u.email.lower() == email.lower()),
                None,
            )

    def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        with self._lock:
            return next(
                (u for u in self._users.values() if u.external_id == external_id),
                None,
            )

    def set_current_did(self, user_id: str, did_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            did = self._dids.get(did_id)
            if user is None or did is None or did.user_id != user_id:
                return None
            user.current_did_id = did_id
            return user

    def delete_user(self, user_id: str) -> bool:
        """
        Delete a user and everything they own.

        Order: verifications of their credentials, credentials, activities,
        DIDs, then the user.
        """
        with self._lock:
            if user_id not in self._users:
                return False

            did_ids = {d.id for d in self._dids.values() if d.user_id == user_id}
            credential_ids = {
                c.id for c in self._credentials.values() if c.did_id in did_ids
            }

            for vid in [
                v.id
                for v in self._verifications.values()
                if v.credential_id in credential_ids
            ]:
                del self._verifications[vid]

            for cid in credential_ids:
                credential = self._credentials.pop(cid)
                if credential.share_token:
                    self._credential_by_token.pop(credential.share_token, None)

            for aid in [a.id for a in self._activities.values() if a.did_id in did_ids]:
                del self._activities[aid]

            for did_id in did_ids:
                did = self._dids.pop(did_id)
                self._did_by_string.pop(did.did_string, None)

            del self._users[user_id]
            logger.info(
                "Deleted user %s with %d DIDs and %d credentials",
                user_id,
                len(did_ids),
                len(credential_ids),
            )
            return True

    # ==================== ORGANIZATIONS ====================

    def create_organization(self, organization: Organization) -> Organization:
        with self._lock:
            for existing in self._organizations.values():
                if existing.email.lower() == organization.email.lower():
                    raise IntegrityError(
                        f"Organization with this email already exists: {organization.email}"
                    )
                if existing.external_id == organization.external_id:
                    raise IntegrityError("External identity already linked")
            self._organizations[organization.id] = organization
            return organization

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        return self._organizations.get(organization_id)

    def get_organization_by_email(self, email: str) -> Optional[Organization]:
        with self._lock:
            return next(
                (
                    o
                    for o in self._organizations.values()
                    if o.email.lower() == email.lower()
                ),
                None,
            )

    def get_organization_by_external_id(self, external_id: str) -> Optional[Organization]:
        with self._lock:
            return next(
                (
                    o
                    for o in self._organizations.values()
                    if o.external_id == external_id
                ),
                None,
            )

    # ==================== DIDs ====================

    def create_did(self, did: DIDRecord) -> DIDRecord:
        """
        Store a DID; it becomes the owner's current DID if they have none.
        """
        with self._lock:
            user = self._users.get(did.user_id)
            if user is None:
                raise IntegrityError(f"Unknown user: {did.user_id}")
            if did.did_string in self._did_by_string:
                raise IntegrityError(f"DID already exists: {did.did_string}")

            self._dids[did.id] = did
            self._did_by_string[did.did_string] = did.id
            if user.current_did_id is None:
                user.current_did_id = did.id
            return did

    def get_did(self, did_id: str) -> Optional[DIDRecord]:
        return self._dids.get(did_id)

    def get_did_by_string(self, did_string: str) -> Optional[DIDRecord]:
        with self._lock:
            did_id = self._did_by_string.get(did_string)
            return self._dids.get(did_id) if did_id else None

    def list_dids_by_user(self, user_id: str) -> List[DIDRecord]:
        with self._lock:
            dids = [d for d in self._dids.values() if d.user_id == user_id]
        return sorted(dids, key=lambda d: d.created_at, reverse=True)

    # ==================== CREDENTIALS ====================

    def create_credential(self, credential: Credential) -> Credential:
        with self._lock:
            if credential.did_id not in self._dids:
                raise IntegrityError(f"Unknown DID: {credential.did_id}")
            if credential.id in self._credentials:
                raise IntegrityError(f"Credential already exists: {credential.id}")
            if credential.share_token:
                if credential.share_token in self._credential_by_token:
                    raise IntegrityError("Share token collision")
                self._credential_by_token[credential.share_token] = credential.id
            self._credentials[credential.id] = credential
            return credential

    def get_credential(self, credential_id: str) -> Optional[Credential]:
        return self._credentials.get(credential_id)

    def get_credential_by_share_token(self, share_token: str) -> Optional[Credential]:
        with self._lock:
            credential_id = self._credential_by_token.get(share_token)
            return self._credentials.get(credential_id) if credential_id else None

    def list_credentials_by_did(self, did_id: str) -> List[Credential]:
        with self._lock:
            credentials = [c for c in self._credentials.values() if c.did_id == did_id]
        return sorted(credentials, key=lambda c: c.issued_at, reverse=True)

    def list_credentials_by_user(self, user_id: str) -> List[Credential]:
        with self._lock:
            did_ids = {d.id for d in self._dids.values() if d.user_id == user_id}
            credentials = [
                c for c in self._credentials.values() if c.did_id in did_ids
            ]
        return sorted(credentials, key=lambda c: c.issued_at, reverse=True)

    def revoke_credential(self, credential_id: str) -> Optional[str]:
        """
        Mark a credential revoked and return its previous status.

        Check and write happen under one lock, so of several concurrent
        callers exactly one sees a non-revoked previous status.
        Returns None for an unknown id.
        """
        with self._lock:
            credential = self._credentials.get(credential_id)
            if credential is None:
                return None
            previous = credential.status
            if not credential.is_revoked:
                credential.status = CredentialStatus.REVOKED.value
            return previous

    # ==================== VERIFICATIONS ====================

    def create_verification(self, record: VerificationRecord) -> VerificationRecord:
        with self._lock:
            self._verifications[record.id] = record
            return record

    def get_verification(self, verification_id: str) -> Optional[VerificationRecord]:
        return self._verifications.get(verification_id)

    def list_verifications_by_credential(
        self, credential_id: str
    ) -> List[VerificationRecord]:
        with self._lock:
            records = [
                v
                for v in self._verifications.values()
                if v.credential_id == credential_id
            ]
        return sorted(records, key=lambda v: v.verified_at, reverse=True)

    # ==================== CONTENT ====================

    def create_content(self, record: ContentRecord) -> ContentRecord:
        """Store a content record; an identical CID is returned as-is"""
        with self._lock:
            existing = self._contents.get(record.cid)
            if existing is not None:
                return existing
            self._contents[record.cid] = record
            return record

    def get_content(self, cid: str) -> Optional[ContentRecord]:
        return self._contents.get(cid)

    # ==================== ACTIVITIES ====================

    def create_activity(self, activity: Activity) -> Activity:
        with self._lock:
            self._activities[activity.id] = activity
            return activity

    def list_activities_by_did(self, did_id: str) -> List[Activity]:
        with self._lock:
            activities = [a for a in self._activities.values() if a.did_id == did_id]
        return sorted(activities, key=lambda a: a.timestamp, reverse=True)

    def list_activities_by_user(self, user_id: str) -> List[Activity]:
        with self._lock:
            did_ids = {d.id for d in self._dids.values() if d.user_id == user_id}
            activities = [
                a for a in self._activities.values() if a.did_id in did_ids
            ]
        return sorted(activities, key=lambda a: a.timestamp, reverse=True)

    # ==================== TEMPLATES ====================

    def create_template(self, template: CredentialTemplate) -> CredentialTemplate:
        with self._lock:
            self._templates[template.id] = template
            return template

    def get_template(self, template_id: str) -> Optional[CredentialTemplate]:
        return self._templates.get(template_id)

    def list_templates(self) -> List[CredentialTemplate]:
        with self._lock:
            return list(self._templates.values())

    # ==================== STATISTICS ====================

    def get_statistics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "users": len(self._users),
                "organizations": len(self._organizations),
                "dids": len(self._dids),
                "credentials": len(self._credentials),
                "revoked": sum(1 for c in self._credentials.values() if c.is_revoked),
                "verifications": len(self._verifications),
            }
