"""
Credential Issuer Tests
=======================
"""

import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from did_wallet import key_manager
from did_wallet.credential_issuer import CredentialIssuer, issuer_did_for
from did_wallet.did_manager import DIDManager
from did_wallet.errors import (
    AlreadyRevoked,
    CredentialNotFound,
    NoIdentity,
    Unauthorized,
    ValidationError,
)
from did_wallet.models import ActivityType, User
from did_wallet.storage import MemoryStorage


class IssuerTestBase:
    def setup_method(self):
        self.storage = MemoryStorage()
        self.did_manager = DIDManager(self.storage)
        self.issuer = CredentialIssuer(self.storage, self.did_manager)
        self.user = self.storage.create_user(
            User(username="alice", email="alice@example.com", external_id="ext-alice")
        )
        self.did = self.did_manager.create_did(self.user.id)


class TestTemplateIssuance(IssuerTestBase):
    """Test templated credentials"""

    def test_educational_credential(self):
        credential = self.issuer.issue_from_template(
            self.user.id, "EducationalCredential", "BSc Degree", "Test University"
        )

        subject = credential.credential_subject
        assert subject["id"] == self.did.did_string
        assert subject["type"] == "EducationalCredential"
        assert subject["institution"] == "Test University"
        assert subject["graduationYear"] == 2024

        assert credential.status == "verified"
        assert credential.did_id == self.did.id
        assert credential.issuer_did == "did:web:test-university.com"
        assert credential.expires_at is None
        assert credential.share_token
        print(f"✅ Issued credential: {credential.id}")

    def test_proof_and_signature(self):
        credential = self.issuer.issue_from_template(
            self.user.id, "EmploymentCredential", "Engineer", "Tech Corp"
        )
        proof = credential.proof

        assert proof["type"] == "EcdsaSecp256r1Signature2019"
        assert proof["proofPurpose"] == "assertionMethod"
        assert proof["verificationMethod"] == f"{self.did.did_string}#keys-1"
        assert key_manager.verify(credential.credential_subject, proof["signature"], self.did.public_key)

    def test_content_record_and_activity(self):
        credential = self.issuer.issue_from_template(
            self.user.id, "EducationalCredential", "BSc Degree", "Test University"
        )

        assert credential.ipfs_cid == key_manager.content_hash(credential.credential_subject)
        record = self.storage.get_content(credential.ipfs_cid)
        assert record.file_name == "BSc Degree.json"
        assert record.file_size == len(key_manager.canonical_json(credential.credential_subject))
        assert record.mime_type == "application/json"

        issued = [
            a for a in self.storage.list_activities_by_did(self.did.id)
            if a.type == ActivityType.CREDENTIAL_ISSUED
        ]
        assert [a.metadata["credentialId"] for a in issued] == [credential.id]

    def test_government_id_default_expiry(self):
        credential = self.issuer.issue_from_template(
            self.user.id, "GovernmentID", "National ID", "Digital Government Authority",
            issued_date="2024-01-01",
        )

        issued = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert credential.issued_at == issued
        assert credential.expires_at == issued + timedelta(days=5 * 365)
        assert re.fullmatch(r"ID-[A-Z0-9]{8}", credential.credential_subject["idNumber"])

    def test_explicit_expiry_wins(self):
        credential = self.issuer.issue_from_template(
            self.user.id, "GovernmentID", "National ID", "Gov", expires_date="2030-06-01T00:00:00Z"
        )
        assert credential.expires_at == datetime(2030, 6, 1, tzinfo=timezone.utc)

    def test_unknown_type_gets_minimal_subject(self):
        credential = self.issuer.issue_from_template(self.user.id, "MembershipCard", "Gym", "Gym Co")
        assert set(credential.credential_subject) == {"id", "type"}

    def test_invalid_date_rejected(self):
        with pytest.raises(ValidationError):
            self.issuer.issue_from_template(
                self.user.id, "EducationalCredential", "BSc", "Uni", issued_date="yesterday-ish"
            )
        assert self.storage.list_credentials_by_user(self.user.id) == []

    def test_issuer_did_slug(self):
        assert issuer_did_for("  Tech   Corp Inc. ") == "did:web:tech-corp-inc..com"


class TestFailClosed:
    """Failing issuance writes nothing"""

    def setup_method(self):
        self.storage = MemoryStorage()
        self.did_manager = DIDManager(self.storage)
        self.issuer = CredentialIssuer(self.storage, self.did_manager)
        self.user = self.storage.create_user(
            User(username="bob", email="bob@example.com", external_id="ext-bob")
        )

    def test_no_identity(self):
        with pytest.raises(NoIdentity) as excinfo:
            self.issuer.issue_from_template(self.user.id, "EducationalCredential", "BSc", "Uni")

        assert excinfo.value.kind == "no_identity"
        stats = self.storage.get_statistics()
        assert stats["credentials"] == 0
        assert stats["dids"] == 0

    def test_custom_data_must_be_object(self):
        did = self.did_manager.create_did(self.user.id)
        before = len(self.storage.list_activities_by_did(did.id))

        for bad in (["a", "b"], "text", 42, None):
            with pytest.raises(ValidationError):
                self.issuer.issue_custom(self.user.id, "Custom", "Title", "Issuer", bad)

        assert self.storage.list_credentials_by_did(did.id) == []
        assert len(self.storage.list_activities_by_did(did.id)) == before
        print("✅ Non-object custom data rejected without writes")

    def test_non_finite_numbers_rejected(self):
        """NaN and Infinity have no JSON form and never reach storage"""
        did = self.did_manager.create_did(self.user.id)
        before = len(self.storage.list_activities_by_did(did.id))

        for value in (float("nan"), float("inf"), float("-inf")):
            with pytest.raises(ValidationError):
                self.issuer.issue_custom(self.user.id, "Custom", "Title", "Issuer", {"score": value})

        assert self.storage.list_credentials_by_did(did.id) == []
        assert self.storage.get_statistics()["credentials"] == 0
        assert len(self.storage.list_activities_by_did(did.id)) == before


class TestCustomIssuance(IssuerTestBase):
    def test_custom_subject_and_media(self):
        credential = self.issuer.issue_custom(
            self.user.id,
            "CustomCredential",
            "Diploma",
            "Test University",
            {"name": "Ana", "degree": "BSc"},
            image_url="https://example.com/a.png",
            document_url="",
        )

        assert credential.credential_subject == {
            "id": self.did.did_string,
            "name": "Ana",
            "degree": "BSc",
        }
        assert credential.image_url == "https://example.com/a.png"
        assert credential.document_url is None
        assert key_manager.verify(
            credential.credential_subject, credential.proof["signature"], self.did.public_key
        )

    def test_share_tokens_unique(self):
        credentials = [
            self.issuer.issue_custom(self.user.id, "Custom", f"Title {i}", "Issuer", {"n": i})
            for i in range(25)
        ]
        tokens = {c.share_token for c in credentials}

        assert len(tokens) == 25
        for credential in credentials:
            assert self.storage.get_credential_by_share_token(credential.share_token) is credential


class TestRevocation(IssuerTestBase):
    """Test owner-only, one-way revocation"""

    def setup_method(self):
        super().setup_method()
        self.credential = self.issuer.issue_from_template(
            self.user.id, "EducationalCredential", "BSc", "Uni"
        )

    def test_owner_revokes(self):
        revoked = self.issuer.revoke_credential(self.user.id, self.credential.id)

        assert revoked.status == "revoked"
        assert revoked.is_revoked
        types = [a.type for a in self.storage.list_activities_by_did(self.did.id)]
        assert ActivityType.CREDENTIAL_REVOKED in types
        print("✅ Credential revoked by owner")

    def test_other_user_cannot_revoke(self):
        mallory = self.storage.create_user(
            User(username="mallory", email="m@example.com", external_id="ext-m")
        )
        with pytest.raises(Unauthorized):
            self.issuer.revoke_credential(mallory.id, self.credential.id)
        assert self.storage.get_credential(self.credential.id).status == "verified"

    def test_revoke_twice(self):
        self.issuer.revoke_credential(self.user.id, self.credential.id)
        with pytest.raises(AlreadyRevoked):
            self.issuer.revoke_credential(self.user.id, self.credential.id)

    def test_revoke_missing(self):
        with pytest.raises(CredentialNotFound):
            self.issuer.revoke_credential(self.user.id, "missing")

    def test_concurrent_revokes_succeed_once(self):
        def attempt(_):
            try:
                self.issuer.revoke_credential(self.user.id, self.credential.id)
                return "revoked"
            except AlreadyRevoked:
                return "already"

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(16)))

        assert outcomes.count("revoked") == 1
        assert outcomes.count("already") == 15
        revocations = [
            a for a in self.storage.list_activities_by_did(self.did.id)
            if a.type == ActivityType.CREDENTIAL_REVOKED
        ]
        assert len(revocations) == 1
