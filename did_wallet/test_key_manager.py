"""
Key Manager Tests
=================

Signatures, DID derivation, content hashes and disclosure commitments.
"""

import hashlib
import json
import re

import pytest

from did_wallet import key_manager


class TestKeyGeneration:
    """Test P-256 key generation"""

    def test_generate_keypair_exports_jwk(self):
        """Both halves are P-256 JWK strings; only the private half has d"""
        keypair = key_manager.generate_keypair()

        public_jwk = json.loads(keypair.public_key)
        private_jwk = json.loads(keypair.private_key)

        assert public_jwk["kty"] == "EC"
        assert public_jwk["crv"] == "P-256"
        assert "d" not in public_jwk
        assert private_jwk["d"]
        assert private_jwk["x"] == public_jwk["x"]
        assert keypair.algorithm == "ES256"
        print("✅ P-256 key pair generated")

    def test_keypairs_are_distinct(self):
        first = key_manager.generate_keypair()
        second = key_manager.generate_keypair()
        assert first.public_key != second.public_key


class TestDIDDerivation:
    """Test did:key derivation"""

    def test_did_format(self):
        keypair = key_manager.generate_keypair()
        did = key_manager.derive_did(keypair.public_key)

        assert re.fullmatch(r"did:key:z[0-9a-f]{32}", did)
        expected = hashlib.sha256(keypair.public_key.encode("utf-8")).hexdigest()[:32]
        assert did == f"did:key:z{expected}"
        print(f"✅ Derived {did}")

    def test_did_is_deterministic(self):
        keypair = key_manager.generate_keypair()
        assert key_manager.derive_did(keypair.public_key) == key_manager.derive_did(keypair.public_key)

    def test_distinct_keys_give_distinct_dids(self):
        dids = {key_manager.derive_did(key_manager.generate_keypair().public_key) for _ in range(20)}
        assert len(dids) == 20


class TestSignatures:
    """Test signing and verification"""

    def setup_method(self):
        self.keypair = key_manager.generate_keypair()
        self.payload = {
            "id": "did:key:z0123",
            "degree": "BSc",
            "year": 2023,
            "nested": {"b": [1, 2, 3], "a": "Ünïcode"},
        }

    def test_round_trip(self):
        """A signature verifies against the matching public key"""
        signature = key_manager.sign(self.payload, self.keypair.private_key)

        assert len(signature) == 128
        assert key_manager.verify(self.payload, signature, self.keypair.public_key) is True
        print("✅ sign/verify round trip: Valid")

    def test_key_order_does_not_matter(self):
        signature = key_manager.sign(self.payload, self.keypair.private_key)
        reordered = dict(reversed(list(self.payload.items())))
        assert key_manager.verify(reordered, signature, self.keypair.public_key) is True

    def test_tampered_payload_fails(self):
        signature = key_manager.sign(self.payload, self.keypair.private_key)
        tampered = dict(self.payload, degree="PhD")
        assert key_manager.verify(tampered, signature, self.keypair.public_key) is False

    def test_other_key_fails(self):
        signature = key_manager.sign(self.payload, self.keypair.private_key)
        other = key_manager.generate_keypair()
        assert key_manager.verify(self.payload, signature, other.public_key) is False

    def test_malformed_inputs_return_false(self):
        """Verification never raises"""
        signature = key_manager.sign(self.payload, self.keypair.private_key)
        public_key = self.keypair.public_key

        assert key_manager.verify(self.payload, "not-hex", public_key) is False
        assert key_manager.verify(self.payload, signature[:-2], public_key) is False
        assert key_manager.verify(self.payload, "", public_key) is False
        assert key_manager.verify(self.payload, signature, "not a key") is False
        assert key_manager.verify(self.payload, signature, "{}") is False
        assert key_manager.verify(self.payload, signature, json.dumps({"kty": "EC", "crv": "P-384"})) is False
        assert key_manager.verify(self.payload, None, public_key) is False
        assert key_manager.verify({"bad": object()}, signature, public_key) is False
        print("✅ Malformed inputs degrade to False")


class TestContentHashes:
    """Test CID-shaped hashes and disclosure commitments"""

    def test_content_hash_format(self):
        cid = key_manager.content_hash({"a": 1})
        assert re.fullmatch(r"Qm[0-9a-f]{44}", cid)
        assert cid == key_manager.content_hash({"a": 1})
        assert cid != key_manager.content_hash({"a": 2})

    def test_disclosure_proof_is_commitment(self):
        subject = {"name": "Ana", "degree": "BSc", "year": 2023}
        proof = json.loads(key_manager.disclosure_proof(subject, ["name", "year"]))

        expected = hashlib.sha256(
            key_manager.canonical_json(
                {"credentialData": subject, "selectedFields": ["name", "year"]}
            )
        ).hexdigest()
        assert proof["proofValue"] == expected
        assert proof["type"] == "HashCommitmentDisclosure"
        assert proof["disclosedFields"] == ["name", "year"]
        assert len(proof["challenge"]) == 64

    def test_disclosure_challenge_is_fresh(self):
        subject = {"name": "Ana"}
        first = json.loads(key_manager.disclosure_proof(subject, ["name"]))
        second = json.loads(key_manager.disclosure_proof(subject, ["name"]))
        assert first["challenge"] != second["challenge"]
        assert first["proofValue"] == second["proofValue"]

    def test_non_finite_numbers_not_serializable(self):
        for value in (float("nan"), float("inf")):
            with pytest.raises(ValueError):
                key_manager.canonical_json({"score": value})
