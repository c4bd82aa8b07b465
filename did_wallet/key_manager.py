"""
Key Manager - Keys, signatures and content hashes for the DID wallet

Supports:
- ECDSA P-256 (ES256) key pairs exported as JWK strings
- did:key identifiers derived from the public key
- Detached hex signatures over canonical JSON
- CID-shaped content hashes and disclosure commitments

Every function here is pure apart from RNG consumption.
"""

import base64
import hashlib
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)


CURVE_NAME = "P-256"
DID_PREFIX = "did:key:z"
CID_PREFIX = "Qm"

# r || s, 32 bytes each
_COORDINATE_SIZE = 32
_SIGNATURE_SIZE = 2 * _COORDINATE_SIZE

DISCLOSURE_PROOF_TYPE = "HashCommitmentDisclosure"
DISCLOSURE_VERIFICATION_METHOD = "did:example:123#keys-1"


@dataclass
class KeyPair:
    """An exported P-256 key pair; both halves are JWK JSON strings"""
    public_key: str
    private_key: str
    algorithm: str = "ES256"


# ==================== ENCODING HELPERS ====================

def canonical_json(payload: Any) -> bytes:
    """
    Serialize a payload into canonical JSON bytes.

    - Keys sorted
    - No extra whitespace
    - UTF-8, non-ASCII characters kept as-is
    - NaN and Infinity rejected with ValueError
    """
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _int_to_b64url(value: int) -> str:
    return _b64url_encode(value.to_bytes(_COORDINATE_SIZE, "big"))


def _b64url_to_int(value: str) -> int:
    return int.from_bytes(_b64url_decode(value), "big")


def _load_jwk(serialized: str) -> Dict[str, Any]:
    jwk = json.loads(serialized)
    if not isinstance(jwk, dict):
        raise ValueError("JWK must be a JSON object")
    if jwk.get("kty") != "EC" or jwk.get("crv") != CURVE_NAME:
        raise ValueError(f"Unsupported key type: {jwk.get('kty')}/{jwk.get('crv')}")
    return jwk


def _import_public_key(serialized: str) -> ec.EllipticCurvePublicKey:
    jwk = _load_jwk(serialized)
    numbers = ec.EllipticCurvePublicNumbers(
        _b64url_to_int(jwk["x"]), _b64url_to_int(jwk["y"]), ec.SECP256R1()
    )
    return numbers.public_key()


def _import_private_key(serialized: str) -> ec.EllipticCurvePrivateKey:
    jwk = _load_jwk(serialized)
    if "d" not in jwk:
        raise ValueError("JWK has no private component")
    return ec.derive_private_key(_b64url_to_int(jwk["d"]), ec.SECP256R1())


# ==================== KEY GENERATION ====================

def generate_keypair() -> KeyPair:
    """
    Generate a P-256 key pair.

    Returns:
        KeyPair whose public and private halves are JWK JSON strings
    """
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_numbers = private_key.private_numbers()
    public_numbers = private_numbers.public_numbers

    public_jwk = {
        "kty": "EC",
        "crv": CURVE_NAME,
        "x": _int_to_b64url(public_numbers.x),
        "y": _int_to_b64url(public_numbers.y),
        "ext": True,
        "key_ops": ["verify"],
    }
    private_jwk = dict(
        public_jwk,
        d=_int_to_b64url(private_numbers.private_value),
        key_ops=["sign"],
    )

    return KeyPair(
        public_key=json.dumps(public_jwk),
        private_key=json.dumps(private_jwk),
    )


def derive_did(public_key: str) -> str:
    """
    Derive the DID string for a serialized public key.

    did:key:z + the first 32 hex characters of SHA-256(public_key)
    """
    digest = hashlib.sha256(public_key.encode("utf-8")).hexdigest()
    return f"{DID_PREFIX}{digest[:32]}"


# ==================== SIGNING ====================

def sign(payload: Any, private_key: str) -> str:
    """
    Sign a JSON payload with ECDSA/SHA-256.

    Args:
        payload: Any JSON-serializable value
        private_key: Private JWK string from generate_keypair()

    Returns:
        Hex encoded raw signature (r || s, 64 bytes)
    """
    key = _import_private_key(private_key)
    der_signature = key.sign(canonical_json(payload), ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(der_signature)
    raw = r.to_bytes(_COORDINATE_SIZE, "big") + s.to_bytes(_COORDINATE_SIZE, "big")
    return raw.hex()


# ==================== VERIFICATION ====================

def verify(payload: Any, signature: str, public_key: str) -> bool:
    """
    Verify a hex signature produced by sign().

    Never raises: malformed keys, malformed hex, a foreign curve or an
    unserializable payload all yield False.
    """
    try:
        raw = bytes.fromhex(signature)
        if len(raw) != _SIGNATURE_SIZE:
            return False
        r = int.from_bytes(raw[:_COORDINATE_SIZE], "big")
        s = int.from_bytes(raw[_COORDINATE_SIZE:], "big")
        key = _import_public_key(public_key)
        key.verify(
            encode_dss_signature(r, s),
            canonical_json(payload),
            ec.ECDSA(hashes.SHA256()),
        )
        return True
    except Exception:
        return False


# ==================== CONTENT HASHES ====================

def content_hash(payload: Any) -> str:
    """CID-shaped identifier: Qm + first 44 hex chars of SHA-256(JSON)"""
    digest = hashlib.sha256(canonical_json(payload)).hexdigest()
    return f"{CID_PREFIX}{digest[:44]}"


def disclosure_proof(full_subject: Dict[str, Any], selected_fields: List[str]) -> str:
    """
    Build a selective-disclosure proof string.

    This is a hash commitment over the whole subject and the chosen field
    names. It is not a zero-knowledge proof and nothing in the system
    verifies it; a verifier would need the full subject to recompute it.

    Returns:
        Pretty-printed JSON string
    """
    commitment = hashlib.sha256(
        canonical_json(
            {"credentialData": full_subject, "selectedFields": list(selected_fields)}
        )
    ).hexdigest()

    proof = {
        "type": DISCLOSURE_PROOF_TYPE,
        "proofPurpose": "authentication",
        "created": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "verificationMethod": DISCLOSURE_VERIFICATION_METHOD,
        "challenge": secrets.token_hex(32),
        "disclosedFields": list(selected_fields),
        "proofValue": commitment,
    }
    return json.dumps(proof, indent=2)
