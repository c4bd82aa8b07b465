"""
DID Manager - Create and resolve the wallet's decentralized identifiers

DID Format: did:key:z<first 32 hex chars of SHA-256(public JWK)>

A user may hold several DIDs; exactly one is current at a time. The first
DID a user creates becomes current until they switch explicitly.
"""

import logging
from typing import List, Optional

from . import key_manager
from .errors import NoIdentity, NotFound, Unauthorized
from .models import Activity, ActivityType, Credential, DIDRecord, SensitiveKey
from .storage import MemoryStorage

logger = logging.getLogger(__name__)


class DIDManager:
    """
    Manages DID creation, resolution and the per-user current DID

    Features:
    - Create new DIDs backed by fresh P-256 keys
    - Resolve DIDs by id or DID string
    - Resolve the issuing DID of a credential
    - Switch the current DID
    - Reveal private keys to their owner only
    """

    def __init__(self, storage: MemoryStorage):
        self.storage = storage

    # ==================== DID CREATION ====================

    def create_did(self, user_id: str) -> DIDRecord:
        """
        Create a new DID for a user.

        Args:
            user_id: Owning user id

        Returns:
            The stored DIDRecord
        """
        if self.storage.get_user(user_id) is None:
            raise NotFound(f"User not found: {user_id}")

        keypair = key_manager.generate_keypair()
        did = DIDRecord(
            user_id=user_id,
            did_string=key_manager.derive_did(keypair.public_key),
            public_key=keypair.public_key,
            private_key=SensitiveKey(keypair.private_key),
            method="key",
            metadata={"curve": key_manager.CURVE_NAME, "algorithm": keypair.algorithm},
        )
        self.storage.create_did(did)

        self.storage.create_activity(
            Activity(
                did_id=did.id,
                type=ActivityType.DID_CREATED,
                description="Created new decentralized identifier",
                metadata={"method": did.method},
            )
        )
        logger.info("Created %s for user %s", did.did_string, user_id)
        return did

    # ==================== CURRENT DID ====================

    def get_current_did(self, user_id: str) -> Optional[DIDRecord]:
        """Return the user's current DID, falling back to their first one"""
        user = self.storage.get_user(user_id)
        if user is None:
            return None

        if user.current_did_id:
            did = self.storage.get_did(user.current_did_id)
            if did is not None:
                return did

        dids = self.storage.list_dids_by_user(user_id)
        if not dids:
            return None
        first = dids[-1]
        self.storage.set_current_did(user_id, first.id)
        return first

    def require_current_did(self, user_id: str) -> DIDRecord:
        did = self.get_current_did(user_id)
        if did is None:
            raise NoIdentity()
        return did

    def switch_current_did(self, user_id: str, did_id: str) -> DIDRecord:
        did = self.get_owned_did(user_id, did_id)
        self.storage.set_current_did(user_id, did.id)
        logger.info("User %s switched current DID to %s", user_id, did.did_string)
        return did

    # ==================== RESOLUTION ====================

    def list_dids(self, user_id: str) -> List[DIDRecord]:
        return self.storage.list_dids_by_user(user_id)

    def get_owned_did(self, user_id: str, did_id: str) -> DIDRecord:
        did = self.storage.get_did(did_id)
        if did is None:
            raise NotFound(f"DID not found: {did_id}")
        if did.user_id != user_id:
            raise Unauthorized("DID belongs to another user")
        return did

    def resolve(self, did_string: str) -> Optional[DIDRecord]:
        """Resolve a DID string to its record"""
        return self.storage.get_did_by_string(did_string)

    def resolve_issuer(self, credential: Credential) -> Optional[DIDRecord]:
        """
        Find the DID that signed a credential.

        Tries, in order: the owning DID id, the subject id, and the DID part
        of the proof's verification method.
        """
        if credential.did_id:
            did = self.storage.get_did(credential.did_id)
            if did is not None:
                return did

        subject_id = credential.credential_subject.get("id")
        if isinstance(subject_id, str):
            did = self.resolve(subject_id)
            if did is not None:
                return did

        method = credential.proof.get("verificationMethod")
        if isinstance(method, str) and method:
            return self.resolve(method.split("#", 1)[0])
        return None

    def reveal_private_key(self, user_id: str, did_id: str) -> str:
        did = self.get_owned_did(user_id, did_id)
        return did.private_key_for(user_id)
