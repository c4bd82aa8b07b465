"""
Selective disclosure over a stored credential.

Returns the literal values of the chosen subject fields together with a
hash commitment (see key_manager.disclosure_proof). The commitment cannot
be checked without the full subject; it is a demo mechanism, not a
zero-knowledge proof.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import key_manager
from .errors import CredentialNotFound, Unauthorized, ValidationError
from .models import Activity, ActivityType
from .storage import MemoryStorage

logger = logging.getLogger(__name__)


@dataclass
class DisclosureResult:
    proof: str
    disclosed_fields: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"proof": self.proof, "disclosedFields": self.disclosed_fields}


class SelectiveDisclosure:
    def __init__(self, storage: MemoryStorage, require_owner: bool = False):
        self.storage = storage
        self.require_owner = require_owner

    def disclose(
        self,
        credential_id: str,
        fields: List[str],
        caller_id: Optional[str] = None,
    ) -> DisclosureResult:
        """
        Disclose a subset of a credential's subject.

        Fields missing from the subject are skipped. When require_owner is
        set, caller_id must own the credential.
        """
        if not isinstance(fields, list) or not fields:
            raise ValidationError("At least one field must be selected")
        if not all(isinstance(name, str) for name in fields):
            raise ValidationError("Field names must be strings")

        credential = self.storage.get_credential(credential_id)
        if credential is None:
            raise CredentialNotFound()

        if self.require_owner:
            did = self.storage.get_did(credential.did_id)
            if caller_id is None or did is None or did.user_id != caller_id:
                raise Unauthorized("Only the owner may disclose this credential")

        subject = credential.credential_subject
        disclosed = {name: subject[name] for name in fields if name in subject}
        proof = key_manager.disclosure_proof(subject, fields)

        self.storage.create_activity(
            Activity(
                did_id=credential.did_id,
                type=ActivityType.CREDENTIAL_SHARED,
                description=f"Shared selective disclosure proof for {credential.title}",
                metadata={"credentialId": credential.id, "sharedFields": list(fields)},
            )
        )
        logger.info(
            "Disclosed %d of %d requested fields from credential %s",
            len(disclosed),
            len(fields),
            credential.id,
        )
        return DisclosureResult(proof=proof, disclosed_fields=disclosed)
