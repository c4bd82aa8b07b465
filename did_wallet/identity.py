"""
Identity provider and session tokens.

The identity provider checks passwords and hands back a stable external id;
accounts in storage only ever see that id. Sessions are opaque Fernet tokens
wrapping a random session id, so a token can be revoked server-side and
expires after a fixed TTL.
"""

import base64
import hashlib
import json
import logging
import secrets
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Union

import bcrypt
from cryptography.fernet import Fernet, InvalidToken

from .errors import Unauthorized, ValidationError

logger = logging.getLogger(__name__)


class PrincipalKind(str, Enum):
    USER = "user"
    ORGANIZATION = "organization"


@dataclass
class Principal:
    kind: PrincipalKind
    id: str
    session_id: str


class IdentityProvider:
    """Password accounts keyed by email"""

    def __init__(self):
        self._lock = threading.Lock()
        self._accounts: Dict[str, Tuple[str, bytes]] = {}

    @staticmethod
    def hash_password(password: str) -> bytes:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())

    @staticmethod
    def verify_password(password: str, hashed: bytes) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), hashed)

    def register(self, email: str, password: str) -> str:
        """Create an account; returns its stable external id"""
        key = email.strip().lower()
        hashed = self.hash_password(password)
        with self._lock:
            if key in self._accounts:
                raise ValidationError("Email already registered")
            external_id = str(uuid.uuid4())
            self._accounts[key] = (external_id, hashed)
        return external_id

    def authenticate(self, email: str, password: str) -> str:
        with self._lock:
            account = self._accounts.get(email.strip().lower())
        if account is None or not self.verify_password(password, account[1]):
            logger.warning("Failed login for %s", email)
            raise Unauthorized("Invalid credentials")
        return account[0]

    def remove(self, email: str) -> None:
        with self._lock:
            self._accounts.pop(email.strip().lower(), None)


class SessionManager:
    """
    Issues and validates session tokens

    Features:
    - Fernet-encrypted tokens with a max age
    - Server-side revocation (logout, account deletion)
    - Tokens are bound to one principal kind
    """

    def __init__(self, secret_key: Optional[Union[str, bytes]] = None, ttl_seconds: int = 86400):
        if secret_key:
            if isinstance(secret_key, str):
                secret_key = secret_key.encode("utf-8")
            # Any secret string maps onto a valid 32-byte Fernet key
            key = base64.urlsafe_b64encode(hashlib.sha256(secret_key).digest())
        else:
            key = Fernet.generate_key()
        self.fernet = Fernet(key)
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._sessions: Dict[str, Principal] = {}

    def issue(self, kind: PrincipalKind, principal_id: str) -> str:
        session_id = secrets.token_urlsafe(16)
        with self._lock:
            self._sessions[session_id] = Principal(kind, principal_id, session_id)
        payload = json.dumps({"sid": session_id, "kind": kind.value})
        return self.fernet.encrypt(payload.encode("utf-8")).decode("utf-8")

    def _decrypt(self, token: str) -> Optional[Dict[str, str]]:
        try:
            raw = self.fernet.decrypt(token.encode("utf-8"), ttl=self.ttl_seconds)
        except (InvalidToken, TypeError, AttributeError):
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def validate(self, token: Optional[str], kind: Optional[PrincipalKind] = None) -> Principal:
        """
        Resolve a token to its principal.

        Raises Unauthorized when the token is missing, forged, expired,
        revoked, or belongs to another principal kind.
        """
        if not token:
            raise Unauthorized("Authentication required")
        payload = self._decrypt(token)
        if payload is None:
            raise Unauthorized("Invalid session")
        with self._lock:
            principal = self._sessions.get(payload.get("sid", ""))
        if principal is None:
            raise Unauthorized("Session has ended")
        if kind is not None and principal.kind != kind:
            raise Unauthorized(f"{kind.value.capitalize()} authentication required")
        return principal

    def revoke(self, token: str) -> None:
        payload = self._decrypt(token)
        if payload is not None:
            with self._lock:
                self._sessions.pop(payload.get("sid", ""), None)

    def revoke_principal(self, kind: PrincipalKind, principal_id: str) -> None:
        with self._lock:
            for sid in [
                sid
                for sid, p in self._sessions.items()
                if p.kind == kind and p.id == principal_id
            ]:
                del self._sessions[sid]
