"""
Identity and Session Tests
==========================
"""

import pytest

from did_wallet.errors import Unauthorized, ValidationError
from did_wallet.identity import IdentityProvider, PrincipalKind, SessionManager


class TestIdentityProvider:
    def setup_method(self):
        self.identity = IdentityProvider()

    def test_register_and_authenticate(self):
        external_id = self.identity.register("ana@example.com", "secret123")
        assert self.identity.authenticate("ANA@example.com", "secret123") == external_id
        print(f"✅ Authenticated external id: {external_id}")

    def test_wrong_password(self):
        self.identity.register("ana@example.com", "secret123")
        with pytest.raises(Unauthorized):
            self.identity.authenticate("ana@example.com", "wrong-password")

    def test_unknown_email(self):
        with pytest.raises(Unauthorized):
            self.identity.authenticate("nobody@example.com", "secret123")

    def test_duplicate_email(self):
        self.identity.register("ana@example.com", "secret123")
        with pytest.raises(ValidationError):
            self.identity.register("ana@example.com", "another1")

    def test_password_not_stored_in_clear(self):
        hashed = IdentityProvider.hash_password("secret123")
        assert b"secret123" not in hashed
        assert IdentityProvider.verify_password("secret123", hashed)


class TestSessionManager:
    """Test session issue, validation and revocation"""

    def setup_method(self):
        self.sessions = SessionManager("test-secret", ttl_seconds=3600)

    def test_issue_and_validate(self):
        token = self.sessions.issue(PrincipalKind.USER, "user-1")
        principal = self.sessions.validate(token, PrincipalKind.USER)

        assert principal.id == "user-1"
        assert principal.kind == PrincipalKind.USER

    def test_kind_is_enforced(self):
        token = self.sessions.issue(PrincipalKind.USER, "user-1")
        with pytest.raises(Unauthorized):
            self.sessions.validate(token, PrincipalKind.ORGANIZATION)

    def test_revoke(self):
        token = self.sessions.issue(PrincipalKind.ORGANIZATION, "org-1")
        self.sessions.revoke(token)
        with pytest.raises(Unauthorized):
            self.sessions.validate(token)

    def test_revoke_principal(self):
        first = self.sessions.issue(PrincipalKind.USER, "user-1")
        second = self.sessions.issue(PrincipalKind.USER, "user-1")
        other = self.sessions.issue(PrincipalKind.USER, "user-2")

        self.sessions.revoke_principal(PrincipalKind.USER, "user-1")

        for token in (first, second):
            with pytest.raises(Unauthorized):
                self.sessions.validate(token)
        assert self.sessions.validate(other).id == "user-2"

    def test_garbage_and_foreign_tokens(self):
        foreign = SessionManager("other-secret").issue(PrincipalKind.USER, "user-1")
        for token in (None, "", "garbage", foreign):
            with pytest.raises(Unauthorized):
                self.sessions.validate(token)

    def test_expired_token(self):
        sessions = SessionManager("test-secret", ttl_seconds=-1)
        token = sessions.issue(PrincipalKind.USER, "user-1")
        with pytest.raises(Unauthorized):
            sessions.validate(token)
