"""
Tests for the mock authentication provider.
"""

import pytest


@pytest.fixture
def provider(store):
    from cognilab.auth import MockAuthProvider
    from cognilab.db.repositories import UserRepository

    return MockAuthProvider(users=UserRepository(store), secret="test-secret", session_hours=1)


class TestMockAuth:
    """Test sign-in, sessions and sign-out."""

    def test_sign_in_faculty(self, provider):
        session = provider.sign_in_with_password("bsmtCogniLab2026@gmail.com", "BSMT2026LIS")

        assert session.user.id == "user-009"
        assert session.user.is_faculty
        assert session.access_token
        assert session.expires_at is not None

    def test_wrong_password(self, provider):
        from cognilab.auth import AuthError

        with pytest.raises(AuthError):
            provider.sign_in_with_password("medtech@clinic.com", "wrong")

    def test_unknown_email(self, provider):
        from cognilab.auth import AuthError

        with pytest.raises(AuthError):
            provider.sign_in_with_password("nobody@clinic.com", "password")

    def test_get_session_round_trip(self, provider):
        session = provider.sign_in_with_password("medtech@clinic.com", "password")
        restored = provider.get_session(session.access_token)

        assert restored is not None
        assert restored.user.email == "medtech@clinic.com"

    def test_tampered_token_rejected(self, provider):
        from cognilab.auth import MockAuthProvider

        session = provider.sign_in_with_password("medtech@clinic.com", "password")
        other = MockAuthProvider(users=provider._users, secret="another-secret")

        assert other.get_session(session.access_token) is None
        assert provider.get_session("not-a-token") is None

    def test_sign_out_revokes_token(self, provider):
        session = provider.sign_in_with_password("medtech@clinic.com", "password")
        provider.sign_out(session.access_token)

        assert provider.get_session(session.access_token) is None

    def test_deleted_user_loses_session(self, provider, store):
        session = provider.sign_in_with_password("medtech@clinic.com", "password")
        store.delete("users", "user-001")

        assert provider.get_session(session.access_token) is None

    def test_inactive_user_cannot_sign_in(self, provider, store):
        from cognilab.auth import AuthError

        store.update("users", "user-001", {"status": "inactive"})
        with pytest.raises(AuthError):
            provider.sign_in_with_password("medtech@clinic.com", "password")

    def test_auth_state_listeners(self, provider):
        from cognilab.auth import SIGNED_IN, SIGNED_OUT

        events = []
        unsubscribe = provider.on_auth_state_change(lambda event, session: events.append(event))

        session = provider.sign_in_with_password("medtech@clinic.com", "password")
        provider.sign_out(session.access_token)
        unsubscribe()
        provider.sign_in_with_password("medtech@clinic.com", "password")

        assert events == [SIGNED_IN, SIGNED_OUT]

    def test_authenticated_user_as_actor(self, provider):
        from cognilab.auth import AuthenticatedUser

        session = provider.sign_in_with_password("bsmtCogniLab2026@gmail.com", "BSMT2026LIS")
        actor = AuthenticatedUser.from_session(session, ip_address="10.0.0.5").as_actor()

        assert actor.name == "BSMT Faculty Member"
        assert actor.encryption_key == "ENC_KEY_ADMIN"
        assert actor.id == "user-009"
        assert actor.ip_address == "10.0.0.5"
