"""
Tests for password hashing and login.
"""

from database.auth_service import authenticate, hash_password, verify_password


class TestPasswordHashing:

    def test_hash_and_verify(self):
        hashed = hash_password("s3cret-pass", rounds=4)
        assert hashed.startswith("$2")
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong-pass", hashed)

    def test_salted(self):
        assert hash_password("same", rounds=4) != hash_password("same", rounds=4)

    def test_malformed_hash(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestAuthenticate:
    """Tests for email/password login against stored users."""

    def test_success(self, registrar, make_candidate, session):
        registrar.register(make_candidate(1))
        user = authenticate(session, "user1@example.com", "correct-horse")
        assert user is not None
        assert user.id == "USER0001"

    def test_email_normalized(self, registrar, make_candidate, session):
        registrar.register(make_candidate(1))
        assert authenticate(session, "  USER1@Example.com ", "correct-horse") is not None

    def test_wrong_password(self, registrar, make_candidate, session):
        registrar.register(make_candidate(1))
        assert authenticate(session, "user1@example.com", "wrong-horse") is None

    def test_unknown_email(self, session):
        assert authenticate(session, "nobody@example.com", "correct-horse") is None

    def test_deleted_user_cannot_log_in(self, registrar, make_candidate, session):
        registrar.register(make_candidate(1))
        registrar.delete_by_id("USER0001")
        assert authenticate(session, "user1@example.com", "correct-horse") is None
