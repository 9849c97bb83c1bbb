"""
Password hashing and login for registered users.

Pure business logic with no HTTP dependencies.
"""

import logging
from typing import Optional

import bcrypt
from sqlalchemy.orm import Session

from database.models import User, normalize_email
from database.repositories import UserRepository

logger = logging.getLogger(__name__)

DEFAULT_BCRYPT_ROUNDS = 12

# Compared against when the email is unknown so both failure paths cost one bcrypt check
_DUMMY_HASH = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=4)).decode("utf-8")


def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        logger.warning("Stored password hash could not be parsed")
        return False


def authenticate(session: Session, email: str, password: str) -> Optional[User]:
    """Authenticate a live user by email and password.

    Returns the User, or None for an unknown email and for a wrong password
    alike.
    """
    user = UserRepository(session).get_by_email(normalize_email(email))
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
