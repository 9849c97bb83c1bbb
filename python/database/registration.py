"""
User registration: uniqueness guard and registrar.

The registrar creates users with a freshly allocated sequential ID. It
checks natural keys first, allocates from the store's current maximum,
and inserts under the store's primary-key and unique-index constraints.
Losing an allocation race to a concurrent registration shows up as a
primary-key violation; the whole attempt is then repeated in a new unit
of work, a bounded number of times.

Expected conditions come back as outcome objects (Created, Conflict,
NotFound, ...). Only infrastructure failures raise
(StoreUnavailableError).

Usage:
    registrar = UserRegistrar(provider.session_factory, SequentialIdAllocator("USER", 4))
    outcome = registrar.register(UserCandidate(national_id="A1", email="e1@x.com",
                                               name="Jane", password="s3cretpass"))
    if isinstance(outcome, Created):
        print(outcome.id)
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional, Union

from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    Retrying,
    RetryError,
    stop_after_attempt,
    wait_none,
    wait_random,
    retry_if_exception_type,
    before_sleep_log
)

from database.allocation import SequentialIdAllocator, CapacityExceededError
from database.auth_service import hash_password, DEFAULT_BCRYPT_ROUNDS
from database.connection import UnitOfWork
from database.models import User, NATURAL_KEY_FIELDS, NATURAL_KEY_NORMALIZERS
from database.monitoring import record_registration, record_id_collision
from database.repositories import UserRepository, DuplicateEntityError

logger = logging.getLogger(__name__)


# ============================================
# INPUT TYPES
# ============================================

class _Unset:
    """Marker for patch fields that were not supplied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class UserCandidate:
    """A user to be registered. The ID is never part of the input."""
    national_id: str
    email: str
    name: str
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None

    def natural_keys(self) -> Dict[str, str]:
        return normalize_natural_keys({
            "national_id": self.national_id,
            "email": self.email,
        })


@dataclass(frozen=True)
class UserPatch:
    """
    Partial update of a user.

    Fields left as UNSET are not touched. phone and address accept None
    (clears the value); the other fields must be strings when supplied.
    """
    national_id: Any = UNSET
    email: Any = UNSET
    name: Any = UNSET
    phone: Any = UNSET
    address: Any = UNSET
    password: Any = UNSET

    NULLABLE = ("phone", "address")

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None and f.name not in self.NULLABLE:
                raise ValueError(f"{f.name} cannot be null")

    def supplied(self) -> Dict[str, Any]:
        """Fields that were explicitly supplied, natural keys normalized."""
        values = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }
        values.update(normalize_natural_keys(
            {k: v for k, v in values.items() if k in NATURAL_KEY_FIELDS}
        ))
        return values


def normalize_natural_keys(values: Mapping[str, str]) -> Dict[str, str]:
    return {
        field: NATURAL_KEY_NORMALIZERS[field](value)
        for field, value in values.items()
    }


# ============================================
# OUTCOMES
# ============================================

@dataclass(frozen=True)
class Created:
    user: User

    @property
    def id(self) -> str:
        return self.user.id


@dataclass(frozen=True)
class Updated:
    user: User


@dataclass(frozen=True)
class Deleted:
    user_id: str


@dataclass(frozen=True)
class NotFound:
    user_id: str


@dataclass(frozen=True)
class Conflict:
    field: str


@dataclass(frozen=True)
class CapacityExceeded:
    prefix: str
    width: int


@dataclass(frozen=True)
class AllocationContention:
    attempts: int


RegisterOutcome = Union[Created, Conflict, CapacityExceeded, AllocationContention]
UpdateOutcome = Union[Updated, NotFound, Conflict]
DeleteOutcome = Union[Deleted, NotFound]


# ============================================
# UNIQUENESS GUARD
# ============================================

class UniquenessGuard:
    """Pre-flight natural-key check, fields evaluated in declaration order."""

    def __init__(self, key_fields=NATURAL_KEY_FIELDS):
        self.fields = tuple(key_fields)

    def check(
        self,
        store: UserRepository,
        values: Mapping[str, str],
        exclude_id: Optional[str] = None
    ) -> Optional[Conflict]:
        """
        Args:
            store: Repository bound to the caller's session
            values: Normalized natural-key values; absent fields are skipped
            exclude_id: The record being updated, never in conflict with itself

        Returns:
            Conflict for the first taken field, or None
        """
        for field in self.fields:
            if field not in values:
                continue
            if store.exists_by_natural_key(field, values[field], exclude_id=exclude_id):
                return Conflict(field)
        return None


# ============================================
# REGISTRAR
# ============================================

class IdCollisionError(Exception):
    """Another registration inserted the same ID first."""

    def __init__(self, user_id: str):
        super().__init__(f"User id already taken: {user_id}")
        self.user_id = user_id


class UserRegistrar:
    """Creates, updates and deletes users."""

    def __init__(
        self,
        session_factory: sessionmaker,
        allocator: Optional[SequentialIdAllocator] = None,
        guard: Optional[UniquenessGuard] = None,
        max_attempts: int = 5,
        retry_wait_min: float = 0.005,
        retry_wait_max: float = 0.05,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session_factory = session_factory
        self.allocator = allocator or SequentialIdAllocator()
        self.guard = guard or UniquenessGuard()
        self.max_attempts = max_attempts
        self._wait = wait_random(retry_wait_min, retry_wait_max) if retry_wait_max > 0 else wait_none()
        self._bcrypt_rounds = bcrypt_rounds

    @classmethod
    def from_config(cls, session_factory: sessionmaker, config) -> 'UserRegistrar':
        """Build from a config_manager.ConfigManager."""
        alloc = config.allocation
        return cls(
            session_factory,
            allocator=SequentialIdAllocator(alloc.prefix, alloc.width),
            max_attempts=alloc.max_attempts,
            retry_wait_min=alloc.retry_wait_min_ms / 1000,
            retry_wait_max=alloc.retry_wait_max_ms / 1000,
            bcrypt_rounds=config.security.bcrypt_rounds
        )

    def register(self, candidate: UserCandidate) -> RegisterOutcome:
        """
        Register a new user.

        Returns:
            Created, Conflict(field), CapacityExceeded or AllocationContention

        Raises:
            StoreUnavailableError: If the database cannot be reached
        """
        password_hash = hash_password(candidate.password, self._bcrypt_rounds)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(IdCollisionError),
            before_sleep=before_sleep_log(logger, logging.INFO)
        )
        try:
            outcome = retrying(self._attempt_register, candidate, password_hash)
        except RetryError:
            logger.warning(
                "Registration gave up after %d id collisions", self.max_attempts
            )
            outcome = AllocationContention(attempts=self.max_attempts)
        except CapacityExceededError as e:
            logger.error("User id allocation failed: %s", e)
            outcome = CapacityExceeded(prefix=e.prefix, width=e.width)

        record_registration(type(outcome).__name__.lower())
        return outcome

    def _attempt_register(self, candidate: UserCandidate, password_hash: str) -> RegisterOutcome:
        with UnitOfWork(self._session_factory) as uow:
            store = UserRepository(uow.session)
            keys = candidate.natural_keys()

            conflict = self.guard.check(store, keys)
            if conflict is not None:
                return conflict

            user_id = self.allocator.allocate(store)
            user = User(
                id=user_id,
                national_id=keys["national_id"],
                email=keys["email"],
                name=candidate.name,
                phone=candidate.phone,
                address=candidate.address,
                password_hash=password_hash,
                is_deleted=False
            )
            try:
                store.insert(user)
                uow.commit()
            except DuplicateEntityError as e:
                if e.field in self.guard.fields:
                    # Lost a race on the natural key itself
                    return Conflict(e.field)
                record_id_collision()
                logger.info("Id %s taken by a concurrent registration, retrying", user_id)
                raise IdCollisionError(user_id) from e

            # Load server-side timestamps before the session closes
            uow.session.refresh(user)
            logger.info("Registered user %s", user_id)
            return Created(user)

    def update_by_id(self, user_id: str, patch: UserPatch) -> UpdateOutcome:
        """
        Apply a partial update.

        Natural keys are re-checked against other live users only; setting a
        key to its current value never conflicts.
        """
        changes = patch.supplied()
        password = changes.pop("password", UNSET)

        with UnitOfWork(self._session_factory) as uow:
            store = UserRepository(uow.session)
            user = store.get_by_id(user_id)
            if user is None:
                return NotFound(user_id)

            keys = {f: changes[f] for f in self.guard.fields if f in changes}
            conflict = self.guard.check(store, keys, exclude_id=user.id)
            if conflict is not None:
                return conflict

            for key, value in changes.items():
                setattr(user, key, value)
            if password is not UNSET:
                user.password_hash = hash_password(password, self._bcrypt_rounds)

            try:
                store.save(user)
                uow.commit()
            except DuplicateEntityError as e:
                return Conflict(e.field or "unknown")

            uow.session.refresh(user)
            changed = sorted(changes) + ([] if password is UNSET else ["password"])
            logger.info("Updated user %s (%s)", user_id, ", ".join(changed))
            return Updated(user)

    def delete_by_id(self, user_id: str) -> DeleteOutcome:
        """Soft delete a user. The ID stays reserved forever."""
        with UnitOfWork(self._session_factory) as uow:
            if not UserRepository(uow.session).soft_delete(user_id):
                return NotFound(user_id)
            uow.commit()

        logger.info("Deleted user %s", user_id)
        return Deleted(user_id)


def get_user(session: Session, user_id: str) -> Optional[User]:
    """Look up a live user by ID."""
    return UserRepository(session).get_by_id(user_id)
