"""
Tests for user registration, update and deletion.

Covers the uniqueness guard, the allocation retry loop, capacity
exhaustion, concurrent registrations and the soft-delete ID policy.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import insert

from database.allocation import SequentialIdAllocator
from database.auth_service import verify_password
from database.models import User
from database.registration import (
    UserRegistrar,
    UniquenessGuard,
    UserPatch,
    UNSET,
    Created,
    Updated,
    Deleted,
    NotFound,
    Conflict,
    CapacityExceeded,
    AllocationContention,
    get_user,
    normalize_natural_keys,
)
from database.repositories import UserRepository


def _max_suffix(db_provider, prefix="USER"):
    with db_provider.get_unit_of_work() as uow:
        return UserRepository(uow.session).max_suffix(prefix)


class TestUserPatch:
    """Tests for the partial-update input type."""

    def test_unset_by_default(self):
        assert UserPatch().supplied() == {}

    def test_unset_is_falsy_singleton(self):
        assert not UNSET
        assert repr(UNSET) == "UNSET"
        assert UserPatch().email is UNSET

    def test_nullable_fields_accept_none(self):
        assert UserPatch(phone=None, address=None).supplied() == {"phone": None, "address": None}

    @pytest.mark.parametrize("field", ["national_id", "email", "name", "password"])
    def test_required_fields_reject_none(self, field):
        with pytest.raises(ValueError):
            UserPatch(**{field: None})

    def test_natural_keys_normalized(self):
        patch = UserPatch(email="  Jane@Example.COM ", national_id="12-345.678")
        assert patch.supplied() == {"email": "jane@example.com", "national_id": "12345678"}


class TestUniquenessGuard:

    def test_no_conflict(self, registrar, session):
        assert UniquenessGuard().check(UserRepository(session), {"email": "free@example.com"}) is None

    def test_national_id_reported_first(self, registrar, make_candidate, session):
        registrar.register(make_candidate(1))
        values = normalize_natural_keys({"national_id": "id-00001", "email": "USER1@example.com"})
        assert values == {"national_id": "ID00001", "email": "user1@example.com"}
        conflict = UniquenessGuard().check(UserRepository(session), values)
        assert conflict == Conflict("national_id")

    def test_absent_fields_skipped(self, registrar, make_candidate, session):
        registrar.register(make_candidate(1))
        assert UniquenessGuard().check(UserRepository(session), {"national_id": "OTHER"}) is None


class TestRegister:
    """Tests for UserRegistrar.register."""

    def test_sequential_ids(self, registrar, make_candidate):
        ids = [registrar.register(make_candidate(n)).id for n in range(1, 4)]
        assert ids == ["USER0001", "USER0002", "USER0003"]

    def test_created_user_fields(self, registrar, make_candidate):
        outcome = registrar.register(make_candidate(1, email=" User1@Example.com", phone="555-0100"))
        assert isinstance(outcome, Created)
        user = outcome.user
        assert user.email == "user1@example.com"
        assert user.national_id == "ID00001"
        assert user.phone == "555-0100"
        assert user.created_at is not None
        assert user.password_hash != "correct-horse"
        assert verify_password("correct-horse", user.password_hash)

    def test_conflict_scenario(self, registrar, make_candidate, db_provider):
        """USER0001, USER0002, a conflict, then USER0003."""
        assert registrar.register(make_candidate(1)).id == "USER0001"
        assert registrar.register(make_candidate(2)).id == "USER0002"

        outcome = registrar.register(make_candidate(3, email="user1@example.com"))
        assert outcome == Conflict("email")
        assert _max_suffix(db_provider) == 2

        assert registrar.register(make_candidate(3)).id == "USER0003"

    def test_conflict_on_national_id_after_normalization(self, registrar, make_candidate):
        registrar.register(make_candidate(1, national_id="AB 123-45"))
        outcome = registrar.register(make_candidate(2, national_id="ab12345"))
        assert outcome == Conflict("national_id")

    def test_conflict_does_not_allocate(self, registrar, make_candidate, db_provider):
        registrar.register(make_candidate(1))
        for _ in range(3):
            assert isinstance(registrar.register(make_candidate(1)), Conflict)
        assert _max_suffix(db_provider) == 1

    def test_deleted_id_never_reused(self, registrar, make_candidate):
        registrar.register(make_candidate(1))
        registrar.register(make_candidate(2))
        assert registrar.delete_by_id("USER0002") == Deleted("USER0002")

        outcome = registrar.register(make_candidate(3))
        assert outcome.id == "USER0003"

    def test_deleted_user_releases_natural_keys(self, registrar, make_candidate):
        registrar.register(make_candidate(1))
        registrar.delete_by_id("USER0001")
        outcome = registrar.register(make_candidate(1))
        assert isinstance(outcome, Created)
        assert outcome.id == "USER0002"

    def test_capacity_exceeded(self, db_provider, make_candidate):
        """Width 4 with 9999 existing IDs cannot allocate another."""
        rows = [
            {
                "id": f"USER{n:04d}",
                "national_id": f"N{n}",
                "email": f"bulk{n}@example.com",
                "name": "Bulk",
                "password_hash": "x" * 60,
                "is_deleted": False,
            }
            for n in range(1, 10000)
        ]
        with db_provider.get_unit_of_work() as uow:
            uow.session.execute(insert(User), rows)
            uow.commit()

        registrar = UserRegistrar(
            db_provider.session_factory,
            allocator=SequentialIdAllocator("USER", 4),
            retry_wait_max=0,
            bcrypt_rounds=4
        )
        outcome = registrar.register(make_candidate(1))
        assert outcome == CapacityExceeded(prefix="USER", width=4)
        assert _max_suffix(db_provider) == 9999

    def test_id_collision_exhausts_retries(self, db_provider, registrar, make_candidate):
        """An allocator stuck on a taken ID gives up after max_attempts."""
        registrar.register(make_candidate(1))

        class StuckAllocator(SequentialIdAllocator):
            def allocate(self, store):
                return "USER0001"

        stuck = UserRegistrar(
            db_provider.session_factory,
            allocator=StuckAllocator(),
            max_attempts=3,
            retry_wait_max=0,
            bcrypt_rounds=4
        )
        outcome = stuck.register(make_candidate(2))
        assert outcome == AllocationContention(attempts=3)
        assert _max_suffix(db_provider) == 1

    def test_id_collision_recovers(self, db_provider, registrar, make_candidate):
        """A single stale allocation is retried with a fresh ID."""
        registrar.register(make_candidate(1))

        class StaleOnceAllocator(SequentialIdAllocator):
            calls = 0

            def allocate(self, store):
                StaleOnceAllocator.calls += 1
                if StaleOnceAllocator.calls == 1:
                    return "USER0001"
                return super().allocate(store)

        flaky = UserRegistrar(
            db_provider.session_factory,
            allocator=StaleOnceAllocator(),
            retry_wait_max=0,
            bcrypt_rounds=4
        )
        outcome = flaky.register(make_candidate(2))
        assert outcome.id == "USER0002"
        assert StaleOnceAllocator.calls == 2

    def test_natural_key_race_reports_conflict(self, db_provider, registrar, make_candidate):
        """A duplicate email that slips past the guard is still a Conflict."""
        registrar.register(make_candidate(1))

        class BlindGuard(UniquenessGuard):
            def check(self, store, values, exclude_id=None):
                return None

        blind = UserRegistrar(
            db_provider.session_factory,
            guard=BlindGuard(),
            retry_wait_max=0,
            bcrypt_rounds=4
        )
        outcome = blind.register(make_candidate(2, email="user1@example.com"))
        assert outcome == Conflict("email")
        assert _max_suffix(db_provider) == 1

    def test_concurrent_registrations(self, db_provider, make_candidate):
        """N concurrent registrations get exactly USER0001..USER000N."""
        workers = 8
        registrar = UserRegistrar(
            db_provider.session_factory,
            max_attempts=workers + 2,
            retry_wait_min=0.001,
            retry_wait_max=0.01,
            bcrypt_rounds=4
        )
        candidates = [make_candidate(n) for n in range(1, workers + 1)]

        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(registrar.register, candidates))

        assert all(isinstance(o, Created) for o in outcomes), outcomes
        ids = sorted(o.id for o in outcomes)
        assert ids == [f"USER{n:04d}" for n in range(1, workers + 1)]

    def test_max_attempts_validated(self, db_provider):
        with pytest.raises(ValueError):
            UserRegistrar(db_provider.session_factory, max_attempts=0)


class TestUpdate:
    """Tests for UserRegistrar.update_by_id."""

    def test_update_fields(self, registrar, make_candidate):
        registrar.register(make_candidate(1, phone="555-0100"))
        outcome = registrar.update_by_id("USER0001", UserPatch(name="Renamed", phone=None))
        assert isinstance(outcome, Updated)
        assert outcome.user.name == "Renamed"
        assert outcome.user.phone is None
        assert outcome.user.email == "user1@example.com"

    def test_update_to_own_value_never_conflicts(self, registrar, make_candidate):
        registrar.register(make_candidate(1))
        patch = UserPatch(email="USER1@example.com", national_id="ID-00001")
        assert isinstance(registrar.update_by_id("USER0001", patch), Updated)

    def test_update_conflict_leaves_record_unchanged(self, registrar, make_candidate, session):
        registrar.register(make_candidate(1))
        registrar.register(make_candidate(2))

        outcome = registrar.update_by_id("USER0002", UserPatch(name="Changed", email="user1@example.com"))
        assert outcome == Conflict("email")

        user = get_user(session, "USER0002")
        assert user.name == "User 2"
        assert user.email == "user2@example.com"

    def test_update_password_rehashes(self, registrar, make_candidate):
        registrar.register(make_candidate(1))
        outcome = registrar.update_by_id("USER0001", UserPatch(password="another-secret"))
        assert verify_password("another-secret", outcome.user.password_hash)
        assert not verify_password("correct-horse", outcome.user.password_hash)

    def test_update_missing(self, registrar):
        assert registrar.update_by_id("USER0404", UserPatch(name="X")) == NotFound("USER0404")

    def test_update_deleted(self, registrar, make_candidate):
        registrar.register(make_candidate(1))
        registrar.delete_by_id("USER0001")
        assert isinstance(registrar.update_by_id("USER0001", UserPatch(name="X")), NotFound)


class TestDelete:

    def test_delete_twice(self, registrar, make_candidate):
        registrar.register(make_candidate(1))
        assert registrar.delete_by_id("USER0001") == Deleted("USER0001")
        assert registrar.delete_by_id("USER0001") == NotFound("USER0001")

    def test_delete_keeps_row(self, registrar, make_candidate, session):
        registrar.register(make_candidate(1))
        registrar.delete_by_id("USER0001")
        assert get_user(session, "USER0001") is None
        assert UserRepository(session).exists("USER0001")
