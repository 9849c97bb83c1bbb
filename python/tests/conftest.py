"""
Shared fixtures for the Electricity Billing tests.

Every test gets its own file-backed SQLite database so that worker threads
in the concurrency tests see each other's commits.
"""

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from database.connection import DatabaseSettings, create_test_provider
from database.registration import UserRegistrar, UserCandidate
from database.monitoring import reset_metrics
from security_logger import reset_security_logger


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ebilling_test.db'}"


@pytest.fixture
def db_provider(sqlite_url):
    """Initialized provider with all tables created."""
    settings = DatabaseSettings(url=sqlite_url, connect_timeout=30)
    engine = create_engine(sqlite_url, **settings.engine_options())
    provider = create_test_provider(engine=engine, settings=settings)
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def session(db_provider):
    """Plain session; the test decides whether to commit."""
    session = db_provider.session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def test_config(tmp_path):
    """Configuration with cheap password hashing and no retry backoff."""
    return ConfigManager.from_dict({
        'allocation': {'retry_wait_min_ms': 0, 'retry_wait_max_ms': 0},
        'security': {'bcrypt_rounds': 4},
        'logging': {'security_log_dir': str(tmp_path / 'logs')},
    })


@pytest.fixture
def registrar(db_provider, test_config):
    return UserRegistrar.from_config(db_provider.session_factory, test_config)


@pytest.fixture
def make_candidate():
    """Factory for distinct, valid registration candidates."""
    def _make(n: int = 1, **overrides) -> UserCandidate:
        values = {
            'national_id': f"ID-{n:05d}",
            'email': f"user{n}@example.com",
            'name': f"User {n}",
            'password': "correct-horse",
            'phone': None,
            'address': None,
        }
        values.update(overrides)
        return UserCandidate(**values)
    return _make


@pytest.fixture(autouse=True)
def _reset_globals():
    """Keep module-level singletons from leaking between tests."""
    yield
    reset_metrics()
    reset_security_logger()
    ConfigManager.reset_instance()
