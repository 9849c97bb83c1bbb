"""
Tests for database settings and Unit of Work error translation.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from config_manager import ConfigManager, ConfigurationError
from database.connection import DatabaseSettings, UnitOfWork
from database.repositories import StoreUnavailableError


class TestEngineOptions:
    """Tests for DatabaseSettings.engine_options()."""

    def test_postgres_bounds_every_statement(self):
        settings = DatabaseSettings(connect_timeout=3, statement_timeout_ms=2500)
        options = settings.engine_options()

        assert options["connect_args"]["connect_timeout"] == 3
        assert options["connect_args"]["options"] == "-c statement_timeout=2500"
        assert options["pool_timeout"] == settings.pool_timeout

    def test_default_statement_timeout(self):
        connect_args = DatabaseSettings().engine_options()["connect_args"]
        assert "statement_timeout=5000" in connect_args["options"]

    def test_sqlite_uses_lock_timeout(self):
        options = DatabaseSettings(url="sqlite:///x.db", connect_timeout=7).engine_options()
        assert options["connect_args"] == {"check_same_thread": False, "timeout": 7}
        assert "pool_size" not in options

    def test_from_config(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        config = ConfigManager.from_dict({'database': {'statement_timeout_ms': 750}})

        settings = DatabaseSettings.from_config(config.database)
        assert settings.statement_timeout_ms == 750
        assert "statement_timeout=750" in settings.engine_options()["connect_args"]["options"]

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DB_STATEMENT_TIMEOUT_MS", "1200")
        assert DatabaseSettings.from_env().statement_timeout_ms == 1200

    def test_statement_timeout_validated(self):
        with pytest.raises(ConfigurationError):
            ConfigManager.from_dict({'database': {'statement_timeout_ms': 0}})


class TestUnitOfWork:

    def test_store_failure_becomes_unavailable(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing-dir' / 'down.db'}"
        engine = create_engine(url)
        try:
            with pytest.raises(StoreUnavailableError) as exc_info:
                with UnitOfWork(sessionmaker(bind=engine)) as uow:
                    uow.session.connection()
            assert isinstance(exc_info.value.__cause__, OperationalError)
        finally:
            engine.dispose()

    def test_other_errors_propagate(self, db_provider):
        with pytest.raises(ValueError):
            with db_provider.get_unit_of_work():
                raise ValueError("boom")
