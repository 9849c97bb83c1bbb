"""
Database Connection Management for the Electricity Billing Service

This module provides:
- FastAPI Dependency Injection pattern for database sessions
- Unit of Work pattern for explicit transaction boundaries
- Connection pooling with bounded checkout and connect timeouts
- Connection validation with retry logic
- Environment-based configuration

Uses SQLAlchemy 2.0 style with proper typing support.
"""

import os
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional, Callable

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, OperationalError, DisconnectionError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from database.models import Base
from database.repositories import StoreUnavailableError

logger = logging.getLogger(__name__)

# Driver and pool failures that mean "the store is not reachable right now"
STORE_FAILURES = (OperationalError, DisconnectionError, PoolTimeoutError)


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: Optional[str] = None
    host: str = "localhost"
    port: int = 5432
    database: str = "ebilling"
    user: str = "ebilling_user"
    password: str = "ebilling_password"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    connect_timeout: int = 10
    statement_timeout_ms: int = 5000
    echo: bool = False

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        """Create settings from environment variables."""
        return cls(
            url=os.getenv("DATABASE_URL") or None,
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "ebilling"),
            user=os.getenv("DB_USER", "ebilling_user"),
            password=os.getenv("DB_PASSWORD", "ebilling_password"),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "1800")),
            connect_timeout=int(os.getenv("DB_CONNECT_TIMEOUT", "10")),
            statement_timeout_ms=int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true"
        )

    @classmethod
    def from_config(cls, config) -> 'DatabaseSettings':
        """Create settings from a config_manager.DatabaseConfig section.

        DATABASE_URL in the environment still wins over the file.
        """
        return cls(
            url=os.getenv("DATABASE_URL") or config.url,
            host=config.host,
            port=config.port,
            database=config.name,
            user=config.user,
            password=config.password,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            connect_timeout=config.connect_timeout,
            statement_timeout_ms=config.statement_timeout_ms,
            echo=config.echo
        )

    def get_url(self) -> str:
        """Build database URL."""
        if self.url:
            return self.url
        return (
            f"postgresql+psycopg2://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.get_url().startswith("sqlite")

    def engine_options(self) -> Dict[str, Any]:
        """Keyword arguments for create_engine().

        Every checkout waits at most pool_timeout seconds, every new
        connection at most connect_timeout seconds and every statement
        at most statement_timeout_ms milliseconds. A cancelled statement
        surfaces as OperationalError.
        """
        if self.is_sqlite:
            return {
                "connect_args": {
                    "check_same_thread": False,
                    "timeout": self.connect_timeout,
                },
            }
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": True,
            "connect_args": {
                "connect_timeout": self.connect_timeout,
                "options": f"-c statement_timeout={self.statement_timeout_ms}",
            },
        }


@lru_cache()
def get_settings() -> DatabaseSettings:
    """Get cached database settings."""
    return DatabaseSettings.from_env()


# ============================================
# RETRY LOGIC
# ============================================

def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10
) -> Callable:
    """
    Create a retry decorator for connection-level database operations.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


db_retry = create_retry_decorator()


# ============================================
# UNIT OF WORK PATTERN
# ============================================

class UnitOfWork:
    """
    Unit of Work pattern for explicit transaction management.

    Provides clear transaction boundaries and ensures proper
    commit/rollback semantics. Connection failures inside the block
    surface as StoreUnavailableError.

    Usage:
        with UnitOfWork(session_factory) as uow:
            repo = UserRepository(uow.session)
            repo.insert(user)
            uow.commit()  # Explicit commit
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> 'UnitOfWork':
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self.rollback()
        finally:
            self.close()
        if exc_type is not None and issubclass(exc_type, STORE_FAILURES):
            logger.error("Database unavailable: %s", exc_type.__name__)
            raise StoreUnavailableError("Database is unavailable") from exc_val
        return False

    @property
    def session(self) -> Session:
        """Get the current session."""
        if self._session is None:
            raise RuntimeError("UnitOfWork not started. Use as context manager.")
        return self._session

    def commit(self) -> None:
        """Explicitly commit the transaction."""
        if self._session:
            self._session.commit()

    def rollback(self) -> None:
        """Rollback the transaction."""
        if self._session:
            try:
                self._session.rollback()
            except SQLAlchemyError as e:
                # The connection may already be gone; the original error matters more
                logger.warning("Rollback failed: %s", type(e).__name__)

    def close(self) -> None:
        """Close the session."""
        if self._session:
            self._session.close()
            self._session = None


# ============================================
# DATABASE SESSION PROVIDER (FastAPI DI)
# ============================================

class DatabaseSessionProvider:
    """
    Provides database sessions using FastAPI Dependency Injection pattern.

    Usage:
        db_provider = DatabaseSessionProvider()

        @app.get("/api/users")
        def list_users(provider: DatabaseSessionProvider = Depends(get_db_provider)):
            with provider.get_unit_of_work() as uow:
                return UserRepository(uow.session).list_all()
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        """
        Initialize the database session provider.

        Args:
            settings: Database settings (uses env if not provided)
            engine: Pre-created engine (for testing)
        """
        self._settings = settings or get_settings()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self, echo: Optional[bool] = None) -> None:
        """
        Initialize the database engine and session factory.

        Args:
            echo: Override echo setting for SQL logging
        """
        if self._initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._create_engine_with_retry()

        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )

        self._setup_event_listeners()

        self._initialized = True
        logger.info("Database session provider initialized")

    @db_retry
    def _create_engine_with_retry(self) -> Engine:
        """Create database engine with retry logic."""
        engine = create_engine(
            self._settings.get_url(),
            echo=self._settings.echo,
            **self._settings.engine_options()
        )

        # Verify connection
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return engine

    def _setup_event_listeners(self) -> None:
        """Set up SQLAlchemy event listeners for logging and debugging."""

        @event.listens_for(self._engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            logger.debug("New database connection established")

        @event.listens_for(self._engine, "checkout")
        def on_checkout(dbapi_connection, connection_record, connection_proxy):
            logger.debug("Connection checked out from pool")

        @event.listens_for(self._engine, "checkin")
        def on_checkin(dbapi_connection, connection_record):
            logger.debug("Connection returned to pool")

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine."""
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get the session factory."""
        if self._session_factory is None:
            self.init()
        return self._session_factory

    def get_unit_of_work(self) -> UnitOfWork:
        """
        Get a Unit of Work for explicit transaction management.

        Usage:
            with db_provider.get_unit_of_work() as uow:
                BillRepository(uow.session).create(bill)
                uow.commit()
        """
        return UnitOfWork(self.session_factory)

    def create_tables(self) -> None:
        """Create all database tables."""
        if self._engine is None:
            self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Database tables created")

    def close(self) -> None:
        """Close database connections and clean up."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._initialized = False


# ============================================
# GLOBAL PROVIDER INSTANCE
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    """
    Get the global database provider instance (FastAPI dependency).

    Returns:
        DatabaseSessionProvider instance
    """
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def init_db(
    settings: Optional[DatabaseSettings] = None,
    echo: Optional[bool] = None
) -> DatabaseSessionProvider:
    """
    Initialize the global database provider.

    Call this during application startup.
    """
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider(settings=settings)
    _db_provider.init(echo=echo)
    return _db_provider


def close_db() -> None:
    """
    Close the global database provider.

    Call this during application shutdown.
    """
    global _db_provider
    if _db_provider:
        _db_provider.close()
        _db_provider = None


# ============================================
# PYTEST FIXTURES SUPPORT
# ============================================

def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """
    Create a database provider for testing.

    Args:
        engine: Pre-created engine (e.g., SQLite for unit tests)
        settings: Custom settings for testing
    """
    provider = DatabaseSessionProvider(
        settings=settings or DatabaseSettings(url="sqlite://"),
        engine=engine
    )
    provider.init()
    return provider
