"""
Database Package for the Electricity Billing Service

This package provides:
- SQLAlchemy ORM models for users and bills
- FastAPI Dependency Injection for database sessions
- Unit of Work pattern for transaction management
- Repository pattern for data access
- Sequential user ID allocation and the registration workflow
- Performance monitoring and query timing
"""

from database.models import (
    Base,
    User,
    Bill,
    BillStatus,
    PaymentMethod,
    NATURAL_KEY_FIELDS,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    # FastAPI dependencies
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    UserRepository,
    BillRepository,
    RepositoryError,
    EntityNotFoundError,
    DuplicateEntityError,
    StoreUnavailableError,
    BillAlreadyPaidError,
)
from database.allocation import (
    SequentialIdAllocator,
    CapacityExceededError,
    next_id,
    format_id,
    parse_suffix,
)
from database.registration import (
    UserRegistrar,
    UniquenessGuard,
    UserCandidate,
    UserPatch,
    UNSET,
    Created,
    Updated,
    Deleted,
    NotFound,
    Conflict,
    CapacityExceeded,
    AllocationContention,
)
from database.billing_service import BillingService, calculate_amount
from database.auth_service import authenticate, hash_password, verify_password
from database.monitoring import (
    query_timer,
    timed_query,
    get_db_metrics,
    get_slow_query_report,
    reset_metrics,
    configure_monitoring,
    check_health,
    HealthStatus,
)

__all__ = [
    # Models
    'Base',
    'User',
    'Bill',
    'BillStatus',
    'PaymentMethod',
    'NATURAL_KEY_FIELDS',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'get_db_provider',
    'init_db',
    'close_db',
    'create_test_provider',
    # Repositories and errors
    'UserRepository',
    'BillRepository',
    'RepositoryError',
    'EntityNotFoundError',
    'DuplicateEntityError',
    'StoreUnavailableError',
    'BillAlreadyPaidError',
    # ID allocation
    'SequentialIdAllocator',
    'CapacityExceededError',
    'next_id',
    'format_id',
    'parse_suffix',
    # Registration
    'UserRegistrar',
    'UniquenessGuard',
    'UserCandidate',
    'UserPatch',
    'UNSET',
    'Created',
    'Updated',
    'Deleted',
    'NotFound',
    'Conflict',
    'CapacityExceeded',
    'AllocationContention',
    # Billing and auth
    'BillingService',
    'calculate_amount',
    'authenticate',
    'hash_password',
    'verify_password',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_db_metrics',
    'get_slow_query_report',
    'reset_metrics',
    'configure_monitoring',
    'check_health',
    'HealthStatus',
]
