"""
FastAPI Electricity Billing API Server

Provides REST API endpoints for user registration, login, bill generation
and bill payment, backing the web front end.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from api.models import (
    UserCreateRequest,
    UserUpdateRequest,
    UserResponse,
    LoginRequest,
    BillCreateRequest,
    BillResponse,
    PaymentRequest,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    GENERIC_RETRY_MESSAGE,
    setup_cors,
    setup_exception_handlers,
    create_error_response,
    RequestLoggingMiddleware,
)
from config_manager import get_config, configure_logging, ConfigManager, ConfigurationError
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    get_db_provider,
    init_db,
    close_db,
)
from database.models import BillStatus
from database.monitoring import check_health
from database.registration import (
    UserRegistrar,
    UserCandidate,
    UserPatch,
    Created,
    Updated,
    NotFound,
    Conflict,
    CapacityExceeded,
    AllocationContention,
    get_user,
)
from database.repositories import UserRepository, EntityNotFoundError, BillAlreadyPaidError
from database.billing_service import BillingService
from database.auth_service import authenticate
from security_logger import get_security_logger

# Setup logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Environment variables with defaults
CONFIG_PATH = os.getenv("CONFIG_PATH")

# Global state
_config: Optional[ConfigManager] = None
_startup_time: Optional[datetime] = None


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


def get_registrar(
    provider: DatabaseSessionProvider = Depends(get_db_provider),
    config: ConfigManager = Depends(get_config_instance),
) -> UserRegistrar:
    """Dependency building a registrar over the current provider."""
    return UserRegistrar.from_config(provider.session_factory, config)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


# Create FastAPI application
app = FastAPI(
    title="Electricity Billing API",
    description="API for consumer registration, billing and bill payment",
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app, get_config_instance().api.cors_origins)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Load configuration, connect to the database and create tables."""
    global _config, _startup_time

    logger.info("Starting Electricity Billing API...")

    try:
        _config = get_config(CONFIG_PATH)
        configure_logging(_config.logging)
        logger.info("Configuration loaded from %s", _config.config_path)

        provider = init_db(DatabaseSettings.from_config(_config.database))
        if _config.database.create_tables:
            provider.create_tables()
            logger.info("Database tables ensured")

        get_security_logger(log_dir=_config.logging.security_log_dir)

        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready")

    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        raise
    except Exception as e:
        logger.error("Startup error: %s", e)
        raise


@app.on_event("shutdown")
async def shutdown():
    """Release database connections."""
    logger.info("Shutting down Electricity Billing API...")
    close_db()


# ============================================
# USERS
# ============================================

def _not_found(resource: str, identifier) -> Response:
    return create_error_response(
        code="NOT_FOUND",
        message=f"{resource} not found: {identifier}",
        status_code=404,
    )


def _conflict(request: Request, outcome: Conflict, submitted: dict) -> Response:
    get_security_logger().log_registration_conflict(
        field=outcome.field,
        value=str(submitted.get(outcome.field, "")),
        source_ip=_client_ip(request),
        request_id=_request_id(request),
    )
    return create_error_response(
        code="CONFLICT",
        message=f"A user with this {outcome.field} already exists",
        status_code=409,
        field=outcome.field,
        suggestion=f"Use a different {outcome.field} or log in to the existing account",
    )


def _password_too_short(config: ConfigManager, password: Optional[str]) -> Optional[Response]:
    minimum = config.security.password_min_length
    if password is not None and len(password) < minimum:
        return create_error_response(
            code="VALIDATION_ERROR",
            message=f"Password must be at least {minimum} characters",
            status_code=422,
            field="password",
        )
    return None


@app.post(
    "/api/users",
    response_model=UserResponse,
    status_code=201,
    responses={
        409: {"model": ErrorResponse, "description": "National ID or email already registered"},
        503: {"model": ErrorResponse, "description": "Too many concurrent registrations"},
        507: {"model": ErrorResponse, "description": "User ID space exhausted"},
    },
    summary="Register a user",
)
def create_user(
    body: UserCreateRequest,
    request: Request,
    registrar: UserRegistrar = Depends(get_registrar),
    config: ConfigManager = Depends(get_config_instance),
):
    """Register a user. The ID is allocated by the server."""
    rejected = _password_too_short(config, body.password)
    if rejected is not None:
        return rejected

    outcome = registrar.register(UserCandidate(**body.model_dump()))

    if isinstance(outcome, Created):
        return UserResponse.model_validate(outcome.user)
    if isinstance(outcome, Conflict):
        return _conflict(request, outcome, body.model_dump())
    if isinstance(outcome, CapacityExceeded):
        return create_error_response(
            code="CAPACITY_EXCEEDED",
            message="No more user IDs can be allocated. Please contact administrator.",
            status_code=507,
        )
    if isinstance(outcome, AllocationContention):
        return create_error_response(
            code="ALLOCATION_CONTENTION",
            message=GENERIC_RETRY_MESSAGE,
            status_code=503,
        )
    raise RuntimeError(f"Unexpected registration outcome: {outcome!r}")


@app.get("/api/users", response_model=List[UserResponse], summary="List users")
def list_users(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    """List live users ordered by ID."""
    with provider.get_unit_of_work() as uow:
        users = UserRepository(uow.session).list_all(offset=offset, limit=limit)
        return [UserResponse.model_validate(u) for u in users]


@app.get(
    "/api/users/{user_id}",
    response_model=UserResponse,
    responses={404: {"model": ErrorResponse, "description": "User not found"}},
    summary="Get a user",
)
def read_user(user_id: str, provider: DatabaseSessionProvider = Depends(get_db_provider)):
    with provider.get_unit_of_work() as uow:
        user = get_user(uow.session, user_id)
        if user is None:
            return _not_found("User", user_id)
        return UserResponse.model_validate(user)


@app.put(
    "/api/users/{user_id}",
    response_model=UserResponse,
    responses={
        404: {"model": ErrorResponse, "description": "User not found"},
        409: {"model": ErrorResponse, "description": "National ID or email already registered"},
    },
    summary="Update a user",
)
def update_user(
    user_id: str,
    body: UserUpdateRequest,
    request: Request,
    registrar: UserRegistrar = Depends(get_registrar),
    config: ConfigManager = Depends(get_config_instance),
):
    """Partially update a user. Omitted fields are left unchanged."""
    submitted = body.model_dump(exclude_unset=True)
    rejected = _password_too_short(config, submitted.get("password"))
    if rejected is not None:
        return rejected

    outcome = registrar.update_by_id(user_id, UserPatch(**submitted))

    if isinstance(outcome, Updated):
        return UserResponse.model_validate(outcome.user)
    if isinstance(outcome, NotFound):
        return _not_found("User", user_id)
    if isinstance(outcome, Conflict):
        return _conflict(request, outcome, submitted)
    raise RuntimeError(f"Unexpected update outcome: {outcome!r}")


@app.delete(
    "/api/users/{user_id}",
    status_code=204,
    responses={404: {"model": ErrorResponse, "description": "User not found"}},
    summary="Delete a user",
)
def delete_user(user_id: str, registrar: UserRegistrar = Depends(get_registrar)):
    """Delete a user. The ID is never handed out again."""
    outcome = registrar.delete_by_id(user_id)
    if isinstance(outcome, NotFound):
        return _not_found("User", user_id)
    return Response(status_code=204)


@app.get(
    "/api/users/{user_id}/bills",
    response_model=List[BillResponse],
    responses={404: {"model": ErrorResponse, "description": "User not found"}},
    summary="List a user's bills",
)
def list_user_bills(
    user_id: str,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
    config: ConfigManager = Depends(get_config_instance),
):
    with provider.get_unit_of_work() as uow:
        try:
            bills = BillingService(uow.session, config.billing).list_user_bills(user_id)
        except EntityNotFoundError:
            return _not_found("User", user_id)
        return [BillResponse.model_validate(b) for b in bills]


# ============================================
# AUTH
# ============================================

@app.post(
    "/api/auth/login",
    response_model=UserResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
    summary="Log in",
)
def login(
    body: LoginRequest,
    request: Request,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
):
    """Check email and password. Unknown email and wrong password look alike."""
    security = get_security_logger()
    with provider.get_unit_of_work() as uow:
        user = authenticate(uow.session, body.email, body.password)
        if user is None:
            security.log_login_failure(
                email=body.email,
                source_ip=_client_ip(request),
                request_id=_request_id(request),
            )
            return create_error_response(
                code="INVALID_CREDENTIALS",
                message="Invalid email or password",
                status_code=401,
            )
        security.log_login_success(
            user_id=user.id,
            source_ip=_client_ip(request),
            request_id=_request_id(request),
        )
        return UserResponse.model_validate(user)


# ============================================
# BILLS
# ============================================

@app.post(
    "/api/bills",
    response_model=BillResponse,
    status_code=201,
    responses={404: {"model": ErrorResponse, "description": "User not found"}},
    summary="Generate a bill",
)
def create_bill(
    body: BillCreateRequest,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
    config: ConfigManager = Depends(get_config_instance),
):
    """Generate a PENDING bill for a user's consumed units."""
    with provider.get_unit_of_work() as uow:
        service = BillingService(uow.session, config.billing)
        try:
            bill = service.generate_bill(body.user_id, body.units, body.due_date)
        except EntityNotFoundError:
            return _not_found("User", body.user_id)
        response = BillResponse.model_validate(bill)
        uow.commit()
    return response


@app.get("/api/bills", response_model=List[BillResponse], summary="List bills")
def list_bills(
    user_id: Optional[str] = Query(default=None, max_length=32),
    status: Optional[BillStatus] = Query(default=None),
    provider: DatabaseSessionProvider = Depends(get_db_provider),
    config: ConfigManager = Depends(get_config_instance),
):
    """List bills newest first, optionally filtered by user and status."""
    with provider.get_unit_of_work() as uow:
        bills = BillingService(uow.session, config.billing).list_bills(user_id=user_id, status=status)
        return [BillResponse.model_validate(b) for b in bills]


@app.get(
    "/api/bills/{bill_id}",
    response_model=BillResponse,
    responses={404: {"model": ErrorResponse, "description": "Bill not found"}},
    summary="Get a bill",
)
def read_bill(
    bill_id: int,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
    config: ConfigManager = Depends(get_config_instance),
):
    with provider.get_unit_of_work() as uow:
        try:
            bill = BillingService(uow.session, config.billing).get_bill(bill_id)
        except EntityNotFoundError:
            return _not_found("Bill", bill_id)
        return BillResponse.model_validate(bill)


@app.post(
    "/api/bills/{bill_id}/pay",
    response_model=BillResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Bill not found"},
        409: {"model": ErrorResponse, "description": "Bill already paid"},
    },
    summary="Pay a bill",
)
def pay_bill(
    bill_id: int,
    body: PaymentRequest,
    provider: DatabaseSessionProvider = Depends(get_db_provider),
    config: ConfigManager = Depends(get_config_instance),
):
    with provider.get_unit_of_work() as uow:
        service = BillingService(uow.session, config.billing)
        try:
            bill = service.pay_bill(bill_id, body.payment_method)
        except EntityNotFoundError:
            return _not_found("Bill", bill_id)
        except BillAlreadyPaidError:
            return create_error_response(
                code="BILL_ALREADY_PAID",
                message=f"Bill {bill_id} has already been paid",
                status_code=409,
            )
        response = BillResponse.model_validate(bill)
        uow.commit()
    return response


# ============================================
# SERVICE
# ============================================

@app.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and database health",
)
def health_check(provider: DatabaseSessionProvider = Depends(get_db_provider)):
    """Return health status including database latency. Always returns HTTP 200."""
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    try:
        db_health = check_health(provider.engine, provider.session_factory)
    except Exception as e:
        # Always return HTTP 200, but report error in JSON
        logger.error("Health check failed: %s", e)
        return HealthResponse(
            status="error",
            version=API_VERSION,
            uptime_seconds=uptime_seconds,
            error_message=type(e).__name__,
        )

    return HealthResponse(
        status="healthy" if db_health.healthy else "degraded",
        version=API_VERSION,
        database=db_health.to_dict(),
        uptime_seconds=uptime_seconds,
        error_message=db_health.error,
    )


@app.get("/api/metrics", include_in_schema=False)
def metrics():
    """Prometheus text exposition."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/api/docs")


def main() -> None:
    """Console entry point."""
    import uvicorn

    api = get_config_instance().api
    uvicorn.run(app, host=os.getenv("API_HOST", api.host), port=int(os.getenv("API_PORT", api.port)))


if __name__ == "__main__":
    main()
