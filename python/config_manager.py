"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import re
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Any, Optional, List

import yaml

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration"""
    url: Optional[str] = None
    host: str = "localhost"
    port: int = 5432
    user: str = "ebilling_user"
    password: str = "ebilling_password"
    name: str = "ebilling"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    connect_timeout: int = 10
    statement_timeout_ms: int = 5000
    echo: bool = False
    create_tables: bool = True


@dataclass
class AllocationConfig:
    """User ID allocation settings"""
    prefix: str = "USER"
    width: int = 4
    max_attempts: int = 5
    retry_wait_min_ms: int = 5
    retry_wait_max_ms: int = 50


@dataclass
class BillingConfig:
    """Tariff and due date settings"""
    rate_per_unit: Decimal = Decimal("6.50")
    due_days: int = 15


@dataclass
class SecurityConfig:
    """Password hashing settings"""
    bcrypt_rounds: int = 12
    password_min_length: int = 8


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    security_log_dir: str = "logs"


@dataclass
class ApiConfig:
    """HTTP server configuration"""
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:4200",
        "http://127.0.0.1:4200",
    ])


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.allocation: AllocationConfig = AllocationConfig()
        self.billing: BillingConfig = BillingConfig()
        self.security: SecurityConfig = SecurityConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.api: ApiConfig = ApiConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    @classmethod
    def from_dict(cls, raw_config: Dict[str, Any]) -> 'ConfigManager':
        """Build a configuration from an in-memory mapping (no file lookup)"""
        manager = cls.__new__(cls)
        manager.config_path = None
        manager._raw_config = raw_config or {}
        manager.database = DatabaseConfig()
        manager.allocation = AllocationConfig()
        manager.billing = BillingConfig()
        manager.security = SecurityConfig()
        manager.logging = LoggingConfig()
        manager.api = ApiConfig()
        manager._parse_all()
        return manager

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_all()

    def _parse_all(self) -> None:
        self._parse_database()
        self._parse_allocation()
        self._parse_billing()
        self._parse_security()
        self._parse_logging()
        self._parse_api()
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        return cfg

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        defaults = DatabaseConfig()
        self.database = DatabaseConfig(
            url=cfg.get('url', defaults.url),
            host=cfg.get('host', defaults.host),
            port=int(cfg.get('port', defaults.port)),
            user=cfg.get('user', defaults.user),
            password=cfg.get('password', defaults.password),
            name=cfg.get('name', defaults.name),
            pool_size=int(cfg.get('pool_size', defaults.pool_size)),
            max_overflow=int(cfg.get('max_overflow', defaults.max_overflow)),
            pool_timeout=int(cfg.get('pool_timeout', defaults.pool_timeout)),
            pool_recycle=int(cfg.get('pool_recycle', defaults.pool_recycle)),
            connect_timeout=int(cfg.get('connect_timeout', defaults.connect_timeout)),
            statement_timeout_ms=int(cfg.get('statement_timeout_ms', defaults.statement_timeout_ms)),
            echo=bool(cfg.get('echo', defaults.echo)),
            create_tables=bool(cfg.get('create_tables', defaults.create_tables))
        )

    def _parse_allocation(self) -> None:
        """Parse user ID allocation configuration"""
        cfg = self._section('allocation')
        defaults = AllocationConfig()
        self.allocation = AllocationConfig(
            prefix=str(cfg.get('prefix', defaults.prefix)),
            width=int(cfg.get('width', defaults.width)),
            max_attempts=int(cfg.get('max_attempts', defaults.max_attempts)),
            retry_wait_min_ms=int(cfg.get('retry_wait_min_ms', defaults.retry_wait_min_ms)),
            retry_wait_max_ms=int(cfg.get('retry_wait_max_ms', defaults.retry_wait_max_ms))
        )

    def _parse_billing(self) -> None:
        """Parse billing configuration"""
        cfg = self._section('billing')
        defaults = BillingConfig()
        raw_rate = cfg.get('rate_per_unit', defaults.rate_per_unit)
        try:
            # str() first so YAML floats like 6.5 don't carry binary noise
            rate = Decimal(str(raw_rate))
        except InvalidOperation:
            raise ConfigurationError(f"billing.rate_per_unit is not a number: {raw_rate!r}")
        self.billing = BillingConfig(
            rate_per_unit=rate,
            due_days=int(cfg.get('due_days', defaults.due_days))
        )

    def _parse_security(self) -> None:
        """Parse security configuration"""
        cfg = self._section('security')
        defaults = SecurityConfig()
        self.security = SecurityConfig(
            bcrypt_rounds=int(cfg.get('bcrypt_rounds', defaults.bcrypt_rounds)),
            password_min_length=int(cfg.get('password_min_length', defaults.password_min_length))
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        defaults = LoggingConfig()
        self.logging = LoggingConfig(
            level=str(cfg.get('level', defaults.level)).upper(),
            file=cfg.get('file', defaults.file),
            console=bool(cfg.get('console', defaults.console)),
            format=cfg.get('format', defaults.format),
            security_log_dir=cfg.get('security_log_dir', defaults.security_log_dir)
        )

    def _parse_api(self) -> None:
        """Parse API server configuration"""
        cfg = self._section('api')
        defaults = ApiConfig()
        origins = cfg.get('cors_origins', defaults.cors_origins)
        if isinstance(origins, str):
            origins = [origin.strip() for origin in origins.split(",") if origin.strip()]
        self.api = ApiConfig(
            host=cfg.get('host', defaults.host),
            port=int(cfg.get('port', defaults.port)),
            cors_origins=list(origins)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (password omitted)"""
        return {
            'database': {
                'url': self.database.url,
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name,
                'pool_size': self.database.pool_size,
                'pool_timeout': self.database.pool_timeout,
                'connect_timeout': self.database.connect_timeout,
                'statement_timeout_ms': self.database.statement_timeout_ms,
                'create_tables': self.database.create_tables
            },
            'allocation': {
                'prefix': self.allocation.prefix,
                'width': self.allocation.width,
                'max_attempts': self.allocation.max_attempts,
                'retry_wait_min_ms': self.allocation.retry_wait_min_ms,
                'retry_wait_max_ms': self.allocation.retry_wait_max_ms
            },
            'billing': {
                'rate_per_unit': str(self.billing.rate_per_unit),
                'due_days': self.billing.due_days
            },
            'security': {
                'bcrypt_rounds': self.security.bcrypt_rounds,
                'password_min_length': self.security.password_min_length
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            },
            'api': {
                'host': self.api.host,
                'port': self.api.port,
                'cors_origins': self.api.cors_origins
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        errors = []

        alloc = self.allocation
        if not re.fullmatch(r'[A-Za-z0-9]+', alloc.prefix or ''):
            errors.append("allocation.prefix must be a non-empty alphanumeric string")
        if not 1 <= alloc.width <= 18:
            errors.append("allocation.width must be between 1 and 18")
        if alloc.max_attempts < 1:
            errors.append("allocation.max_attempts must be at least 1")
        if alloc.retry_wait_min_ms < 0 or alloc.retry_wait_min_ms > alloc.retry_wait_max_ms:
            errors.append("allocation.retry_wait_min_ms must be >= 0 and <= retry_wait_max_ms")

        if self.billing.rate_per_unit <= 0:
            errors.append("billing.rate_per_unit must be positive")
        if self.billing.due_days < 0:
            errors.append("billing.due_days must not be negative")

        if not 4 <= self.security.bcrypt_rounds <= 31:
            errors.append("security.bcrypt_rounds must be between 4 and 31")
        if self.security.password_min_length < 1:
            errors.append("security.password_min_length must be at least 1")

        if self.database.pool_size < 1:
            errors.append("database.pool_size must be at least 1")
        if self.database.pool_timeout < 1 or self.database.connect_timeout < 1:
            errors.append("database timeouts must be at least 1 second")
        if self.database.statement_timeout_ms < 1:
            errors.append("database.statement_timeout_ms must be at least 1")

        if self.logging.level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"logging.level is not a valid level: {self.logging.level}")

        if errors:
            raise ConfigurationError("; ".join(errors))


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)


def configure_logging(config: LoggingConfig) -> None:
    """Configure root logging from the logging section"""
    handlers: List[logging.Handler] = []
    if config.console:
        handlers.append(logging.StreamHandler())
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, config.level, logging.INFO),
        format=config.format,
        handlers=handlers or None,
        force=True
    )
