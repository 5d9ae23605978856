"""
Service configuration
Supports local development, testing, and production deployment
Environment-aware configuration based on APP_ENV
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import urlparse, unquote

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Environment modes
EnvironmentMode = Literal["development", "test", "production"]


def load_app_environment(mode: Optional[str] = None) -> str:
    """
    Load environment variables from the appropriate .env file.

    Priority:
    1. Explicit 'mode' argument
    2. APP_ENV environment variable
    3. Default to 'development'

    Loads .env.{mode} if it exists, falling back to .env
    """
    if not mode:
        mode = os.getenv('APP_ENV', 'development')

    base_path = Path(__file__).parent
    env_file = base_path / f'.env.{mode}'
    if not env_file.exists():
        env_file = base_path / '.env'

    if env_file.exists():
        logger.info(f"Loading config from {env_file}")
        # override=False keeps variables already set by the host
        load_dotenv(env_file, override=False)
    else:
        logger.debug(f"No config file found for mode '{mode}'")

    return mode


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration"""

    host: str
    port: int
    database: str
    user: str
    password: str

    # Connection pool settings
    min_pool_size: int = 2
    max_pool_size: int = 10
    command_timeout: int = 60  # seconds

    ssl_mode: str = "prefer"

    @classmethod
    def from_url(cls, url: str, **overrides) -> 'DatabaseConfig':
        """Build a config from a postgresql:// URL"""
        parsed = urlparse(url)
        config = cls(
            host=parsed.hostname or 'localhost',
            port=parsed.port or 5432,
            database=(parsed.path or '/').lstrip('/') or 'postgres',
            user=unquote(parsed.username or 'postgres'),
            password=unquote(parsed.password or ''),
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return config

    @classmethod
    def from_environment(cls, mode: Optional[EnvironmentMode] = None) -> 'DatabaseConfig':
        """
        Load configuration from environment variables

        Environment variables:
        - APP_ENV: Environment mode (development, test, production)
        - DATABASE_URL: Full connection URL (takes precedence over DB_*)
        - DB_HOST: Database host (default: localhost)
        - DB_PORT: Database port (default: 5432)
        - DB_NAME: Database name (default: clinic_db)
        - DB_USER: Database user
        - DB_PASSWORD: Database password
        - DB_SSL_MODE: SSL mode (default: prefer in development, require otherwise)

        Args:
            mode: Override environment mode (default: reads from APP_ENV)
        """
        mode = load_app_environment(mode)

        ssl_mode = os.getenv('DB_SSL_MODE', 'require' if mode == 'production' else 'prefer')
        min_pool = int(os.getenv('DB_MIN_POOL_SIZE', '2'))
        max_pool = int(os.getenv('DB_MAX_POOL_SIZE', '10'))

        url = os.getenv('DATABASE_URL')
        if url:
            config = cls.from_url(url, ssl_mode=ssl_mode, min_pool_size=min_pool, max_pool_size=max_pool)
        else:
            config = cls(
                host=os.getenv('DB_HOST', 'localhost'),
                port=int(os.getenv('DB_PORT', '5432')),
                database=os.getenv('DB_NAME', 'clinic_db'),
                user=os.getenv('DB_USER', 'postgres'),
                password=os.getenv('DB_PASSWORD', ''),
                ssl_mode=ssl_mode,
                min_pool_size=min_pool,
                max_pool_size=max_pool,
            )

        config.validate_safety(mode)
        return config

    def validate_safety(self, mode: str):
        """Ensure configuration is safe for the requested mode"""
        if mode == 'test':
            if 'test' not in self.database:
                raise ValueError(f"SAFETY ERROR: Test mode requested but database is '{self.database}'. Test database must contain 'test'.")
            if 'prod' in self.database:
                raise ValueError(f"SAFETY ERROR: Test mode requested but database '{self.database}' appears to be production.")

    @classmethod
    def for_testing(cls) -> 'DatabaseConfig':
        """Configuration for test PostgreSQL database"""
        return cls(
            host='localhost',
            port=5432,
            database='clinic_records_test',
            user='postgres',
            password='postgres',
            ssl_mode='prefer',
            min_pool_size=1,
            max_pool_size=5,
        )


@dataclass
class AuthConfig:
    """
    Bearer token verification settings.

    Tokens are issued elsewhere; this service only verifies them.

    Environment Variables:
    - JWT_SECRET: shared signing secret
    - JWT_ALGORITHM: signing algorithm (default: HS256)
    """
    secret: str
    algorithm: str = "HS256"

    @classmethod
    def from_environment(cls) -> "AuthConfig":
        load_app_environment()
        secret = os.getenv("JWT_SECRET", "")
        if not secret:
            logger.warning("JWT_SECRET is not set; every authenticated request will be rejected")
        return cls(secret=secret, algorithm=os.getenv("JWT_ALGORITHM", "HS256"))


@dataclass
class ServerConfig:
    """HTTP listener settings"""
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    @classmethod
    def from_environment(cls) -> "ServerConfig":
        load_app_environment()
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

