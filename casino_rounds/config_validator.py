"""
Configuration validation and startup checks.

Production (CASINO_ENV=production) fails fast on missing or insecure values.
Every other environment gets development fallbacks, each reported as a
warning.
"""

import os
import sys
import warnings
import secrets
from typing import List, Tuple, Optional


class ConfigValidationError(Exception):
    """Raised when critical configuration is missing or invalid."""
    pass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't')


class ConfigValidator:
    """Validates application configuration and enforces production security."""

    DEFAULT_SERVICE_TOKEN = 'default_service_token_please_change'

    def __init__(self, is_production: bool = None):
        if is_production is None:
            is_production = os.getenv('CASINO_ENV', 'development').lower() == 'production'

        self.is_production = is_production
        self.is_testing = _env_bool('TESTING', 'False')
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_required_env_var(self, var_name: str, description: str = None) -> Optional[str]:
        value = os.getenv(var_name)
        if not value:
            desc = description or var_name
            if self.is_production:
                self.errors.append(f"CRITICAL: {desc} ({var_name}) must be set in production environment")
            else:
                self.warnings.append(f"WARNING: {desc} ({var_name}) not set - using development fallback")
        return value

    def validate_jwt_config(self) -> Tuple[str, int]:
        """JWT secret and access token lifetime. Tokens are issued elsewhere and only verified here."""
        jwt_secret = self.validate_required_env_var('JWT_SECRET_KEY', 'JWT Secret Key')

        if not jwt_secret:
            if self.is_production:
                raise ConfigValidationError("JWT_SECRET_KEY is required in production")
            jwt_secret = secrets.token_urlsafe(64)
        elif len(jwt_secret) < 32:
            error_msg = "JWT_SECRET_KEY must be at least 32 characters long"
            if self.is_production:
                self.errors.append(f"CRITICAL: {error_msg}")
            else:
                self.warnings.append(f"WARNING: {error_msg}")

        try:
            access_expires = int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES', '3600'))
        except ValueError:
            raise ConfigValidationError("JWT_ACCESS_TOKEN_EXPIRES must be an integer")

        return jwt_secret, access_expires

    def validate_database_config(self) -> Optional[str]:
        database_url = os.getenv('DATABASE_URL')

        if database_url:
            if not database_url.startswith(('postgresql://', 'postgresql+psycopg2://', 'sqlite://')):
                self.errors.append("CRITICAL: DATABASE_URL must use a supported database driver")
            return database_url

        if self.is_production:
            self.errors.append("CRITICAL: DATABASE_URL must be set in production")
            return None

        if not self.is_testing:
            self.warnings.append("DATABASE_URL not set - using local SQLite database casino_rounds.db")
            return 'sqlite:///casino_rounds.db'

        return database_url

    def validate_service_config(self) -> Optional[str]:
        """Token the external tick scheduler presents on /api/internal."""
        service_token = os.getenv('SERVICE_API_TOKEN')

        if not service_token:
            if self.is_production:
                self.errors.append(
                    "CRITICAL: SERVICE_API_TOKEN must be set in production for the tick scheduler"
                )
                return None
            self.warnings.append(
                "SERVICE_API_TOKEN not set - using development default. "
                "Set a strong, unique token for production!"
            )
            return self.DEFAULT_SERVICE_TOKEN

        if service_token == self.DEFAULT_SERVICE_TOKEN and self.is_production:
            self.errors.append(
                "CRITICAL: Default SERVICE_API_TOKEN detected in production. "
                "Set a strong, unique SERVICE_API_TOKEN environment variable."
            )
        return service_token

    def validate_rate_limiting_config(self) -> str:
        rate_limit_uri = os.getenv('RATELIMIT_STORAGE_URI', 'memory://')

        if rate_limit_uri == 'memory://' and self.is_production:
            self.errors.append(
                "CRITICAL: Rate limiting uses memory:// storage in production. "
                "Set RATELIMIT_STORAGE_URI to a Redis URL (e.g., redis://localhost:6379/0)"
            )
        return rate_limit_uri

    def validate_cors_config(self) -> List[str]:
        cors_origins = os.getenv('CORS_ORIGINS', '')

        if not cors_origins and self.is_production:
            self.errors.append(
                "CRITICAL: CORS_ORIGINS must be set in production to specify allowed frontend domains"
            )
            return []

        origins = [origin.strip() for origin in cors_origins.split(',') if origin.strip()]
        for origin in origins:
            if not origin.startswith(('http://', 'https://')):
                self.warnings.append(f"CORS origin '{origin}' should include protocol (http:// or https://)")
        return origins

    def _read_number(self, name: str, default, cast=float, minimum=None):
        raw = os.getenv(name)
        if raw is None or raw == '':
            return default
        try:
            value = cast(raw)
        except ValueError:
            self.errors.append(f"CRITICAL: {name} must be a number, got '{raw}'")
            return default
        if minimum is not None and value < minimum:
            self.errors.append(f"CRITICAL: {name} must be at least {minimum}")
            return default
        return value

    def validate_game_config(self) -> dict:
        """Round timing, history window, stall detection and fairness parameters."""
        config = {
            'ROULETTE_BETTING_SECONDS': self._read_number('ROULETTE_BETTING_SECONDS', 15, minimum=1),
            'ROULETTE_SPINNING_SECONDS': self._read_number('ROULETTE_SPINNING_SECONDS', 5, minimum=1),
            'ROULETTE_ENDED_SECONDS': self._read_number('ROULETTE_ENDED_SECONDS', 5, minimum=0),
            'CRASH_WAITING_SECONDS': self._read_number('CRASH_WAITING_SECONDS', 10, minimum=1),
            'CRASH_MAX_FLIGHT_SECONDS': self._read_number('CRASH_MAX_FLIGHT_SECONDS', 120, minimum=1),
            'CRASH_ENDED_SECONDS': self._read_number('CRASH_ENDED_SECONDS', 3, minimum=0),
            'HISTORY_SIZE': self._read_number('HISTORY_SIZE', 50, cast=int, minimum=1),
            'TICK_INTERVAL_SECONDS': self._read_number('TICK_INTERVAL_SECONDS', 1.0, minimum=0.1),
            'STALL_FACTOR': self._read_number('STALL_FACTOR', 3, minimum=1),
            'HOUSE_EDGE': self._read_number('HOUSE_EDGE', 0.01, minimum=0),
        }
        if config['HOUSE_EDGE'] >= 1:
            self.errors.append("CRITICAL: HOUSE_EDGE must be below 1")

        client_seed = os.getenv('ROULETTE_CLIENT_SEED')
        if not client_seed:
            client_seed = 'casino-rounds-public-seed'
            if self.is_production:
                self.warnings.append("ROULETTE_CLIENT_SEED not set - using the published default client seed")
        config['ROULETTE_CLIENT_SEED'] = client_seed
        config['CRASH_CLIENT_SEED'] = os.getenv('CRASH_CLIENT_SEED') or client_seed

        enabled = os.getenv('ENABLED_GAMES', 'roulette,crash,plinko,keno,blackjack')
        config['ENABLED_GAMES'] = tuple(g.strip() for g in enabled.split(',') if g.strip())
        return config

    def validate_all(self) -> dict:
        """
        Validate all configuration settings.

        Raises:
            ConfigValidationError: If critical configuration is missing in production
        """
        config = {}

        try:
            config['JWT_SECRET_KEY'], config['JWT_ACCESS_TOKEN_EXPIRES'] = self.validate_jwt_config()
            config['SQLALCHEMY_DATABASE_URI'] = self.validate_database_config()
            config['SERVICE_API_TOKEN'] = self.validate_service_config()
            config['RATELIMIT_STORAGE_URI'] = self.validate_rate_limiting_config()
            config['CORS_ORIGINS'] = self.validate_cors_config()
            config.update(self.validate_game_config())

            config['DEBUG'] = _env_bool('FLASK_DEBUG', 'False')
            config['TICKER_ENABLED'] = _env_bool('TICKER_ENABLED', 'True')

            if self.is_production and config['DEBUG']:
                self.errors.append("CRITICAL: DEBUG mode must be disabled in production (set FLASK_DEBUG=False)")

            if self.errors:
                error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in self.errors)
                if self.warnings:
                    error_msg += "\n\nWarnings:\n" + "\n".join(f"  - {warning}" for warning in self.warnings)
                raise ConfigValidationError(error_msg)

            for warning in self.warnings:
                warnings.warn(warning, UserWarning)

            return config

        except ConfigValidationError:
            raise
        except Exception as e:
            raise ConfigValidationError(f"Configuration validation error: {str(e)}") from e


def validate_production_config() -> dict:
    """
    Validate configuration with fail-fast behavior.

    Raises:
        SystemExit: If validation fails; the application must not start half-configured
    """
    try:
        validator = ConfigValidator()
        return validator.validate_all()
    except ConfigValidationError as e:
        print("\nCONFIGURATION VALIDATION FAILED\n", file=sys.stderr)
        print(str(e), file=sys.stderr)
        print("\nApplication startup ABORTED\n", file=sys.stderr)
        sys.exit(1)
