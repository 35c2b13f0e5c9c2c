"""
Configuration module with fail-fast validation.

Values are validated once at import; production environments must provide
every required environment variable.
"""
from dotenv import load_dotenv

from casino_rounds.config_validator import validate_production_config

# Load environment variables from .env file
load_dotenv()


class Config:
    """Production-ready configuration with fail-fast validation."""

    _validated_config = validate_production_config()

    # Database Configuration
    SQLALCHEMY_DATABASE_URI = _validated_config['SQLALCHEMY_DATABASE_URI']
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # JWT Configuration - tokens are verified here, issued by the auth service
    JWT_SECRET_KEY = _validated_config['JWT_SECRET_KEY']
    JWT_ACCESS_TOKEN_EXPIRES = _validated_config['JWT_ACCESS_TOKEN_EXPIRES']
    JWT_TOKEN_LOCATION = ['headers']

    # Rate Limiter Storage URI
    RATELIMIT_STORAGE_URI = _validated_config['RATELIMIT_STORAGE_URI']

    DEBUG = _validated_config['DEBUG']

    # Token for the external tick scheduler
    SERVICE_API_TOKEN = _validated_config['SERVICE_API_TOKEN']

    CORS_ORIGINS_LIST = _validated_config['CORS_ORIGINS']

    # Round timing (seconds)
    ROULETTE_BETTING_SECONDS = _validated_config['ROULETTE_BETTING_SECONDS']
    ROULETTE_SPINNING_SECONDS = _validated_config['ROULETTE_SPINNING_SECONDS']
    ROULETTE_ENDED_SECONDS = _validated_config['ROULETTE_ENDED_SECONDS']
    CRASH_WAITING_SECONDS = _validated_config['CRASH_WAITING_SECONDS']
    CRASH_MAX_FLIGHT_SECONDS = _validated_config['CRASH_MAX_FLIGHT_SECONDS']
    CRASH_ENDED_SECONDS = _validated_config['CRASH_ENDED_SECONDS']

    HISTORY_SIZE = _validated_config['HISTORY_SIZE']
    TICK_INTERVAL_SECONDS = _validated_config['TICK_INTERVAL_SECONDS']
    TICKER_ENABLED = _validated_config['TICKER_ENABLED']
    STALL_FACTOR = _validated_config['STALL_FACTOR']

    # Fairness
    HOUSE_EDGE = _validated_config['HOUSE_EDGE']
    ROULETTE_CLIENT_SEED = _validated_config['ROULETTE_CLIENT_SEED']
    CRASH_CLIENT_SEED = _validated_config['CRASH_CLIENT_SEED']

    # Feature Flags
    ENABLED_GAMES = _validated_config['ENABLED_GAMES']


class TestingConfig(Config):
    TESTING = True
    # Flask-SQLAlchemy shares one connection for in-memory SQLite
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    JWT_SECRET_KEY = 'test-jwt-secret-key-that-is-long-enough-for-hs256'
    SERVICE_API_TOKEN = 'test-service-token'
    RATELIMIT_ENABLED = False
    RATELIMIT_DEFAULT_LIMITS_ENABLED = False
    TICKER_ENABLED = False
    ROULETTE_CLIENT_SEED = 'test-client-seed'
    CRASH_CLIENT_SEED = 'test-client-seed'
    ENABLED_GAMES = ('roulette', 'crash', 'plinko', 'keno', 'blackjack')
