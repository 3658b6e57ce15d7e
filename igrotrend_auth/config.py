"""
Configuration Module for the IgroTrend Authentication Service

This module manages all security configuration parameters.
CRITICAL: Load all secrets from environment variables in production.
"""

import os
import re
from datetime import timedelta
from typing import Dict, Tuple

from dotenv import load_dotenv

load_dotenv()

PLACEHOLDER_SECRET = 'CHANGE_IN_PRODUCTION_USE_ENV_VAR'

_DURATION_RE = re.compile(r'^\s*(\d+)\s*([smhd]?)\s*$')
_DURATION_UNITS = {'': 'seconds', 's': 'seconds', 'm': 'minutes', 'h': 'hours', 'd': 'days'}


def parse_duration(value: str) -> timedelta:
    """Parse '15m', '30s', '2h', '7d' (bare numbers are seconds)."""
    match = _DURATION_RE.match(value or '')
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _rate_limit(action: str, limit: int, window_ms: int) -> Tuple[int, int]:
    """Read RATE_LIMIT_<ACTION> as '<limit>/<window ms>'."""
    raw = os.getenv(f'RATE_LIMIT_{action.upper()}')
    if not raw:
        return limit, window_ms
    count, _, window = raw.partition('/')
    return int(count), int(window or window_ms)


class SecurityConfig:
    """
    Central configuration class for authentication and token management.
    All security-critical parameters are defined here with secure defaults.
    """

    ENV = 'production'
    TESTING = False

    # ==================== CRYPTOGRAPHIC SETTINGS ====================

    JWT_SECRET_KEY = os.getenv('JWT_SECRET', os.getenv('JWT_SECRET_KEY', PLACEHOLDER_SECRET))
    JWT_ALGORITHM = 'HS256'
    JWT_ISSUER = os.getenv('JWT_ISSUER', 'igrotrend')

    # Base64 (urlsafe) 32-byte key for TOTP secrets at rest.
    # Derived from JWT_SECRET_KEY when unset.
    DATA_ENCRYPTION_KEY = os.getenv('DATA_ENCRYPTION_KEY', '')

    # Argon2id parameters - memory-hard KDF resistant to GPU attacks
    ARGON2_TIME_COST = int(os.getenv('ARGON2_TIME_COST', '3'))
    ARGON2_MEMORY_COST = int(os.getenv('ARGON2_MEMORY_COST', '65536'))  # 64 MB
    ARGON2_PARALLELISM = int(os.getenv('ARGON2_PARALLELISM', '4'))
    ARGON2_HASH_LENGTH = 32
    ARGON2_SALT_LENGTH = 16

    # ==================== PASSWORD POLICY ====================

    PASSWORD_MIN_LENGTH = int(os.getenv('PASSWORD_MIN_LENGTH', '6'))
    PASSWORD_REQUIRE_UPPERCASE = _env_bool('PASSWORD_REQUIRE_UPPERCASE', False)
    PASSWORD_REQUIRE_LOWERCASE = _env_bool('PASSWORD_REQUIRE_LOWERCASE', False)
    PASSWORD_REQUIRE_DIGITS = _env_bool('PASSWORD_REQUIRE_DIGITS', False)
    PASSWORD_REQUIRE_SPECIAL = _env_bool('PASSWORD_REQUIRE_SPECIAL', False)
    PASSWORD_SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
    CHECK_COMMON_PASSWORDS = True

    USERNAME_MIN_LENGTH = 3

    # ==================== TOKEN SETTINGS ====================

    # Access token lifetime - short-lived
    ACCESS_TOKEN_EXPIRES = parse_duration(os.getenv('ACCESS_TOKEN_EXPIRES', '15m'))

    # Refresh token lifetime - longer but revocable, rotated on every use
    REFRESH_TOKEN_EXPIRES_DAYS = int(os.getenv('REFRESH_TOKEN_EXPIRES_DAYS', '30'))
    REFRESH_TOKEN_BYTES = 64

    # ==================== COOKIE SECURITY ====================

    REFRESH_COOKIE_NAME = 'refreshToken'
    COOKIE_SECURE = True  # HTTPS only - disabled for local dev
    COOKIE_SAMESITE = os.getenv('COOKIE_SAMESITE', 'Lax')
    COOKIE_PATH = '/'

    # ==================== RATE LIMITING ====================

    # action -> (max requests, window in milliseconds)
    RATE_LIMITS: Dict[str, Tuple[int, int]] = {
        'login': _rate_limit('login', 5, 60 * 1000),
        'verify': _rate_limit('verify', 10, 60 * 60 * 1000),
        'register': _rate_limit('register', 5, 60 * 60 * 1000),
        'second_factor': _rate_limit('second_factor', 10, 60 * 1000),
    }

    # ==================== ACCOUNT VERIFICATION ====================

    VERIFICATION_CODE_EXPIRES = parse_duration(os.getenv('VERIFICATION_CODE_EXPIRES', '10m'))

    # Echo the registration code in the API response. Development only.
    EXPOSE_VERIFICATION_CODE = False

    # ==================== MFA SETTINGS ====================

    # TOTP settings (RFC 6238)
    TOTP_INTERVAL = 30
    TOTP_DIGITS = 6
    TOTP_VALID_WINDOW = 1  # +/- one step of clock drift
    TOTP_ISSUER = os.getenv('TOTP_ISSUER', 'IgroTrend')
    SECURITY_KEY_ISSUER = os.getenv('SECURITY_KEY_ISSUER', 'IgroTrend Key')

    # ==================== DATABASE SETTINGS ====================

    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///igrotrend_auth.db')
    DATABASE_ECHO = False

    # ==================== EMAIL SETTINGS ====================

    # Absent SMTP coordinates degrade sending to a logged no-op
    SMTP_HOST = os.getenv('SMTP_HOST', '')
    SMTP_PORT = int(os.getenv('SMTP_PORT', '587'))
    SMTP_USERNAME = os.getenv('SMTP_USER', '')
    SMTP_PASSWORD = os.getenv('SMTP_PASS', '')
    SMTP_TIMEOUT = 10
    EMAIL_FROM = os.getenv('EMAIL_FROM', os.getenv('SMTP_USER', 'noreply@igrotrend.local'))

    # ==================== HTTP ====================

    ALLOWED_ORIGINS = [o.strip() for o in os.getenv('ALLOWED_ORIGINS', '*').split(',') if o.strip()]

    # Reverse proxies in front of the app whose X-Forwarded-For entries are trusted.
    # 0 means clients connect directly and the header is ignored.
    TRUSTED_PROXY_COUNT = int(os.getenv('TRUSTED_PROXY_COUNT', '0'))

    # ==================== LOGGING ====================

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    @property
    def REFRESH_TOKEN_EXPIRES(self) -> timedelta:
        return timedelta(days=self.REFRESH_TOKEN_EXPIRES_DAYS)

    @property
    def is_development(self) -> bool:
        return self.ENV == 'development'

    def validate(self):
        """Refuse unsafe settings outside development and testing."""
        if self.ENV == 'production' and self.JWT_SECRET_KEY == PLACEHOLDER_SECRET:
            raise RuntimeError("JWT_SECRET must be set in production")


class DevelopmentConfig(SecurityConfig):
    """Development configuration - less strict for local work"""
    ENV = 'development'
    COOKIE_SECURE = False  # Allow HTTP in development
    EXPOSE_VERIFICATION_CODE = _env_bool('EXPOSE_VERIFICATION_CODE', True)
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')


class ProductionConfig(SecurityConfig):
    """Production configuration - maximum security"""
    ENV = 'production'
    COOKIE_SECURE = True
    EXPOSE_VERIFICATION_CODE = False


class TestingConfig(SecurityConfig):
    """Test configuration - in-memory database and cheap hashing"""
    ENV = 'testing'
    TESTING = True
    JWT_SECRET_KEY = 'test-signing-key-not-for-production-use'
    DATABASE_URL = 'sqlite://'
    COOKIE_SECURE = False

    ARGON2_TIME_COST = 1
    ARGON2_MEMORY_COST = 1024
    ARGON2_PARALLELISM = 1

    SMTP_HOST = ''
    ALLOWED_ORIGINS = ['http://localhost:3000']
    TRUSTED_PROXY_COUNT = 0
    LOG_LEVEL = 'WARNING'

    RATE_LIMITS = {
        'login': (5, 60 * 1000),
        'verify': (10, 60 * 60 * 1000),
        'register': (5, 60 * 60 * 1000),
        'second_factor': (10, 60 * 1000),
    }


# Configuration selector based on environment
def get_config() -> SecurityConfig:
    """
    Returns appropriate configuration based on environment.
    Default to production for safety.
    """
    env = os.getenv('APP_ENV') or os.getenv('FLASK_ENV', 'production')
    if env == 'development':
        return DevelopmentConfig()
    if env == 'testing':
        return TestingConfig()
    return ProductionConfig()
