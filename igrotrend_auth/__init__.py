"""
IgroTrend authentication service.

Access tokens, rotating refresh tokens, email verification codes, TOTP
second factors and rate limiting for the IgroTrend platform.

Run with:  flask --app igrotrend_auth:create_app run
"""

from .app import create_app

__all__ = ['create_app']
