"""
Error taxonomy for the authentication service.

Every error carries a stable machine-checkable ``kind``, a human-readable
message and the HTTP status the web layer answers with.
"""

from typing import Any, Dict, Optional


class AuthServiceError(Exception):
    kind = 'error'
    status_code = 400
    default_message = 'Request failed'

    def __init__(self, message: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.extra = extra or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {'error': self.kind, 'message': self.message}
        payload.update(self.extra)
        return payload


class ValidationError(AuthServiceError):
    kind = 'validation_error'
    status_code = 400
    default_message = 'Invalid request'


class ConflictError(AuthServiceError):
    kind = 'conflict'
    status_code = 400
    default_message = 'Resource already exists'


class AuthError(AuthServiceError):
    kind = 'unauthenticated'
    status_code = 401
    default_message = 'Authentication required'


class InvalidCredentialsError(AuthError):
    kind = 'invalid_credentials'
    default_message = 'Invalid email or password'


class InvalidTokenError(AuthError):
    kind = 'invalid_token'
    default_message = 'Invalid token'


class TokenExpiredError(AuthError):
    kind = 'token_expired'
    default_message = 'Token has expired'


class RefreshTokenReusedError(InvalidTokenError):
    kind = 'refresh_token_reused'
    default_message = 'Refresh token already used or revoked'


class SecondFactorRequiredError(AuthError):
    kind = 'second_factor_required'
    default_message = 'Two-factor code required'


class EmailNotVerifiedError(AuthError):
    kind = 'email_not_verified'
    status_code = 403
    default_message = 'Please verify your email first'


class RateLimitedError(AuthServiceError):
    kind = 'rate_limited'
    status_code = 429
    default_message = 'Too many attempts, try again later'


class NotFoundError(AuthServiceError):
    kind = 'not_found'
    status_code = 404
    default_message = 'Not found'


class CodeNotFoundOrExpiredError(NotFoundError):
    kind = 'code_not_found_or_expired'
    status_code = 400
    default_message = 'Invalid or expired verification code'


class SecondFactorError(AuthServiceError):
    kind = 'second_factor_invalid'
    status_code = 400
    default_message = 'Invalid code'


class InternalError(AuthServiceError):
    kind = 'internal_error'
    status_code = 500
    default_message = 'Internal server error'
