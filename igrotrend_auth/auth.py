"""
Authentication Module
Registration, email verification, login, refresh and logout on top of the
credential store and the token managers.
"""

import logging
import smtplib
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session as DBSession

from .crypto import CryptoManager
from .credentials import CredentialStore
from .email_service import EmailService
from .errors import (
    AuthError,
    CodeNotFoundOrExpiredError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidTokenError,
    RateLimitedError,
    SecondFactorError,
    SecondFactorRequiredError,
    ValidationError,
)
from .mfa import SecondFactorManager
from .models import AuditLog, EmailStatus, SecondFactorKind, User
from .rate_limiter import RateLimitPolicy
from .refresh_tokens import RefreshTokenManager
from .tokens import TokenService
from .utils import Validator, utcnow
from .verification import CODE_DIGITS, PURPOSE_REGISTER, VerificationCodeManager

logger = logging.getLogger(__name__)


def _require_text(**fields):
    """Request fields arrive as parsed JSON; anything but a string is malformed."""
    for name, value in fields.items():
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{name} must be a string")


def _code_text(value, digits: int) -> Optional[str]:
    """One-time codes may arrive as JSON numbers; leading zeros are restored."""
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return str(value).zfill(digits)
    _require_text(code=value)
    return value


@dataclass
class SessionTokens:
    user: User
    access_token: str
    refresh_token: str


class AuthenticationManager:
    """Complete authentication management with security controls"""

    def __init__(
        self,
        db_session: DBSession,
        settings,
        crypto: CryptoManager,
        token_service: TokenService,
        email_service: EmailService,
        rate_limits: RateLimitPolicy,
        clock: Callable = utcnow,
    ):
        self.db = db_session
        self.settings = settings
        self.tokens = token_service
        self.email = email_service
        self.rate_limits = rate_limits
        self.credentials = CredentialStore(db_session, crypto, Validator(settings))
        self.refresh_tokens = RefreshTokenManager(
            db_session,
            crypto,
            lifetime=settings.REFRESH_TOKEN_EXPIRES,
            token_bytes=settings.REFRESH_TOKEN_BYTES,
            clock=clock,
        )
        self.codes = VerificationCodeManager(db_session, settings.VERIFICATION_CODE_EXPIRES, clock=clock)
        self.factors: Dict[SecondFactorKind, SecondFactorManager] = {
            kind: SecondFactorManager.from_config(self.credentials, kind, settings)
            for kind in SecondFactorKind
        }

    # ---- registration & verification ----

    def register_user(
        self,
        email: str,
        password: str,
        username: str,
        display_name: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Tuple[User, str]:
        """
        Create a PENDING account and its verification code.

        The account and code are committed before the email goes out; a
        transport failure is logged and does not undo the registration.
        """
        self._check_rate_limit('register', ip_address)
        _require_text(email=email, password=password, username=username, displayName=display_name)
        if not email or not password or not username:
            raise ValidationError("Email, password, and username are required")

        user = self.credentials.create(email, password, username, display_name, commit=False)
        code = self.codes.issue(user.email, PURPOSE_REGISTER, commit=False)
        self.db.commit()

        minutes = int(self.settings.VERIFICATION_CODE_EXPIRES.total_seconds() // 60)
        try:
            self.email.send_verification_code(user.email, code, minutes)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send verification email to user %s", user.id)

        self._log_event(user.id, 'user_registration', ip_address)
        return user, code

    def verify_email(self, email: str, code: str, ip_address: Optional[str] = None) -> SessionTokens:
        self._check_rate_limit('verify', ip_address)
        _require_text(email=email)
        code = _code_text(code, CODE_DIGITS)
        if not email or not code:
            raise ValidationError("Email and verification code are required")

        user = self.credentials.find_by_email(email)
        if user is None:
            # same answer as a wrong code
            raise CodeNotFoundOrExpiredError()

        self.codes.consume(email, code, PURPOSE_REGISTER, commit=False)
        self.credentials.update_status(user.email, EmailStatus.VERIFIED)

        self._log_event(user.id, 'email_verified', ip_address)
        return self._start_session(user)

    # ---- login ----

    def authenticate_user(
        self,
        email: str,
        password: str,
        code: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> SessionTokens:
        """
        Every attempt counts against the login rate limit, successful or not.

        Raises:
            RateLimitedError, ValidationError, InvalidCredentialsError,
            EmailNotVerifiedError, SecondFactorRequiredError, AuthError
        """
        self._check_rate_limit('login', ip_address)
        _require_text(email=email, password=password)
        code = _code_text(code, self.settings.TOTP_DIGITS)
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = self.credentials.find_by_email(email)
        if not user or not self.credentials.verify_password(user, password):
            self._log_event(user.id if user else None, 'login_failed', ip_address, 'FAILURE', 'invalid_credentials')
            raise InvalidCredentialsError()

        if not user.is_verified:
            raise EmailNotVerifiedError(extra={'needsVerification': True})

        enabled = user.enabled_factors
        if enabled:
            if not code:
                raise SecondFactorRequiredError(extra={'factors': [kind.value for kind in enabled]})
            if not any(self.factors[kind].verify(user, code) for kind in enabled):
                self._log_event(user.id, 'login_failed', ip_address, 'FAILURE', 'second_factor')
                raise AuthError("Invalid two-factor code")

        self.credentials.touch_login(user)
        self._log_event(user.id, 'login_success', ip_address)
        return self._start_session(user)

    # ---- token lifecycle ----

    def refresh(self, raw_refresh_token: Optional[str], ip_address: Optional[str] = None) -> SessionTokens:
        if not raw_refresh_token:
            raise AuthError("No refresh token provided")

        record = self.refresh_tokens.verify(raw_refresh_token)
        if record is None:
            raise InvalidTokenError("Invalid or expired refresh token")

        user = self.credentials.get(record.user_id)
        if user is None:
            raise InvalidTokenError("User not found")

        new_refresh = self.refresh_tokens.rotate(record.id, user.id)
        self._log_event(user.id, 'token_refresh', ip_address)
        return SessionTokens(user, self._access_token(user), new_refresh)

    def logout(self, raw_refresh_token: Optional[str], ip_address: Optional[str] = None) -> bool:
        if not raw_refresh_token:
            return False
        user_id = self.refresh_tokens.revoke_token(raw_refresh_token)
        if user_id is None:
            return False
        self._log_event(user_id, 'logout', ip_address)
        return True

    def current_user(self, access_token: Optional[str]) -> User:
        if not access_token:
            raise AuthError("Access token required")
        claims = self.tokens.verify_access_token(access_token)
        user = self.credentials.get(claims['userId'])
        if user is None:
            raise InvalidTokenError("User not found")
        return user

    def change_password(
        self,
        access_token: Optional[str],
        current_password: str,
        new_password: str,
        ip_address: Optional[str] = None,
    ) -> SessionTokens:
        """Change the password and end every other session of the user."""
        user = self.current_user(access_token)
        _require_text(currentPassword=current_password, newPassword=new_password)
        if not current_password or not new_password:
            raise ValidationError("Current and new password are required")
        if not self.credentials.verify_password(user, current_password):
            raise InvalidCredentialsError("Current password is incorrect")

        self.credentials.update_password(user.id, new_password)
        revoked = self.refresh_tokens.revoke_all_for_user(user.id)
        logger.info("Password changed for user %s; %d sessions revoked", user.id, revoked)
        self._log_event(user.id, 'password_changed', ip_address)
        return self._start_session(user)

    # ---- second factors ----

    def begin_second_factor(self, kind: SecondFactorKind, email: str) -> Dict[str, str]:
        _require_text(email=email)
        if not email:
            raise ValidationError("Email is required")
        return self.factors[kind].begin_enrollment(email)

    def confirm_second_factor(self, kind: SecondFactorKind, email: str, code: str, secret: str,
                              ip_address: Optional[str] = None) -> User:
        self._check_rate_limit('second_factor', ip_address)
        _require_text(email=email, secret=secret)
        code = _code_text(code, self.settings.TOTP_DIGITS)
        if not email or not code or not secret:
            raise ValidationError("Email, code and secret required")
        user = self.factors[kind].confirm_enrollment(email, code, secret)
        self._log_event(user.id, f'{kind.value}_enabled', ip_address)
        return user

    def disable_second_factor(self, kind: SecondFactorKind, email: str, code: str,
                              ip_address: Optional[str] = None) -> User:
        self._check_rate_limit('second_factor', ip_address)
        _require_text(email=email)
        code = _code_text(code, self.settings.TOTP_DIGITS)
        if not email or not code:
            raise ValidationError("Email and code required")
        try:
            user = self.factors[kind].disable(email, code)
        except SecondFactorError:
            self._log_event(None, f'{kind.value}_disable_failed', ip_address, 'FAILURE')
            raise
        self._log_event(user.id, f'{kind.value}_disabled', ip_address)
        return user

    # ---- helpers ----

    def _access_token(self, user: User) -> str:
        return self.tokens.issue_access_token(user.id, user.email)

    def _start_session(self, user: User) -> SessionTokens:
        refresh_token = self.refresh_tokens.issue(user.id)
        return SessionTokens(user, self._access_token(user), refresh_token)

    def _check_rate_limit(self, action: str, ip_address: Optional[str]):
        if not self.rate_limits.allow(action, ip_address):
            logger.warning("Rate limit hit for %s from %s", action, ip_address)
            raise RateLimitedError()

    def _log_event(self, user_id, event_type, ip_address, status='SUCCESS', details=None):
        """Create audit log entry"""
        self.db.add(AuditLog(
            user_id=user_id,
            event_type=event_type,
            ip_address=ip_address,
            status=status,
            details=details,
        ))
        self.db.commit()
