"""
Multi-Factor Authentication (MFA) Module

TOTP second factors (RFC 6238), compatible with Google Authenticator,
Yandex Key, Authy and the like. A user has two independent slots
(SecondFactorKind.TOTP and SecondFactorKind.SECURITY_KEY); both run the same
SecondFactorManager, one instance per slot.

Flow:
1. begin_enrollment: fresh secret + otpauth:// URI + QR code (nothing saved)
2. confirm_enrollment: first code checked against the unsaved secret, then
   the secret is stored encrypted and the slot enabled
3. disable: requires a valid current code against the stored secret
"""

import base64
import io
import logging
import time
from typing import Callable, Dict, Optional

import pyotp
import qrcode
from pyotp.utils import strings_equal

from .credentials import CredentialStore
from .errors import SecondFactorError
from .models import SecondFactorKind, User

logger = logging.getLogger(__name__)


class SecondFactorManager:

    def __init__(
        self,
        credentials: CredentialStore,
        kind: SecondFactorKind,
        issuer: str,
        interval: int = 30,
        digits: int = 6,
        valid_window: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        self.credentials = credentials
        self.kind = kind
        self.issuer = issuer
        self.interval = interval
        self.digits = digits
        self.valid_window = valid_window
        self.clock = clock

    @classmethod
    def from_config(cls, credentials: CredentialStore, kind: SecondFactorKind, settings, **kwargs):
        issuer = settings.TOTP_ISSUER if kind is SecondFactorKind.TOTP else settings.SECURITY_KEY_ISSUER
        return cls(
            credentials,
            kind,
            issuer,
            interval=settings.TOTP_INTERVAL,
            digits=settings.TOTP_DIGITS,
            valid_window=settings.TOTP_VALID_WINDOW,
            **kwargs,
        )

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, interval=self.interval, digits=self.digits, issuer=self.issuer)

    def generate_secret(self) -> str:
        # pyotp.random_base32() uses the secrets module internally
        return pyotp.random_base32()

    def get_provisioning_uri(self, secret: str, account_identifier: str) -> str:
        """Format: otpauth://totp/Issuer:account?secret=SECRET&issuer=Issuer"""
        return self._totp(secret).provisioning_uri(name=account_identifier, issuer_name=self.issuer)

    @staticmethod
    def generate_qr_code(provisioning_uri: str) -> str:
        """Returns a PNG data URL, usable directly as <img src>."""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(provisioning_uri)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()

    def current_code(self, secret: str) -> str:
        return self._totp(secret).at(int(self.clock()))

    def match_step(self, secret: str, code: Optional[str]) -> Optional[int]:
        """
        Returns the time step ``code`` belongs to, checking the current step
        and ``valid_window`` steps either side, or None if it matches none.
        """
        code = (code or '').strip()
        if len(code) != self.digits or not code.isdigit():
            return None
        totp = self._totp(secret)
        current = int(self.clock()) // self.interval
        try:
            for step in range(current - self.valid_window, current + self.valid_window + 1):
                if strings_equal(code, totp.generate_otp(step)):
                    return step
        except ValueError:
            raise SecondFactorError("Invalid secret")
        return None

    # ---- enrollment ----

    def begin_enrollment(self, email: str) -> Dict[str, str]:
        user = self.credentials.require_by_email(email)
        secret = self.generate_secret()
        uri = self.get_provisioning_uri(secret, user.email)
        return {
            'secret': secret,
            'provisioningUri': uri,
            'qrImage': self.generate_qr_code(uri),
        }

    def confirm_enrollment(self, email: str, code: str, secret: str) -> User:
        user = self.credentials.require_by_email(email)
        if user.factor_enabled(self.kind):
            raise SecondFactorError(f"{self.kind.label} already enabled")

        step = self.match_step(secret, code)
        if step is None:
            raise SecondFactorError("Invalid code")

        self.credentials.set_factor(user, self.kind, secret, enabled=True, last_step=step)
        logger.info("%s enabled for user %s", self.kind.label, user.id)
        return user

    def disable(self, email: str, code: str) -> User:
        user = self.credentials.find_by_email(email)
        secret = self.credentials.factor_secret(user, self.kind) if user else None
        if not user or not user.factor_enabled(self.kind) or not secret:
            raise SecondFactorError(f"{self.kind.label} not enabled")

        if not self._accept(user, secret, code):
            raise SecondFactorError("Invalid code")

        self.credentials.set_factor(user, self.kind, None, enabled=False)
        logger.info("%s disabled for user %s", self.kind.label, user.id)
        return user

    # ---- login ----

    def verify(self, user: User, code: str) -> bool:
        """Check ``code`` against the stored secret and burn its time step."""
        if not user.factor_enabled(self.kind):
            return False
        secret = self.credentials.factor_secret(user, self.kind)
        if not secret or not self._accept(user, secret, code):
            return False
        self.credentials.db.commit()
        return True

    def _accept(self, user: User, secret: str, code: str) -> bool:
        step = self.match_step(secret, code)
        if step is None:
            return False
        if not self.credentials.claim_factor_step(user, self.kind, step):
            logger.warning("Replayed %s code for user %s", self.kind.label, user.id)
            return False
        return True
