import re
from datetime import datetime, timezone
from typing import List

from .errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_RE = re.compile(r"^[a-z0-9_.-]+$")

# Small subset; the full list belongs to a breach database
COMMON_PASSWORDS = {
    'password', '123456', '12345678', 'qwerty', 'abc123', 'monkey',
    '1234567', 'letmein', 'trustno1', 'dragon', 'baseball', 'iloveyou',
    'master', 'sunshine', 'passw0rd', 'shadow', '123123', '654321',
    'superman', 'qazwsx', 'football', 'welcome', 'password1', '123456789',
    'admin', '12345', 'qwerty123', '111111',
}


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class Validator:
    def __init__(self, settings):
        self.min_length = settings.PASSWORD_MIN_LENGTH
        self.require_uppercase = settings.PASSWORD_REQUIRE_UPPERCASE
        self.require_lowercase = settings.PASSWORD_REQUIRE_LOWERCASE
        self.require_digits = settings.PASSWORD_REQUIRE_DIGITS
        self.require_special = settings.PASSWORD_REQUIRE_SPECIAL
        self.special_chars = settings.PASSWORD_SPECIAL_CHARS
        self.check_common = settings.CHECK_COMMON_PASSWORDS
        self.username_min_length = settings.USERNAME_MIN_LENGTH

    def password_errors(self, password: str) -> List[str]:
        errors = []
        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters")
        if self.require_uppercase and not re.search(r'[A-Z]', password):
            errors.append("Password must contain at least one uppercase letter")
        if self.require_lowercase and not re.search(r'[a-z]', password):
            errors.append("Password must contain at least one lowercase letter")
        if self.require_digits and not re.search(r'\d', password):
            errors.append("Password must contain at least one digit")
        if self.require_special and not re.search(f'[{re.escape(self.special_chars)}]', password):
            errors.append("Password must contain at least one special character")
        if self.check_common and password.lower() in COMMON_PASSWORDS:
            errors.append("Password is too common")
        return errors

    def validate_password(self, password: str):
        errors = self.password_errors(password)
        if errors:
            raise ValidationError('; '.join(errors))

    def validate_email(self, email: str):
        if not EMAIL_RE.match(email):
            raise ValidationError("Invalid email address")

    def validate_username(self, username: str):
        if len(username) < self.username_min_length:
            raise ValidationError(f"Username must be at least {self.username_min_length} characters")
        if not USERNAME_RE.match(username):
            raise ValidationError("Username may only contain letters, digits, '.', '_' and '-'")
