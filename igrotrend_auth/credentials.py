"""
Credential Store

Persists user records and their hashed or encrypted secrets. Uniqueness of
email and username is enforced here with ConflictError so callers can tell
a duplicate apart from any other failure.
"""

import logging
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from .crypto import CryptoManager
from .errors import ConflictError, NotFoundError
from .models import EmailStatus, SecondFactorKind, User, UserRole
from .utils import Validator, normalize_email, utcnow

logger = logging.getLogger(__name__)


class CredentialStore:

    def __init__(self, db_session: DBSession, crypto: CryptoManager, validator: Validator):
        self.db = db_session
        self.crypto = crypto
        self.validator = validator

    # ---- lookups ----

    def get(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.scalars(select(User).where(User.email == normalize_email(email))).first()

    def find_by_username(self, username: str) -> Optional[User]:
        return self.db.scalars(select(User).where(User.username == username.strip().lower())).first()

    def require_by_email(self, email: str) -> User:
        user = self.find_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        return user

    # ---- mutations ----

    def create(
        self,
        email: str,
        password: str,
        username: str,
        display_name: Optional[str] = None,
        role: UserRole = UserRole.USER,
        email_status: EmailStatus = EmailStatus.PENDING,
        commit: bool = True,
    ) -> User:
        email = normalize_email(email)
        username = username.strip().lower()

        self.validator.validate_email(email)
        self.validator.validate_username(username)
        self.validator.validate_password(password)

        if self.find_by_email(email):
            raise ConflictError("Email already registered")
        if self.find_by_username(username):
            raise ConflictError("Username already taken")

        user = User(
            email=email,
            username=username,
            display_name=(display_name or '').strip() or username,
            password_hash=self.crypto.hash_secret(password),
            email_status=email_status,
            role=role,
        )
        self.db.add(user)
        try:
            if commit:
                self.db.commit()
            else:
                self.db.flush()
        except IntegrityError:
            # lost a race against a concurrent registration
            self.db.rollback()
            raise ConflictError("Email or username already registered")
        logger.info("Created user %s (%s)", user.id, user.role.value)
        return user

    def verify_password(self, user: User, password: str) -> bool:
        return self.crypto.verify_secret(user.password_hash, password)

    def update_status(self, email: str, status: EmailStatus, commit: bool = True) -> User:
        user = self.require_by_email(email)
        user.email_status = status
        if commit:
            self.db.commit()
        return user

    def update_password(self, user_id: str, new_password: str, commit: bool = True) -> User:
        user = self.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        self.validator.validate_password(new_password)
        user.password_hash = self.crypto.hash_secret(new_password)
        user.password_changed_at = utcnow()
        if commit:
            self.db.commit()
        return user

    def update_role(self, email: str, role: UserRole, commit: bool = True) -> User:
        user = self.require_by_email(email)
        user.role = role
        if commit:
            self.db.commit()
        logger.info("Role of user %s set to %s", user.id, role.value)
        return user

    def touch_login(self, user: User, commit: bool = True):
        user.last_login_at = utcnow()
        if commit:
            self.db.commit()

    # ---- second factor slots ----

    def factor_secret(self, user: User, kind: SecondFactorKind) -> Optional[str]:
        encrypted = getattr(user, f'{kind.column_prefix}_secret')
        if not encrypted:
            return None
        return self.crypto.decrypt(encrypted)

    def set_factor(
        self,
        user: User,
        kind: SecondFactorKind,
        secret: Optional[str],
        enabled: bool,
        last_step: Optional[int] = None,
        commit: bool = True,
    ) -> User:
        prefix = kind.column_prefix
        setattr(user, f'{prefix}_secret', self.crypto.encrypt(secret) if secret else None)
        setattr(user, f'{prefix}_enabled', enabled)
        setattr(user, f'{prefix}_last_step', last_step)
        if commit:
            self.db.commit()
        return user

    def claim_factor_step(self, user: User, kind: SecondFactorKind, step: int) -> bool:
        """
        Record ``step`` as the last accepted TOTP step for the slot.

        Conditional update: fails when the same (or a later) step was already
        accepted, so a code can only be used once.
        """
        attr = f'{kind.column_prefix}_last_step'
        column = getattr(User, attr)
        result = self.db.execute(
            update(User)
            .where(User.id == user.id, or_(column.is_(None), column < step))
            .values({attr: step})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        setattr(user, attr, step)
        return True
