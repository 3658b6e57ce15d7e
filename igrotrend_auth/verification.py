import logging
import secrets
from datetime import timedelta
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session as DBSession

from .errors import CodeNotFoundOrExpiredError
from .models import VerificationCode
from .utils import normalize_email, utcnow

logger = logging.getLogger(__name__)

PURPOSE_REGISTER = 'register'
CODE_DIGITS = 6


def generate_code() -> str:
    """Uniformly random CODE_DIGITS-digit code, 100000-999999."""
    return str(100000 + secrets.randbelow(900000))


class VerificationCodeManager:
    """Short-lived single-use email codes"""

    def __init__(self, db: DBSession, lifetime: timedelta = timedelta(minutes=10), clock: Callable = utcnow):
        self.db = db
        self.lifetime = lifetime
        self.clock = clock

    def issue(self, email: str, purpose: str = PURPOSE_REGISTER, commit: bool = True) -> str:
        code = generate_code()
        now = self.clock()
        self.db.add(VerificationCode(
            email=normalize_email(email),
            code=code,
            purpose=purpose,
            created_at=now,
            expires_at=now + self.lifetime,
        ))
        if commit:
            self.db.commit()
        return code

    def consume(self, email: str, code: str, purpose: str = PURPOSE_REGISTER, commit: bool = True) -> VerificationCode:
        """
        Use up the newest unexpired code matching (email, code, purpose).

        The delete is conditional on the row still existing, so replaying
        the same code concurrently succeeds at most once.

        Raises:
            CodeNotFoundOrExpiredError
        """
        record = self.db.scalars(
            select(VerificationCode)
            .where(
                VerificationCode.email == normalize_email(email),
                VerificationCode.code == str(code).strip(),
                VerificationCode.purpose == purpose,
                VerificationCode.expires_at > self.clock(),
            )
            .order_by(VerificationCode.created_at.desc(), VerificationCode.id.desc())
            .limit(1)
        ).first()
        if record is None:
            raise CodeNotFoundOrExpiredError()

        result = self.db.execute(
            delete(VerificationCode)
            .where(VerificationCode.id == record.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise CodeNotFoundOrExpiredError()
        if commit:
            self.db.commit()
        return record
