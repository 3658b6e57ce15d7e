"""
Refresh Token Management

Long-lived, opaque refresh tokens:
- 64 bytes of randomness, hex encoded, handed to the client once
- only an Argon2 digest is persisted, so lookup is a linear scan that
  verifies the presented token against every live digest
- rotated on every use: the old record is deleted and a new one inserted in
  one transaction, and a second caller holding the same old token fails
"""

import logging
import secrets
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session as DBSession

from .crypto import CryptoManager
from .errors import RefreshTokenReusedError
from .models import RefreshToken
from .utils import utcnow

logger = logging.getLogger(__name__)


class RefreshTokenManager:

    def __init__(
        self,
        db: DBSession,
        crypto: CryptoManager,
        lifetime: timedelta = timedelta(days=30),
        token_bytes: int = 64,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.crypto = crypto
        self.lifetime = lifetime
        self.token_bytes = token_bytes
        self.clock = clock

    def _stage(self, user_id: str) -> str:
        raw_token = secrets.token_hex(self.token_bytes)
        now = self.clock()
        self.db.add(RefreshToken(
            user_id=user_id,
            token_hash=self.crypto.hash_secret(raw_token),
            created_at=now,
            expires_at=now + self.lifetime,
        ))
        return raw_token

    def issue(self, user_id: str) -> str:
        """
        Creates and stores a new refresh token for the user.
        Returns the raw token; it is never persisted.
        """
        raw_token = self._stage(user_id)
        self.db.commit()
        return raw_token

    def verify(self, raw_token: str) -> Optional[RefreshToken]:
        """Returns the live record matching ``raw_token``, or None."""
        if not raw_token:
            return None
        candidates = self.db.scalars(
            select(RefreshToken).where(RefreshToken.expires_at > self.clock())
        ).all()
        for record in candidates:
            if self.crypto.verify_secret(record.token_hash, raw_token):
                return record
        return None

    def rotate(self, record_id: str, user_id: str) -> str:
        """
        Consume the record and issue its replacement atomically.

        Raises:
            RefreshTokenReusedError: the record is already gone, i.e. a
                concurrent refresh rotated it first or it was revoked
        """
        result = self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.id == record_id, RefreshToken.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.warning("Refresh token %s presented after rotation or revocation", record_id)
            raise RefreshTokenReusedError()

        raw_token = self._stage(user_id)
        self.db.commit()
        return raw_token

    def revoke(self, record_id: str) -> bool:
        """Deletes one record. Missing records count as revoked."""
        result = self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.id == record_id)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def revoke_token(self, raw_token: str) -> Optional[str]:
        """
        Logout: find the record for ``raw_token`` among all records, expired included.
        Returns the owner's user id when a record was deleted, else None.
        """
        if not raw_token:
            return None
        for record in self.db.scalars(select(RefreshToken)).all():
            if self.crypto.verify_secret(record.token_hash, raw_token):
                user_id = record.user_id
                return user_id if self.revoke(record.id) else None
        return None

    def revoke_all_for_user(self, user_id: str, keep: Optional[str] = None) -> int:
        """Password change / compromise: drop every session of the user."""
        stmt = delete(RefreshToken).where(RefreshToken.user_id == user_id)
        if keep:
            stmt = stmt.where(RefreshToken.id != keep)
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        self.db.commit()
        return result.rowcount

    def purge_expired(self) -> int:
        result = self.db.execute(
            delete(RefreshToken)
            .where(RefreshToken.expires_at <= self.clock())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            logger.info("Purged %d expired refresh tokens", result.rowcount)
        return result.rowcount
