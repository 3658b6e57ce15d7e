import enum
import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Integer, ForeignKey, Text, Enum
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


class EmailStatus(enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"


class UserRole(enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    DEVELOPER = "DEVELOPER"


class SecondFactorKind(enum.Enum):
    """Two independent TOTP slots sharing one implementation."""
    TOTP = "totp"
    SECURITY_KEY = "security_key"

    @property
    def column_prefix(self) -> str:
        return 'two_factor' if self is SecondFactorKind.TOTP else 'security_key'

    @property
    def label(self) -> str:
        return '2FA' if self is SecondFactorKind.TOTP else 'Security key'


class User(Base):
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    display_name = Column(String(128), nullable=False)

    # Security Columns
    password_hash = Column(String(255), nullable=False)
    email_status = Column(Enum(EmailStatus), default=EmailStatus.PENDING, nullable=False)
    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)

    # Second factor slots (secrets AES-GCM encrypted)
    two_factor_secret = Column(Text, nullable=True)
    two_factor_enabled = Column(Boolean, default=False, nullable=False)
    two_factor_last_step = Column(Integer, nullable=True)

    security_key_secret = Column(Text, nullable=True)
    security_key_enabled = Column(Boolean, default=False, nullable=False)
    security_key_last_step = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    last_login_at = Column(DateTime, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)

    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_verified(self) -> bool:
        return self.email_status == EmailStatus.VERIFIED

    def factor_enabled(self, kind: SecondFactorKind) -> bool:
        return bool(getattr(self, f'{kind.column_prefix}_enabled'))

    @property
    def enabled_factors(self):
        return [kind for kind in SecondFactorKind if self.factor_enabled(kind)]

    def to_public_dict(self) -> dict:
        return {
            'id': self.id,
            'email': self.email,
            'username': self.username,
            'displayName': self.display_name,
            'emailStatus': self.email_status.value,
            'role': self.role.value,
            'twoFactorEnabled': bool(self.two_factor_enabled),
            'securityKeyEnabled': bool(self.security_key_enabled),
        }


class RefreshToken(Base):
    __tablename__ = 'refresh_tokens'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)

    # Argon2 digest of the raw token - the raw value is never stored
    token_hash = Column(String(255), nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    user = relationship("User", back_populates="refresh_tokens")


class VerificationCode(Base):
    __tablename__ = 'verification_codes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, index=True)
    code = Column(String(6), nullable=False)
    purpose = Column(String(32), nullable=False, default='register')
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, default=utcnow)
    user_id = Column(String(36), nullable=True)
    event_type = Column(String(50), nullable=False)
    ip_address = Column(String(45))
    details = Column(Text)
    status = Column(String(20))  # SUCCESS / FAILURE
