import datetime
from typing import Callable, Dict, Any

import jwt

from .errors import InvalidTokenError, TokenExpiredError


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class TokenService:
    """
    Short-lived signed access tokens.

    The signing key is loaded once at startup. Changing it invalidates every
    outstanding access token; there is no key versioning.
    """

    def __init__(
        self,
        secret_key: str,
        lifetime: datetime.timedelta = datetime.timedelta(minutes=15),
        algorithm: str = 'HS256',
        issuer: str = 'igrotrend',
        clock: Callable[[], datetime.datetime] = _now,
    ):
        self.secret_key = secret_key
        self.lifetime = lifetime
        self.algorithm = algorithm
        self.issuer = issuer
        self.clock = clock

    @classmethod
    def from_config(cls, settings) -> 'TokenService':
        return cls(
            settings.JWT_SECRET_KEY,
            lifetime=settings.ACCESS_TOKEN_EXPIRES,
            algorithm=settings.JWT_ALGORITHM,
            issuer=settings.JWT_ISSUER,
        )

    def issue_access_token(self, user_id: str, email: str) -> str:
        now = self.clock()
        payload = {
            "userId": user_id,
            "email": email,
            "type": "access",
            "iss": self.issuer,
            "iat": now,
            "exp": now + self.lifetime,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate an access token.

        Raises:
            TokenExpiredError: signature fine but ``exp`` has passed
            InvalidTokenError: anything else (bad signature, wrong type, garbage)
        """
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "userId"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Access token has expired")
        except jwt.InvalidTokenError:
            raise InvalidTokenError("Invalid access token")

        if claims.get("type") != "access":
            raise InvalidTokenError("Invalid access token")
        return claims
