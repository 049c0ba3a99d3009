from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from passlib.context import CryptContext

from config import Settings
from errors import AuthenticationError

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"

password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return password_ctx.verify(password, hashed)


class JwtStrategy:
    """Signs and verifies bearer tokens. Access and refresh tokens use separate secrets."""

    def __init__(self, settings: Settings):
        self.secrets = {ACCESS: settings.jwt_secret, REFRESH: settings.jwt_refresh_secret}
        self.lifetimes = {
            ACCESS: timedelta(minutes=settings.jwt_expires_min),
            REFRESH: timedelta(days=settings.jwt_refresh_expires_days),
        }

    def sign(self, payload: Dict[str, Any], kind: str = ACCESS) -> str:
        now = datetime.now(timezone.utc)
        claims = {**payload, "type": kind, "iat": now, "exp": now + self.lifetimes[kind]}
        return jwt.encode(claims, self.secrets[kind], algorithm=ALGORITHM)

    def verify(self, token: str, kind: str = ACCESS) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, self.secrets[kind], algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid token")
        if payload.get("type") != kind or not payload.get("sub"):
            raise AuthenticationError("Invalid token")
        return payload

    def issue_pair(self, user_id: str, email: str) -> Dict[str, str]:
        payload = {"sub": user_id, "email": email}
        return {
            "access_token": self.sign(payload, ACCESS),
            "refresh_token": self.sign(payload, REFRESH),
            "token_type": "bearer",
        }
