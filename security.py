from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt

from config import get_settings
from models import Role


class TokenError(ValueError):
    pass


def _secret(password: str) -> bytes:
    # bcrypt only reads the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_secret(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(_secret(password), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(
    user_id: int, email: str, role: Role, expires_minutes: Optional[int] = None
) -> str:
    settings = get_settings()
    minutes = expires_minutes or settings.access_token_expire_minutes
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role.value,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Could not validate credentials") from exc

    sub = payload.get("sub")
    if sub is None or not str(sub).isdigit():
        raise TokenError("Could not validate credentials")
    payload["user_id"] = int(sub)
    return payload
