import uuid
from datetime import datetime, timedelta

import bcrypt
from jose import jwt

from taskhub.config import settings
from taskhub.utils.timeutils import utcnow

BCRYPT_MAX_BYTES = 72


def _truncate_password(password: str) -> bytes:
    """
    Truncate password to 72 bytes for bcrypt compatibility without
    splitting a multi-byte UTF-8 character.
    """
    encoded = password.encode("utf-8")
    if len(encoded) <= BCRYPT_MAX_BYTES:
        return encoded
    truncated = encoded[:BCRYPT_MAX_BYTES]
    while truncated:
        try:
            truncated.decode("utf-8")
            return truncated
        except UnicodeDecodeError:
            truncated = truncated[:-1]
    return b""


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_truncate_password(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(_truncate_password(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # malformed hash in the store
        return False


def create_access_token(user_id: int) -> str:
    expire = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return jwt.encode(
        {"sub": str(user_id), "exp": expire},
        settings.JWT_ACCESS_SECRET,
        algorithm=settings.ALGORITHM,
    )


def create_refresh_token(user_id: int) -> tuple[str, datetime]:
    expire = utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    token = jwt.encode(
        {"sub": str(user_id), "exp": expire, "jti": uuid.uuid4().hex},
        settings.JWT_REFRESH_SECRET,
        algorithm=settings.ALGORITHM,
    )
    return token, expire


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.JWT_ACCESS_SECRET, algorithms=[settings.ALGORITHM])


def decode_refresh_token(token: str) -> dict:
    return jwt.decode(token, settings.JWT_REFRESH_SECRET, algorithms=[settings.ALGORITHM])
