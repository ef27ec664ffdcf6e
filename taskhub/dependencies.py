from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.database import get_db as db_session
from taskhub.models.user import User as UserModel
from taskhub.services.events import EventBus, event_bus
from taskhub.utils.security import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_db(db: AsyncSession = Depends(db_session)):
    return db


def get_event_bus() -> EventBus:
    return event_bus


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    token: str | None = Depends(oauth2_scheme),
) -> UserModel:
    if not token:
        raise _unauthorized("Token not provided")
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub"))
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except (JWTError, TypeError, ValueError):
        raise _unauthorized("Invalid token")

    user = await db.get(UserModel, user_id)
    if user is None:
        raise _unauthorized("User not found")
    return user
