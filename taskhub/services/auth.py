import asyncio
import logging

from fastapi import HTTPException
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from jose import ExpiredSignatureError, JWTError
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from taskhub.config import settings
from taskhub.models.user import AuthProvider, RefreshToken, User
from taskhub.schemas.user import OAuthUser, RegisterRequest, UserResponse
from taskhub.services import events
from taskhub.services.events import EventBus
from taskhub.utils.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from taskhub.utils.timeutils import ensure_aware, utcnow

logger = logging.getLogger(__name__)

SOCIAL_LOGIN_MESSAGE = "This account uses social login. Sign in with Google or GitHub."


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).filter(User.email == email))
    return result.scalars().first()


async def _issue_tokens(db: AsyncSession, user: User) -> dict:
    """Create an access/refresh pair, persist the refresh token and drop stale ones."""
    await db.execute(
        delete(RefreshToken).where(
            RefreshToken.user_id == user.id,
            RefreshToken.expires_at < utcnow(),
        )
    )
    refresh_token, expires_at = create_refresh_token(user.id)
    db.add(RefreshToken(token=refresh_token, user_id=user.id, expires_at=expires_at))
    await db.commit()
    return {
        "access_token": create_access_token(user.id),
        "refresh_token": refresh_token,
        "token_type": "bearer",
    }


def _auth_payload(user: User, tokens: dict, is_new_user: bool = False) -> dict:
    return {**tokens, "user": UserResponse.model_validate(user), "is_new_user": is_new_user}


async def login(db: AsyncSession, email: str, password: str) -> dict:
    user = await get_user_by_email(db, email)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.hashed_password:
        raise HTTPException(status_code=401, detail=SOCIAL_LOGIN_MESSAGE)
    if not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    tokens = await _issue_tokens(db, user)
    logger.info("User %s logged in", user.id)
    return _auth_payload(user, tokens)


async def register(db: AsyncSession, data: RegisterRequest, bus: EventBus) -> dict:
    if not data.name or not data.email or not data.password:
        raise HTTPException(status_code=400, detail="Name, email and password are required")

    if await get_user_by_email(db, data.email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        name=data.name,
        email=data.email,
        hashed_password=hash_password(data.password),
        provider=AuthProvider.LOCAL.value,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="Email already registered")

    tokens = await _issue_tokens(db, user)
    bus.publish(events.AUTH_REGISTERED, {"user_id": user.id, "email": user.email, "name": user.name})
    logger.info("Registered user %s", user.id)
    return _auth_payload(user, tokens, is_new_user=True)


async def _find_oauth_user(db: AsyncSession, oauth_user: OAuthUser) -> User | None:
    """The account holding the external identity wins over one that only shares the email."""
    result = await db.execute(
        select(User).filter(
            User.provider == oauth_user.provider.value,
            User.provider_id == oauth_user.provider_id,
        )
    )
    user = result.scalars().first()
    if user is None:
        user = await get_user_by_email(db, oauth_user.email)
    return user


async def validate_oauth_login(db: AsyncSession, oauth_user: OAuthUser, bus: EventBus) -> dict:
    """Find or create the account behind an external identity and sign it in."""
    is_new_user = False
    user = await _find_oauth_user(db, oauth_user)

    if user is None:
        user = User(
            name=oauth_user.name,
            email=oauth_user.email,
            provider=oauth_user.provider.value,
            provider_id=oauth_user.provider_id,
            avatar_url=oauth_user.picture,
        )
        db.add(user)
        try:
            await db.commit()
            is_new_user = True
        except IntegrityError:
            # Lost a first-login race; the other request created the row
            await db.rollback()
            user = await _find_oauth_user(db, oauth_user)
            if user is None:
                raise HTTPException(status_code=500, detail="Could not complete social login")
    else:
        changed = False
        for attr, value in (
            ("provider", oauth_user.provider.value),
            ("provider_id", oauth_user.provider_id),
            ("avatar_url", oauth_user.picture),
            ("name", oauth_user.name),
        ):
            if value and getattr(user, attr) != value:
                setattr(user, attr, value)
                changed = True
        if changed:
            try:
                await db.commit()
            except IntegrityError:
                # the external identity already belongs to another account
                await db.rollback()
                raise HTTPException(
                    status_code=409,
                    detail="This social account is already linked to another user",
                )

    tokens = await _issue_tokens(db, user)
    if is_new_user:
        bus.publish(events.AUTH_REGISTERED, {"user_id": user.id, "email": user.email, "name": user.name})
    return _auth_payload(user, tokens, is_new_user=is_new_user)


def _verify_google_credential(credential: str) -> dict:
    return id_token.verify_oauth2_token(credential, google_requests.Request(), settings.GOOGLE_CLIENT_ID)


async def verify_google_token(db: AsyncSession, credential: str, bus: EventBus) -> dict:
    if not credential:
        raise HTTPException(status_code=400, detail="Google credential not provided")
    try:
        # google-auth is blocking (fetches Google's certs)
        info = await asyncio.to_thread(_verify_google_credential, credential)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid Google token")
    except Exception:
        logger.exception("Google token verification failed")
        raise HTTPException(status_code=500, detail="Google authentication failed")

    if not info.get("email"):
        raise HTTPException(status_code=401, detail="Invalid Google token")

    oauth_user = OAuthUser(
        provider_id=str(info["sub"]),
        email=info["email"],
        name=info.get("name") or info["email"].split("@")[0],
        picture=info.get("picture"),
        provider=AuthProvider.GOOGLE,
    )
    try:
        return await validate_oauth_login(db, oauth_user, bus)
    except HTTPException:
        raise
    except Exception:
        logger.exception("OAuth login failed for %s", oauth_user.email)
        raise HTTPException(status_code=500, detail="Google authentication failed")


async def _revoke(db: AsyncSession, token: str):
    await db.execute(update(RefreshToken).where(RefreshToken.token == token).values(revoked=True))
    await db.commit()


async def refresh(db: AsyncSession, token: str | None) -> dict:
    """Issue a new access token. The refresh token itself is not rotated."""
    if not token:
        raise HTTPException(status_code=401, detail="Refresh token not provided")

    try:
        payload = decode_refresh_token(token)
    except ExpiredSignatureError:
        await _revoke(db, token)
        raise HTTPException(status_code=401, detail="Refresh token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    result = await db.execute(select(RefreshToken).filter(RefreshToken.token == token))
    stored = result.scalars().first()
    if stored is None or stored.revoked:
        raise HTTPException(status_code=401, detail="Refresh token revoked or not found")

    if ensure_aware(stored.expires_at) < utcnow():
        stored.revoked = True
        await db.commit()
        raise HTTPException(status_code=401, detail="Refresh token expired")

    if str(stored.user_id) != str(payload.get("sub")):
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    return {"access_token": create_access_token(stored.user_id), "token_type": "bearer"}


async def logout(db: AsyncSession, token: str | None):
    if not token:
        return
    await _revoke(db, token)
