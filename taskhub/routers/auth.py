from urllib.parse import urlencode

from fastapi import APIRouter, Body, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.config import settings
from taskhub.dependencies import get_current_user, get_db, get_event_bus
from taskhub.models.user import User as UserModel
from taskhub.schemas.user import (
    AccessToken,
    AuthResponse,
    GoogleCredential,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    UserResponse,
)
from taskhub.services import auth as auth_service
from taskhub.services import oauth as oauth_service
from taskhub.services.events import EventBus

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_refresh_cookie(response: Response, token: str):
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        path="/auth",
    )


def _refresh_token_from(request: Request, body: RefreshRequest | None) -> str | None:
    if body and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(settings.REFRESH_COOKIE_NAME)


@router.post("/login", response_model=AuthResponse)
async def login(data: LoginRequest, response: Response, db: AsyncSession = Depends(get_db)):
    result = await auth_service.login(db, data.email, data.password)
    _set_refresh_cookie(response, result["refresh_token"])
    return result


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    result = await auth_service.register(db, data, bus)
    _set_refresh_cookie(response, result["refresh_token"])
    return result


@router.post("/google", response_model=AuthResponse)
async def google_login(
    data: GoogleCredential,
    response: Response,
    db: AsyncSession = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    result = await auth_service.verify_google_token(db, data.credential, bus)
    _set_refresh_cookie(response, result["refresh_token"])
    return result


@router.get("/github")
async def github_login():
    return RedirectResponse(oauth_service.get_github_authorization_url())


@router.get("/github/callback")
async def github_callback(
    code: str = "",
    db: AsyncSession = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    oauth_user = await oauth_service.exchange_github_code(code)
    result = await auth_service.validate_oauth_login(db, oauth_user, bus)
    query = urlencode({"accessToken": result["access_token"], "refreshToken": result["refresh_token"]})
    redirect = RedirectResponse(f"{settings.FRONTEND_URL}/auth/callback?{query}")
    _set_refresh_cookie(redirect, result["refresh_token"])
    return redirect


@router.post("/refresh", response_model=AccessToken)
async def refresh(
    request: Request,
    body: RefreshRequest | None = Body(None),
    db: AsyncSession = Depends(get_db),
):
    return await auth_service.refresh(db, _refresh_token_from(request, body))


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    body: RefreshRequest | None = Body(None),
    db: AsyncSession = Depends(get_db),
):
    await auth_service.logout(db, _refresh_token_from(request, body))
    response.delete_cookie(settings.REFRESH_COOKIE_NAME, path="/auth")
    return {"message": "Logged out"}


@router.get("/me", response_model=UserResponse)
async def me(current_user: UserModel = Depends(get_current_user)):
    return current_user
