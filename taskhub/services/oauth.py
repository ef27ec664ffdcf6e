import logging
from urllib.parse import urlencode

import httpx
from fastapi import HTTPException

from taskhub.config import settings
from taskhub.models.user import AuthProvider
from taskhub.schemas.user import OAuthUser

logger = logging.getLogger(__name__)

GITHUB_AUTHORIZATION_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"

SCOPE = "user:email"


def get_github_authorization_url() -> str:
    if not settings.GITHUB_CLIENT_ID:
        raise HTTPException(status_code=500, detail="GitHub login is not configured")
    params = {
        "client_id": settings.GITHUB_CLIENT_ID,
        "redirect_uri": settings.GITHUB_CALLBACK_URL,
        "scope": SCOPE,
    }
    return f"{GITHUB_AUTHORIZATION_URL}?{urlencode(params)}"


async def exchange_github_code(code: str) -> OAuthUser:
    """Trade an authorization code for the GitHub profile of the user."""
    if not code:
        raise HTTPException(status_code=400, detail="Authorization code not provided")

    data = {
        "client_id": settings.GITHUB_CLIENT_ID,
        "client_secret": settings.GITHUB_CLIENT_SECRET,
        "code": code,
        "redirect_uri": settings.GITHUB_CALLBACK_URL,
    }
    async with httpx.AsyncClient(timeout=10) as client:
        response = await client.post(GITHUB_TOKEN_URL, data=data, headers={"Accept": "application/json"})
        access_token = response.json().get("access_token") if response.status_code == 200 else None
        if not access_token:
            logger.warning("GitHub token exchange failed: %s", response.text)
            raise HTTPException(status_code=400, detail="GitHub authorization failed")

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
        }
        profile = (await client.get(f"{GITHUB_API_URL}/user", headers=headers)).json()

        email = profile.get("email")
        if not email:
            emails = (await client.get(f"{GITHUB_API_URL}/user/emails", headers=headers)).json()
            email = next(
                (e["email"] for e in emails if e.get("primary") and e.get("verified")),
                None,
            )

    if not email:
        raise HTTPException(status_code=400, detail="No verified email available from GitHub")

    return OAuthUser(
        provider_id=str(profile["id"]),
        email=email,
        name=profile.get("name") or profile.get("login") or email.split("@")[0],
        picture=profile.get("avatar_url"),
        provider=AuthProvider.GITHUB,
    )
