from datetime import datetime

from pydantic import BaseModel, EmailStr, field_validator
from taskhub.models.user import AuthProvider
from taskhub.utils.sanitization import sanitize_string


class UserPublic(BaseModel):
    id: int
    name: str
    email: str
    avatar_url: str | None = None

    class Config:
        from_attributes = True


class UserResponse(UserPublic):
    provider: str
    created_at: datetime | None = None


class RegisterRequest(BaseModel):
    # presence is checked by the service so that a missing field is a 400
    name: str | None = None
    email: EmailStr | None = None
    password: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str | None = None


class GoogleCredential(BaseModel):
    credential: str


class OAuthUser(BaseModel):
    provider_id: str
    email: str
    name: str
    picture: str | None = None
    provider: AuthProvider


class AccessToken(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthResponse(AccessToken):
    refresh_token: str
    user: UserResponse
    is_new_user: bool = False


class UserLookupResponse(BaseModel):
    message: str
    data: UserPublic | bool
