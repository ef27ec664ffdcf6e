from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    DATABASE_URL: str
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 5

    # Security
    JWT_ACCESS_SECRET: str = "change-me-access"
    JWT_REFRESH_SECRET: str = "change-me-refresh"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    REFRESH_COOKIE_NAME: str = "refresh_token"
    COOKIE_SECURE: bool = False

    INVITATION_EXPIRE_DAYS: int = 7

    EMAIL_HOST: str | None = None
    EMAIL_PORT: int = 587
    EMAIL_USER: str | None = None
    EMAIL_PASS: str | None = None
    EMAIL_FROM: str | None = None

    APP_NAME: str = "TaskHub"
    APP_URL: str = "http://localhost:3000"
    FRONTEND_URL: str = "http://localhost:3000"

    # OAuth
    GOOGLE_CLIENT_ID: str | None = None
    GITHUB_CLIENT_ID: str | None = None
    GITHUB_CLIENT_SECRET: str | None = None
    GITHUB_CALLBACK_URL: str = "http://localhost:8000/auth/github/callback"

    LOG_LEVEL: str = "INFO"
    SCHEDULER_LOCK_FILE: str = "/tmp/taskhub_scheduler.lock"

    class Config:
        env_file = ".env"

settings = Settings()
