from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from taskhub.config import settings


def _async_url(url: str) -> str:
    # Plain postgres URLs from hosting providers need the asyncpg driver
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


SQLALCHEMY_DATABASE_URL = _async_url(settings.DATABASE_URL)

_engine_kwargs = {"echo": settings.DB_ECHO}
if SQLALCHEMY_DATABASE_URL.startswith("postgresql+asyncpg://"):
    _engine_kwargs.update(pool_size=settings.DB_POOL_SIZE, max_overflow=10, pool_pre_ping=True)

engine = create_async_engine(SQLALCHEMY_DATABASE_URL, **_engine_kwargs)

# One session per request; objects stay readable after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as db:
        try:
            yield db
        except Exception:
            await db.rollback()
            raise
        finally:
            await db.close()
