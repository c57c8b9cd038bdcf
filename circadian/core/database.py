import ssl
from collections.abc import AsyncGenerator
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from circadian.config import get_settings
from circadian.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()


def prepare_database_url(url: str) -> tuple[str, dict[str, Any]]:
    """
    Clean a Postgres connection URL for asyncpg.

    Hosted providers add params like sslmode or channel_binding that asyncpg
    doesn't accept. We strip them and handle SSL via connect_args.

    - Remote hosts: SSL with the default context
    - Local dev (localhost/127.0.0.1/db) and SQLite: no SSL
    """
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return url, {}

    params = parse_qs(parsed.query)
    for param in ("sslmode", "channel_binding", "options"):
        params.pop(param, None)

    clean = urlunparse(parsed._replace(query=urlencode(params, doseq=True)))

    hostname = parsed.hostname or ""
    if hostname in ("localhost", "127.0.0.1", "db"):
        return clean, {}
    return clean, {"ssl": ssl.create_default_context()}


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 280,  # under typical 5min idle timeouts
    }


clean_url, connect_args = prepare_database_url(settings.database_url)

engine = create_async_engine(
    clean_url,
    echo=settings.debug,
    connect_args=connect_args,
    **_engine_options(clean_url),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("database_transaction_rollback")
            await session.rollback()
            raise
