from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from app.core.config import settings


def build_engine(database_url: str = settings.DATABASE_URL) -> AsyncEngine:
    """
    Create the async engine used for every user query.

    Each checkout from the pool is exclusive for one query, so the pool size
    and checkout timeout are the only backpressure we have.
    """
    pool_options = {}
    # SQLite dialects pick their own pool class, which may not take size options
    if not database_url.startswith("sqlite"):
        pool_options = {
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT_SECONDS,
        }

    return create_async_engine(
        database_url,
        echo=settings.DB_ECHO,
        pool_pre_ping=True,
        **pool_options,
    )


engine = build_engine()
