"""
Engine and session factory for the PostgreSQL plan store.

One engine per process, built lazily from the settings of the first caller
and released by ``close_db``.
"""
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from payconferhub.config import Settings, get_settings
from payconferhub.database.models import Base

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def engine_options(settings: Settings) -> Dict[str, Any]:
    """Keyword arguments for ``create_async_engine`` taken from ``settings``."""
    return {
        "echo": settings.database_echo,
        "pool_size": settings.database_pool_size,
        "pool_pre_ping": settings.database_pool_pre_ping,
        "pool_recycle": settings.database_pool_recycle_seconds,
    }


def get_engine(settings: Optional[Settings] = None) -> AsyncEngine:
    """Return the process engine, creating it on first use."""
    global _engine
    if _engine is None:
        settings = settings or get_settings()
        _engine = create_async_engine(settings.database_url, **engine_options(settings))
    return _engine


def get_session_factory(settings: Optional[Settings] = None) -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to the process engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(settings), expire_on_commit=False, autoflush=False
        )
    return _session_factory


async def init_db(settings: Optional[Settings] = None) -> None:
    """Create ``plano_venda`` and its indexes where they are missing."""
    async with get_engine(settings).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the process engine; the next ``get_engine`` builds a fresh one."""
    global _engine, _session_factory
    engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()
