"""
=============================================================================
LUDO LOOTO ADMIN - Sesión de Base de Datos (SQLAlchemy async)
=============================================================================
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .models import Base


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

SessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Dependencia FastAPI: una sesión por request."""
    async with SessionLocal() as session:
        yield session


async def init_models(bind=None) -> None:
    """Crea las tablas que falten (desarrollo / SQLite)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
