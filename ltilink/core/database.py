from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from sqlalchemy import MetaData
from typing import Optional

from ltilink.core.config import settings


class Base(DeclarativeBase):
    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s"
        }
    )


def create_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Create an async engine; in-memory SQLite shares one connection."""
    database_url = database_url or settings.DATABASE_URL
    options = {}
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        options = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return create_async_engine(
        database_url,
        echo=settings.DATABASE_ECHO if echo is None else echo,
        **options
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def init_db(bind: AsyncEngine):
    """Create the LTI tables if they do not exist."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(bind: AsyncEngine):
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
