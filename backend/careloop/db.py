import os

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase

DEFAULT_DB_URL = "sqlite+aiosqlite:///./careloop.db"


class Base(DeclarativeBase):
    pass


def get_db_url() -> str:
    return os.getenv("ASYNC_DATABASE_URL") or DEFAULT_DB_URL


def make_engine(url: str | None = None) -> AsyncEngine:
    return create_async_engine(url or get_db_url(), echo=False, pool_pre_ping=True)


def make_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_db(engine: AsyncEngine) -> None:
    # 스냅샷 테이블 하나뿐이라 마이그레이션 대신 시작 시 생성
    import careloop.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
