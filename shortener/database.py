"""Database engine and session factory for the mapping store.

This module provides SQLAlchemy async engine setup, session management,
and database lifecycle operations using PostgreSQL as the backend.

Flow Diagram: Store Operation
==============================
::
    ┌─────────────┐
    │ MappingStore │
    │ operation    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ async_session│
    │ () acquire   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Execute &    │
    │ commit       │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Release to   │
    │ pool (exit)  │
    └─────────────┘

How to Use
===========
**Step 1: Initialize on startup**::
    await init_db()  # Creates tables

**Step 2: Open a scoped session**::
    async with async_session() as session:
        await session.execute(select(ShortURL))

**Step 3: Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- The engine and its connection pool are created once per process.
- Sessions are scoped to a single store operation and always released.
- pool_pre_ping drops dead connections instead of failing the next query.
- Tables are created automatically on application startup.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import get_settings

__all__ = ["Base", "async_session", "engine", "init_db", "close_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
