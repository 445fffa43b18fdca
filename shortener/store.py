"""Durable short code to URL mappings in PostgreSQL.

The mapping store is the source of truth. Each operation acquires its own
session from the process-wide session factory and releases it when done, so
concurrent requests and fire-and-forget hit counting never share a session.
Driver and pool failures surface as ``StoreUnavailableError``; a unique-key
violation on insert surfaces as ``DuplicateCodeError``.

Functions on MappingStore:
    put():  Insert a new mapping.
    get():  Load a mapping by short code.
    delete():  Remove a mapping (idempotent).
    increment_hit_count():  Atomic hit counter bump.
    purge_expired():  Delete a batch of expired mappings.
    ping():  Health probe.
"""

import datetime
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.encoder import decode
from shortener.exceptions import DuplicateCodeError, NotFoundError, StoreUnavailableError
from shortener.models import MAX_STORED_IDENTIFIER, ShortURL
from shortener.schemas import UrlMapping

__all__ = ["MappingStore"]

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class MappingStore:
    def __init__(self, session_factory: SessionFactory):
        self._sessions = session_factory

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                yield session
        except IntegrityError as exc:
            logger.error(f"Mapping store integrity error during {action}: {exc}")
            raise DuplicateCodeError(f"Duplicate short code during {action}") from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.error(f"Mapping store unavailable during {action}: {exc}")
            raise StoreUnavailableError(f"Mapping store unavailable during {action}") from exc

    async def put(self, mapping: UrlMapping, identifier: int | None = None) -> None:
        """Insert ``mapping``; the row id defaults to the identifier its code encodes."""
        if identifier is None:
            identifier = decode(mapping.short_code)
        if identifier > MAX_STORED_IDENTIFIER:
            logger.error(f"Identifier {identifier} for {mapping.short_code!r} exceeds the id column range")
            raise StoreUnavailableError(f"Identifier {identifier} exceeds the mapping store range")

        row = ShortURL(
            id=identifier,
            short_code=mapping.short_code,
            original_url=mapping.original_url,
            created_at=mapping.created_at,
            expires_at=mapping.expires_at,
            hit_count=mapping.hit_count,
        )
        async with self._session("put") as session:
            session.add(row)
            await session.commit()

    async def get(self, short_code: str) -> UrlMapping:
        async with self._session("get") as session:
            result = await session.execute(select(ShortURL).where(ShortURL.short_code == short_code))
            row = result.scalar_one_or_none()
            mapping = UrlMapping.model_validate(row) if row is not None else None

        if mapping is None:
            raise NotFoundError(f"No mapping for short code {short_code!r}")
        return mapping

    async def delete(self, short_code: str) -> bool:
        """Remove the mapping; returns whether a row existed."""
        async with self._session("delete") as session:
            result = await session.execute(delete(ShortURL).where(ShortURL.short_code == short_code))
            await session.commit()
        return bool(result.rowcount)

    async def increment_hit_count(self, short_code: str) -> None:
        async with self._session("increment_hit_count") as session:
            await session.execute(
                update(ShortURL)
                .where(ShortURL.short_code == short_code)
                .values(hit_count=ShortURL.hit_count + 1)
            )
            await session.commit()

    async def purge_expired(self, now: datetime.datetime, limit: int) -> list[str]:
        """Delete up to ``limit`` mappings whose expiry is at or before ``now``."""
        async with self._session("purge_expired") as session:
            result = await session.execute(
                select(ShortURL.short_code)
                .where(ShortURL.expires_at.is_not(None), ShortURL.expires_at <= now)
                .order_by(ShortURL.expires_at)
                .limit(limit)
            )
            codes = list(result.scalars().all())
            if codes:
                await session.execute(delete(ShortURL).where(ShortURL.short_code.in_(codes)))
                await session.commit()
        return codes

    async def ping(self) -> bool:
        try:
            async with self._session("ping") as session:
                await session.execute(text("SELECT 1"))
        except StoreUnavailableError:
            return False
        return True
