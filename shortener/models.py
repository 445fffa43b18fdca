"""SQLAlchemy ORM models for the mapping store.

Data Model Layout
=================
::
    url_mappings table
    ├─ id (BIGINT PRIMARY KEY)            allocated identifier
    ├─ short_code (VARCHAR(16) UNIQUE)    base62 form of id
    ├─ original_url (TEXT NOT NULL)
    ├─ created_at (TIMESTAMPTZ NOT NULL)
    ├─ expires_at (TIMESTAMPTZ NULL, INDEXED)
    └─ hit_count (BIGINT DEFAULT 0)

Key Behaviours
===============
- id is supplied by the counter allocator, never by a database sequence.
- id is a signed BIGINT, so stored identifiers stop at MAX_STORED_IDENTIFIER
  (2**63 - 1), the same ceiling as Redis INCR.
- short_code is indexed for fast lookups during redirects.
- expires_at is indexed so the expiry sweeper can find stale rows cheaply.

Classes:
    ShortURL:  Durable short code to URL mapping.
"""

import datetime

from sqlalchemy import BigInteger, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["MAX_STORED_IDENTIFIER", "ShortURL"]

MAX_STORED_IDENTIFIER = 2**63 - 1


class ShortURL(Base):
    __tablename__ = "url_mappings"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    short_code: Mapped[str] = mapped_column(String(16), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    hit_count: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0", nullable=False)

    def __repr__(self) -> str:
        return f"<ShortURL(id={self.id}, short_code='{self.short_code}', hit_count={self.hit_count})>"
