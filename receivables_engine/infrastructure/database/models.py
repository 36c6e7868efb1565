"""SQLAlchemy ORM models for the durable per-session cache tier"""

from sqlalchemy import Column, DateTime, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class SessionCacheEntry(Base):
    """One JSON-encoded {timestamp, columns, rows} payload per session and cache key"""

    __tablename__ = "session_cache_entry"

    session_id = Column(Text, primary_key=True)
    cache_key = Column(Text, primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
