"""Database session management for the durable cache tier"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from receivables_engine.config import settings
from receivables_engine.infrastructure.database.models import Base

# SQLite connections are shared across the event loop's worker threads
connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}

engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    connect_args=connect_args,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create cache tables if they do not exist"""
    Base.metadata.create_all(bind=engine)


def get_session_factory() -> sessionmaker:
    """Dependency injection for the durable store's session factory"""
    return SessionLocal
