"""Data access layer for durable cache entries"""

from typing import Optional
from sqlalchemy.orm import Session
from receivables_engine.infrastructure.database.models import SessionCacheEntry


class SessionCacheRepository:
    """Repository for one session's cache payloads"""

    def __init__(self, db: Session, session_id: str):
        self.db = db
        self.session_id = session_id

    def get_payload(self, cache_key: str) -> Optional[str]:
        """Fetch the stored payload for a key"""
        entry = (
            self.db.query(SessionCacheEntry)
            .filter(
                SessionCacheEntry.session_id == self.session_id,
                SessionCacheEntry.cache_key == cache_key,
            )
            .first()
        )
        return entry.payload if entry else None

    def upsert_payload(self, cache_key: str, payload: str) -> None:
        """Replace the payload for a key in full"""
        self.db.merge(SessionCacheEntry(session_id=self.session_id, cache_key=cache_key, payload=payload))
        self.db.flush()

    def delete_payload(self, cache_key: str) -> None:
        (
            self.db.query(SessionCacheEntry)
            .filter(
                SessionCacheEntry.session_id == self.session_id,
                SessionCacheEntry.cache_key == cache_key,
            )
            .delete(synchronize_session=False)
        )

    def delete_session(self) -> int:
        """Drop every payload of the session"""
        return (
            self.db.query(SessionCacheEntry)
            .filter(SessionCacheEntry.session_id == self.session_id)
            .delete(synchronize_session=False)
        )
