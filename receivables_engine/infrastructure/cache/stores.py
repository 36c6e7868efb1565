"""Key-value stores backing the two result-cache tiers"""

from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from receivables_engine.domain.exceptions import CacheStoreError
from receivables_engine.infrastructure.database.repositories import SessionCacheRepository


class KeyValueStore(Protocol):
    """get/set/remove store; values are replaced whole, never merged"""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryStore:
    """Process-local map. Used for tier 1, and for tier 2 in tests."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def items(self) -> List[Tuple[str, Any]]:
        return list(self._data.items())

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SqlKeyValueStore:
    """
    Durable string store scoped to one session id.

    Survives process restarts within the session; clear() ends the session.
    Database failures are raised as CacheStoreError.
    """

    def __init__(self, session_factory: sessionmaker, session_id: str):
        self.session_factory = session_factory
        self.session_id = session_id

    def get(self, key: str) -> Optional[str]:
        try:
            with self.session_factory() as db:
                return SessionCacheRepository(db, self.session_id).get_payload(key)
        except SQLAlchemyError as e:
            raise CacheStoreError(f"Durable cache read failed: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            with self.session_factory() as db:
                SessionCacheRepository(db, self.session_id).upsert_payload(key, value)
                db.commit()
        except SQLAlchemyError as e:
            raise CacheStoreError(f"Durable cache write failed: {e}") from e

    def remove(self, key: str) -> None:
        try:
            with self.session_factory() as db:
                SessionCacheRepository(db, self.session_id).delete_payload(key)
                db.commit()
        except SQLAlchemyError as e:
            raise CacheStoreError(f"Durable cache delete failed: {e}") from e

    def clear(self) -> int:
        try:
            with self.session_factory() as db:
                removed = SessionCacheRepository(db, self.session_id).delete_session()
                db.commit()
                return removed
        except SQLAlchemyError as e:
            raise CacheStoreError(f"Durable cache clear failed: {e}") from e
