"""Dependency injection for FastAPI endpoints"""

import logging
import time
from datetime import date
from typing import Callable, Dict, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import sessionmaker

from receivables_engine.config import settings
from receivables_engine.infrastructure.cache.result_cache import ResultCache
from receivables_engine.infrastructure.cache.stores import InMemoryStore, SqlKeyValueStore
from receivables_engine.infrastructure.clients.tally import TallyClient
from receivables_engine.infrastructure.database.session import get_session_factory
from receivables_engine.services.receivables import ReceivablesService, ReceivablesSession


class SessionRegistry:
    """
    Live dashboard sessions keyed by X-Session-ID.

    The in-memory cache tier is shared by every session; the durable tier is
    namespaced per session. Sessions idle longer than idle_seconds are
    forgotten, and past max_sessions the least recently seen one goes. A
    forgotten session keeps its durable tier, so its data comes back from
    cache when it returns.
    """

    def __init__(
        self,
        today_provider: Callable[[], date] = date.today,
        idle_seconds: float | None = None,
        max_sessions: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.memory = InMemoryStore()
        self.today_provider = today_provider
        self.idle_seconds = idle_seconds if idle_seconds is not None else settings.session_idle_seconds
        self.max_sessions = max_sessions or settings.max_sessions
        self.clock = clock
        self._sessions: Dict[str, ReceivablesSession] = {}
        self._last_seen: Dict[str, float] = {}

    def get_or_create(self, session_id: str, client: TallyClient, session_factory: sessionmaker) -> ReceivablesSession:
        now = self.clock()
        self._evict_idle(now)
        session = self._sessions.get(session_id)
        if session is None:
            while len(self._sessions) >= self.max_sessions:
                self._forget(min(self._last_seen, key=self._last_seen.get), "capacity")
            cache = ResultCache(memory=self.memory, durable=SqlKeyValueStore(session_factory, session_id))
            session = ReceivablesSession(ReceivablesService(client, cache), today_provider=self.today_provider)
            self._sessions[session_id] = session
        self._last_seen[session_id] = now
        return session

    def _evict_idle(self, now: float) -> None:
        idle = [sid for sid, seen in self._last_seen.items() if now - seen > self.idle_seconds]
        for session_id in idle:
            self._forget(session_id, "idle")

    def _forget(self, session_id: str, reason: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        logging.info("Session evicted", extra={"session_id": session_id, "reason": reason})

    def drop(self, session_id: str, session_factory: sessionmaker) -> int:
        """Forget the session and clear its durable tier; returns entries removed"""
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        return SqlKeyValueStore(session_factory, session_id).clear()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


registry = SessionRegistry()


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_tally_client() -> TallyClient:
    """Provide accounting system client instance"""
    return TallyClient()


def get_session_registry() -> SessionRegistry:
    return registry


def get_session_id(x_session_id: str = Header(..., alias="X-Session-ID", min_length=1)) -> str:
    return x_session_id


def get_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    """Bearer credential forwarded to the accounting system"""
    if not authorization:
        return None
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() == "bearer":
        return credential.strip() or None
    return authorization.strip()


def get_receivables_session(
    session_id: str = Depends(get_session_id),
    sessions: SessionRegistry = Depends(get_session_registry),
    client: TallyClient = Depends(get_tally_client),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> ReceivablesSession:
    return sessions.get_or_create(session_id, client, session_factory)
