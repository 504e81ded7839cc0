"""Server-side session storage keyed by the session cookie.

A session only carries CSRF state. ``MemorySessionStore`` is the default;
``SqlSessionStore`` persists sessions through SQLAlchemy when a database URL
is configured so that several workers share one view of the tokens.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Callable

from sqlalchemy import Float, String, delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


@dataclass
class Session:
    id: str
    csrf_token: str | None = None
    csrf_issued_at: float | None = None


class SessionStore(ABC):
    """Async key-value store for :class:`Session` records."""

    async def init(self) -> None:
        """Prepare backing storage. No-op by default."""

    async def close(self) -> None:
        """Release backing resources. No-op by default."""

    @abstractmethod
    async def get(self, session_id: str) -> Session | None: ...

    @abstractmethod
    async def save(self, session: Session) -> None: ...

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...


class MemorySessionStore(SessionStore):
    """Process-local store; a lock guards the map across worker threads.

    Sessions unused for ``idle_timeout`` seconds are dropped on access, and
    the least recently used ones are evicted beyond ``max_sessions``.
    An ``idle_timeout`` of 0 disables the idle check.
    """

    def __init__(
        self,
        max_sessions: int = 10_000,
        idle_timeout: float = 86_400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_sessions = max_sessions
        self.idle_timeout = idle_timeout
        self._clock = clock
        # session id -> (session, last seen), oldest first
        self._sessions: OrderedDict[str, tuple[Session, float]] = OrderedDict()
        self._lock = threading.Lock()

    def _idle(self, last_seen: float, now: float) -> bool:
        return self.idle_timeout > 0 and now - last_seen > self.idle_timeout

    async def get(self, session_id: str) -> Session | None:
        now = self._clock()
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            stored, last_seen = entry
            if self._idle(last_seen, now):
                del self._sessions[session_id]
                return None
            self._sessions[session_id] = (stored, now)
            self._sessions.move_to_end(session_id)
            return replace(stored)

    async def save(self, session: Session) -> None:
        now = self._clock()
        with self._lock:
            self._sessions[session.id] = (replace(session), now)
            self._sessions.move_to_end(session.id)
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug("Evicted session", extra={"session_id": evicted[:8]})

    async def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


# ── SQLAlchemy-backed store ──────────────────────────────────────────


class Base(DeclarativeBase):
    pass


class SessionRow(Base):
    __tablename__ = "edge_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    csrf_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    csrf_issued_at: Mapped[float | None] = mapped_column(Float, nullable=True)


class SqlSessionStore(SessionStore):
    def __init__(self, url: str) -> None:
        self.engine: AsyncEngine = create_async_engine(url)
        self._sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Session table ready")

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Session database connection closed")

    async def get(self, session_id: str) -> Session | None:
        async with self._sessionmaker() as db:
            row = (await db.execute(
                select(SessionRow).where(SessionRow.id == session_id)
            )).scalar_one_or_none()
        if row is None:
            return None
        return Session(id=row.id, csrf_token=row.csrf_token, csrf_issued_at=row.csrf_issued_at)

    async def save(self, session: Session) -> None:
        async with self._sessionmaker() as db:
            await db.merge(SessionRow(
                id=session.id,
                csrf_token=session.csrf_token,
                csrf_issued_at=session.csrf_issued_at,
            ))
            await db.commit()

    async def delete(self, session_id: str) -> None:
        async with self._sessionmaker() as db:
            await db.execute(delete(SessionRow).where(SessionRow.id == session_id))
            await db.commit()


def build_session_store(
    database_url: str | None,
    *,
    max_sessions: int = 10_000,
    idle_timeout: float = 86_400,
) -> SessionStore:
    if database_url:
        return SqlSessionStore(database_url)
    return MemorySessionStore(max_sessions=max_sessions, idle_timeout=idle_timeout)
