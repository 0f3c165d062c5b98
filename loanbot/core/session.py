import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, Optional

from loanbot.models.domain_models import ChatSession

logger = logging.getLogger(__name__)


class SessionStore:
    """
    In-memory conversation sessions keyed by chat id, plus one asyncio.Lock
    per chat so a chat's events are handled one at a time.

    All access happens on the event loop, so the dicts need no extra locking.
    Sessions live for the process lifetime unless `idle_timeout_seconds` is
    set, in which case sessions untouched for longer are dropped.
    """

    def __init__(self, idle_timeout_seconds: int = 0):
        self._store: Dict[int, ChatSession] = {}
        self._locks: Dict[int, asyncio.Lock] = {}
        # holders plus waiters per chat lock
        self._users: Dict[int, int] = {}
        self.idle_timeout = timedelta(seconds=idle_timeout_seconds) if idle_timeout_seconds > 0 else None

    def get(self, chat_id: int) -> ChatSession:
        """Copy of the stored session, or a fresh unauthenticated one."""
        session = self._store.get(chat_id)
        if session is None or self._is_idle(session):
            return ChatSession(chat_id=chat_id)
        return session.model_copy()

    def peek(self, chat_id: int) -> Optional[ChatSession]:
        return self._store.get(chat_id)

    def set(self, chat_id: int, session: ChatSession) -> None:
        session.touch()
        self._store[chat_id] = session.model_copy()

    def delete(self, chat_id: int) -> None:
        self._store.pop(chat_id, None)
        if chat_id not in self._users:
            self._locks.pop(chat_id, None)

    def lock(self, chat_id: int) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock

    @asynccontextmanager
    async def locked(self, chat_id: int) -> AsyncIterator[None]:
        """
        Hold the chat's lock. The lock is forgotten once nobody holds or waits
        for it and the chat has no stored session.
        """
        lock = self.lock(chat_id)
        self._users[chat_id] = self._users.get(chat_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[chat_id] -= 1
            if not self._users[chat_id]:
                del self._users[chat_id]
                if chat_id not in self._store:
                    self._locks.pop(chat_id, None)

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def evict_idle(self) -> int:
        """Drop idle sessions whose chat is not being handled right now."""
        if self.idle_timeout is None:
            return 0
        expired = [
            chat_id for chat_id, session in self._store.items()
            if self._is_idle(session) and chat_id not in self._users
        ]
        for chat_id in expired:
            self.delete(chat_id)
        if expired:
            logger.info("evicted %d idle chat sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._store

    def _is_idle(self, session: ChatSession) -> bool:
        if self.idle_timeout is None:
            return False
        return datetime.now(timezone.utc) - session.last_activity > self.idle_timeout
