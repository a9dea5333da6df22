from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from todoauth.storage.errors import ConstraintViolation
from todoauth.storage.models import SessionRecord, User


class MemoryStore:
    """In-memory users, credentials and session ledger for tests and local runs."""

    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        self.sessions: Dict[str, SessionRecord] = {}
        # RLock so user deletion can cascade into the ledger helpers
        self._data_lock = threading.RLock()

    # user / auth
    def create_user(self, email: str, name: str) -> User:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User.new(email=email, name=name)
            self.users[user.id] = user
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            if user_id not in self.users:
                return False
            self.users.pop(user_id, None)
            self.credentials.pop(user_id, None)
            self.delete_user_sessions(user_id)
            return True

    def save_password(self, user_id: str, password_hash: str, password_algo: str) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": user_id}
                )
            self.credentials[user_id] = (password_hash, password_algo)

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    # session ledger
    def insert_session(
        self, session_id: str, user_id: str, expires_at: datetime
    ) -> SessionRecord:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            if session_id in self.sessions:
                raise ConstraintViolation("session already exists", {"id": session_id})
            record = SessionRecord(id=session_id, user_id=user_id, expires_at=expires_at)
            self.sessions[session_id] = record
            return record

    def delete_session(self, session_id: str) -> bool:
        with self._data_lock:
            return self.sessions.pop(session_id, None) is not None

    def delete_expired_sessions(self, user_id: str, threshold: datetime) -> int:
        with self._data_lock:
            expired = [
                sid
                for sid, record in self.sessions.items()
                if record.user_id == user_id and record.expires_at <= threshold
            ]
            for sid in expired:
                self.sessions.pop(sid, None)
            return len(expired)

    def list_user_sessions(self, user_id: str) -> List[SessionRecord]:
        with self._data_lock:
            records = [r for r in self.sessions.values() if r.user_id == user_id]
            return sorted(records, key=lambda r: r.created_at)

    def delete_user_sessions(self, user_id: str) -> int:
        with self._data_lock:
            owned = [sid for sid, r in self.sessions.items() if r.user_id == user_id]
            for sid in owned:
                self.sessions.pop(sid, None)
            return len(owned)


class MemoryRegistry:
    """Expiring key-value registry with the same contract as ``RedisRegistry``.

    Compound operations run entirely under one lock and never await, so they
    are atomic with respect to other coroutines and threads.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    def _sweep(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    def _put(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + max(1, int(ttl)))

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._sweep()
            self._put(key, value, ttl)

    async def delete(self, *keys: str) -> int:
        with self._lock:
            removed = 0
            for key in keys:
                if self._live(key) is not None:
                    removed += 1
                self._entries.pop(key, None)
            return removed

    async def set_many(self, entries: Iterable[Tuple[str, str, int]]) -> None:
        with self._lock:
            self._sweep()
            for key, value, ttl in entries:
                self._put(key, value, ttl)

    async def rebind(
        self,
        family_key: str,
        bound_prefix: str,
        family_id: str,
        new_bound_id: str,
        ttl: int,
    ) -> Optional[str]:
        with self._lock:
            previous = self._live(family_key)
            if previous is None:
                return None
            self._entries.pop(f"{bound_prefix}{previous}", None)
            self._put(f"{bound_prefix}{new_bound_id}", family_id, ttl)
            # keep the family entry's remaining lifetime
            _, family_expires = self._entries[family_key]
            self._entries[family_key] = (new_bound_id, family_expires)
            return previous

    async def unbind(self, family_key: str, bound_prefix: str) -> Optional[str]:
        with self._lock:
            previous = self._live(family_key)
            if previous is None:
                return None
            self._entries.pop(family_key, None)
            self._entries.pop(f"{bound_prefix}{previous}", None)
            return previous

    def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime in seconds, or None when absent."""
        with self._lock:
            if self._live(key) is None:
                return None
            return self._entries[key][1] - self._clock()

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
