from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    email: str
    name: str
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls, email: str, name: str) -> "User":
        return cls(id=str(uuid.uuid4()), email=email, name=name)


@dataclass
class SessionRecord:
    """Durable ledger row for one refresh-token family.

    ``id`` is the family's ``rjti``; the row lives until logout, account
    deletion or housekeeping after ``expires_at``.
    """

    id: str
    user_id: str
    expires_at: datetime
    created_at: datetime = field(default_factory=_utcnow)

    def is_expired(self, at: datetime | None = None) -> bool:
        return self.expires_at <= (at or _utcnow())
