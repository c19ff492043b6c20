"""User and refresh-token records shared by the stores and the service."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List
from uuid import UUID


class Role(str, enum.Enum):
    CLIENT = "client"
    STORE = "store"
    COURIER = "courier"
    ADMIN = "admin"


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class RefreshTokenEntry:
    token: str = field(repr=False)
    expires_at: datetime
    created_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class UserRecord:
    id: UUID
    email: str
    password_hash: str = field(repr=False)
    name: str
    phone: str
    role: Role
    created_at: datetime
    updated_at: datetime
    refresh_tokens: List[RefreshTokenEntry] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        """Short projection returned alongside freshly issued tokens."""
        return {
            "id": str(self.id),
            "name": self.name,
            "role": self.role.value,
            "email": self.email,
        }

    def public(self) -> Dict[str, Any]:
        """Full profile; never includes the password hash or token values."""
        return {
            "id": str(self.id),
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "role": self.role.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class ConsumedRefreshToken:
    """Outcome of atomically removing a refresh token from its owner."""

    user_id: UUID
    entry: RefreshTokenEntry
    expired: bool
    replaced: bool = False
