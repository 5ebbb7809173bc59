"""Domain models for the consultation messaging engine."""

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

TEMP_ID_PREFIX = "local-"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def make_temp_id(now: Optional[datetime] = None) -> str:
    """Build a temporary id of the form ``local-<epoch ms>-<random hex>``."""
    now = now or utcnow()
    return f"{TEMP_ID_PREFIX}{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


def is_temp_id(message_id: str) -> bool:
    return message_id.startswith(TEMP_ID_PREFIX)


class MessageStatus(str, Enum):
    """Delivery state of a message."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class AuthorRole(str, Enum):
    """Roles a message author can hold on the platform."""

    PATIENT = "patient"
    MEDECIN = "medecin"
    ADMINISTRATOR = "administrator"
    PROFIL = "profil"
    SERVICE = "service"
    OTHER = "other"


class Message(BaseModel):
    """Message model."""

    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    content: str
    author_id: str
    author_role: AuthorRole = AuthorRole.OTHER
    author_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    status: MessageStatus = MessageStatus.CONFIRMED
    correlation_id: Optional[str] = None

    @field_validator("id", "conversation_id", "author_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        # Servers commonly hand out integer primary keys
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("author_role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> Any:
        if isinstance(value, AuthorRole):
            return value
        try:
            return AuthorRole(str(value).lower())
        except ValueError:
            return AuthorRole.OTHER

    @field_validator("created_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_pending(self) -> bool:
        return self.status is MessageStatus.PENDING


class Connectivity(BaseModel):
    """Online and foreground flags as last reported by the platform."""

    model_config = ConfigDict(frozen=True)

    online: bool = True
    foreground: bool = True

    @property
    def can_sync(self) -> bool:
        return self.online and self.foreground


class TypingState(BaseModel):
    """Local typing indicator; never transmitted."""

    model_config = ConfigDict(frozen=True)

    is_typing: bool = False
    expires_at: Optional[datetime] = None


class ReconcileResult(BaseModel):
    """Outcome of merging a remote list into the local one."""

    model_config = ConfigDict(frozen=True)

    added: Tuple[Message, ...] = ()
    removed: Tuple[Message, ...] = ()
    incoming: Tuple[Message, ...] = ()
    changed: bool = False


class ConversationSnapshot(BaseModel):
    """Read-only view of a conversation handed to the UI."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str
    messages: Tuple[Message, ...] = ()
    unread_count: int = 0
    last_seen_at: Optional[datetime] = None
    typing: TypingState = Field(default_factory=TypingState)
    connectivity: Connectivity = Field(default_factory=Connectivity)
    poll_interval_ms: int = 10000
    draft: str = ""
    sending: bool = False
    closed: bool = False
