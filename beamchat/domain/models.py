from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from beamchat.domain.errors import StorageDeserializationError


class View(StrEnum):
    REGISTER = "register"
    MAIN = "main"
    CHAT = "chat"


class SessionEvent(StrEnum):
    REGISTERED = "registered"
    CONTACT_ADDED = "contact_added"
    CHAT_OPENED = "chat_opened"
    CHAT_CLOSED = "chat_closed"
    MESSAGE_SENT = "message_sent"
    MESSAGE_RECEIVED = "message_received"
    LOGGED_OUT = "logged_out"


@dataclass(frozen=True)
class User:
    nickname: str
    phone: str
    registered_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_payload(self) -> dict[str, Any]:
        return {
            "nickname": self.nickname,
            "phone": self.phone,
            "registeredAt": self.registered_at.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: Any) -> User:
        data = _require_mapping(payload, kind="user")
        return cls(
            nickname=_require_str(data, "nickname"),
            phone=_require_str(data, "phone"),
            registered_at=_require_datetime(data, "registeredAt"),
        )


@dataclass(frozen=True)
class Contact:
    nickname: str
    phone: str
    added_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_payload(self) -> dict[str, Any]:
        return {
            "nickname": self.nickname,
            "phone": self.phone,
            "addedAt": self.added_at.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: Any) -> Contact:
        data = _require_mapping(payload, kind="contact")
        return cls(
            nickname=_require_str(data, "nickname"),
            phone=_require_str(data, "phone"),
            added_at=_require_datetime(data, "addedAt"),
        )


@dataclass(frozen=True)
class Message:
    id: str
    sender: str
    recipient: str
    text: str
    timestamp: datetime
    outgoing: bool

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from": self.sender,
            "to": self.recipient,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "outgoing": self.outgoing,
        }

    @classmethod
    def from_payload(cls, payload: Any) -> Message:
        data = _require_mapping(payload, kind="message")
        raw_id = data.get("id")
        # Older stores kept numeric ids.
        if not isinstance(raw_id, (str, int, float)) or isinstance(raw_id, bool):
            raise StorageDeserializationError("message.id is missing or invalid")
        outgoing = data.get("outgoing")
        if not isinstance(outgoing, bool):
            raise StorageDeserializationError("message.outgoing must be a boolean")
        return cls(
            id=str(raw_id),
            sender=_require_str(data, "from"),
            recipient=_require_str(data, "to"),
            text=_require_str(data, "text"),
            timestamp=_require_datetime(data, "timestamp"),
            outgoing=outgoing,
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session handed to listeners and API callers."""

    current_user: User | None
    contacts: tuple[Contact, ...]
    messages: dict[str, tuple[Message, ...]]
    current_chat_contact: Contact | None

    @property
    def view(self) -> View:
        if self.current_user is None:
            return View.REGISTER
        if self.current_chat_contact is not None:
            return View.CHAT
        return View.MAIN

    def thread(self, contact_phone: str) -> tuple[Message, ...]:
        return self.messages.get(contact_phone, ())


def _require_mapping(payload: Any, *, kind: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise StorageDeserializationError(f"{kind} payload must be an object")
    return payload


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise StorageDeserializationError(f"field {key!r} must be a string")
    return value


def _require_datetime(data: dict[str, Any], key: str) -> datetime:
    raw = _require_str(data, key)
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise StorageDeserializationError(f"field {key!r} is not an ISO timestamp") from exc
