from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from threading import RLock
from typing import Any
from uuid import uuid4

from beamchat.domain.errors import ErrorKind, Result, StorageDeserializationError
from beamchat.domain.models import Contact, Message, SessionEvent, SessionSnapshot, User
from beamchat.services.auto_reply import AutoReplyService
from beamchat.services.directory import UserDirectory
from beamchat.services.scheduler import ReplyScheduler, ScheduledTask, ThreadTimerScheduler
from beamchat.services.storage import (
    ALL_USERS_KEY,
    CONTACTS_KEY,
    CURRENT_USER_KEY,
    MESSAGES_KEY,
    KeyValueStore,
)

MIN_NICKNAME_LENGTH = 3
MIN_PHONE_LENGTH = 10
DEFAULT_AUTO_REPLY_DELAY_SEC = 2.0

SessionListener = Callable[[SessionEvent, SessionSnapshot], None]
logger = logging.getLogger(__name__)


class ChatSession:
    """One logged-in identity: contacts, message threads and the open chat.

    Caller operations and auto-reply callbacks share one re-entrant lock, so
    state is only ever mutated by one of them at a time. Listeners are invoked
    with a fresh snapshot after every mutation they need to render.
    """

    def __init__(
        self,
        *,
        store: KeyValueStore,
        directory: UserDirectory | None = None,
        scheduler: ReplyScheduler | None = None,
        auto_reply: AutoReplyService | None = None,
        auto_reply_delay_sec: float = DEFAULT_AUTO_REPLY_DELAY_SEC,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._directory = directory if directory is not None else UserDirectory(store)
        self._scheduler = scheduler or ThreadTimerScheduler()
        self._auto_reply = auto_reply or AutoReplyService()
        self._auto_reply_delay_sec = max(float(auto_reply_delay_sec), 0.0)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = RLock()
        self._listeners: list[SessionListener] = []
        self._pending_replies: dict[str, ScheduledTask] = {}

        self._current_user: User | None = None
        self._contacts: list[Contact] = []
        self._messages: dict[str, list[Message]] = {}
        self._current_chat_contact: Contact | None = None
        self._load()

    @property
    def directory(self) -> UserDirectory:
        return self._directory

    @property
    def current_user(self) -> User | None:
        return self._current_user

    @property
    def contacts(self) -> list[Contact]:
        with self._lock:
            return list(self._contacts)

    @property
    def current_chat_contact(self) -> Contact | None:
        return self._current_chat_contact

    @property
    def pending_reply_count(self) -> int:
        with self._lock:
            return len(self._pending_replies)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                current_user=self._current_user,
                contacts=tuple(self._contacts),
                messages={phone: tuple(items) for phone, items in self._messages.items()},
                current_chat_contact=self._current_chat_contact,
            )

    def register(self, nickname: str, phone: str) -> Result:
        nickname = nickname.strip()
        phone = phone.strip()
        if not nickname or len(nickname) < MIN_NICKNAME_LENGTH:
            return Result.fail(
                ErrorKind.VALIDATION,
                f"Nickname must be at least {MIN_NICKNAME_LENGTH} characters long",
            )
        if not phone or len(phone) < MIN_PHONE_LENGTH:
            return Result.fail(ErrorKind.VALIDATION, "Enter a valid phone number")

        with self._lock:
            if self._directory.get_by_phone(phone) is not None:
                return Result.fail(
                    ErrorKind.DUPLICATE_PHONE,
                    "A user with this phone number already exists",
                )
            if self._directory.get_by_nickname(nickname) is not None:
                return Result.fail(
                    ErrorKind.DUPLICATE_NICKNAME,
                    "A user with this nickname already exists",
                )

            user = User(nickname=nickname, phone=phone, registered_at=self._clock())
            self._current_user = user
            self._directory.add(user, persist=False)
            self._save({ALL_USERS_KEY: self._directory.encoded()})
            logger.info("user_registered nickname=%s phone=%s", user.nickname, user.phone)
            self._notify(SessionEvent.REGISTERED)
            return Result.ok()

    def find_user(self, nickname: str, phone: str) -> User | None:
        return self._directory.find(nickname, phone)

    def add_contact(self, nickname: str, phone: str) -> Result:
        nickname = nickname.strip()
        phone = phone.strip()
        if not nickname or not phone:
            return Result.fail(ErrorKind.VALIDATION, "Fill in all fields")

        with self._lock:
            user = self.find_user(nickname, phone)
            if user is None:
                return Result.fail(ErrorKind.USER_NOT_FOUND, "User not found")
            if self._current_user is not None and self._current_user.phone == phone:
                return Result.fail(ErrorKind.SELF_ADD, "You cannot add yourself")
            if any(contact.phone == phone for contact in self._contacts):
                return Result.fail(ErrorKind.DUPLICATE_CONTACT, "Contact already exists")

            contact = Contact(nickname=user.nickname, phone=user.phone, added_at=self._clock())
            self._contacts.append(contact)
            self._messages.setdefault(user.phone, [])
            self._save()
            logger.info("contact_added phone=%s total=%s", contact.phone, len(self._contacts))
            self._notify(SessionEvent.CONTACT_ADDED)
            return Result.ok()

    def open_chat(self, contact_phone: str) -> Result:
        with self._lock:
            contact = next((c for c in self._contacts if c.phone == contact_phone), None)
            if contact is None:
                return Result.fail(ErrorKind.USER_NOT_FOUND, "Contact not found")
            self._current_chat_contact = contact
            self._notify(SessionEvent.CHAT_OPENED)
            return Result.ok()

    def close_chat(self) -> None:
        with self._lock:
            self._current_chat_contact = None
            self._notify(SessionEvent.CHAT_CLOSED)

    def send_message(self, contact_phone: str, text: str) -> None:
        with self._lock:
            if not text.strip() or self._current_user is None:
                return

            now = self._clock()
            message = Message(
                id=_new_message_id(now),
                sender=self._current_user.phone,
                recipient=contact_phone,
                text=text.strip(),
                timestamp=now,
                outgoing=True,
            )
            self._messages.setdefault(contact_phone, []).append(message)
            self._schedule_auto_reply(contact_phone=contact_phone, sent_text=text)
            self._save()
            logger.info("message_sent to=%s id=%s", contact_phone, message.id)
            self._notify(SessionEvent.MESSAGE_SENT)

    def get_chat_messages(self, contact_phone: str) -> list[Message]:
        with self._lock:
            return list(self._messages.get(contact_phone, []))

    def logout(self) -> None:
        with self._lock:
            cancelled = self._cancel_pending_replies()
            self._reset_state()
            self._save()
            logger.info("session_logged_out cancelled_replies=%s", cancelled)
            self._notify(SessionEvent.LOGGED_OUT)

    def close(self) -> None:
        with self._lock:
            self._cancel_pending_replies()

    def _schedule_auto_reply(self, *, contact_phone: str, sent_text: str) -> None:
        reply_id = uuid4().hex
        task = self._scheduler.schedule(
            self._auto_reply_delay_sec,
            lambda: self._deliver_auto_reply(
                reply_id=reply_id,
                contact_phone=contact_phone,
                sent_text=sent_text,
            ),
        )
        self._pending_replies[reply_id] = task

    def _deliver_auto_reply(self, *, reply_id: str, contact_phone: str, sent_text: str) -> None:
        with self._lock:
            if self._pending_replies.pop(reply_id, None) is None:
                return
            if self._current_user is None:
                logger.info("auto_reply_dropped reason=no_session from=%s", contact_phone)
                return

            now = self._clock()
            reply = Message(
                id=_new_message_id(now),
                sender=contact_phone,
                recipient=self._current_user.phone,
                text=self._auto_reply.reply(sent_text),
                timestamp=now,
                outgoing=False,
            )
            self._messages.setdefault(contact_phone, []).append(reply)
            self._save()
            logger.info("auto_reply_delivered from=%s id=%s", contact_phone, reply.id)

            open_chat = self._current_chat_contact
            if open_chat is not None and open_chat.phone == contact_phone:
                self._notify(SessionEvent.MESSAGE_RECEIVED)

    def _cancel_pending_replies(self) -> int:
        pending = list(self._pending_replies.values())
        self._pending_replies.clear()
        for task in pending:
            task.cancel()
        return len(pending)

    def _notify(self, event: SessionEvent) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(event, snapshot)
            except Exception:
                logger.exception("session_listener_failed event=%s", event)

    def _reset_state(self) -> None:
        self._current_user = None
        self._contacts = []
        self._messages = {}
        self._current_chat_contact = None

    def _load(self) -> None:
        try:
            current_user = _decode_current_user(self._store.get(CURRENT_USER_KEY))
            contacts = _decode_contacts(self._store.get(CONTACTS_KEY))
            messages = _decode_messages(self._store.get(MESSAGES_KEY))
        except StorageDeserializationError as exc:
            logger.warning("session_state_reset reason=deserialization_failed err=%s", exc)
            self._reset_state()
            self._save()
            return

        self._current_user = current_user
        self._contacts = contacts
        self._messages = messages
        for contact in contacts:
            self._messages.setdefault(contact.phone, [])

    def _save(self, extra: dict[str, str] | None = None) -> None:
        current_user = self._current_user.to_payload() if self._current_user is not None else None
        values = {
            CURRENT_USER_KEY: json.dumps(current_user, ensure_ascii=False),
            CONTACTS_KEY: json.dumps(
                [contact.to_payload() for contact in self._contacts],
                ensure_ascii=False,
            ),
            MESSAGES_KEY: json.dumps(
                {
                    phone: [message.to_payload() for message in items]
                    for phone, items in self._messages.items()
                },
                ensure_ascii=False,
            ),
        }
        values.update(extra or {})
        # One store batch per operation, so file backups track whole operations.
        self._store.set_many(values)


def _new_message_id(now: datetime) -> str:
    return f"{int(now.timestamp() * 1000)}-{uuid4().hex[:8]}"


def _parse_json(raw: str, *, key: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StorageDeserializationError(f"{key} is not valid JSON") from exc


def _decode_current_user(raw: str | None) -> User | None:
    if raw is None:
        return None
    payload = _parse_json(raw, key=CURRENT_USER_KEY)
    if payload is None:
        return None
    return User.from_payload(payload)


def _decode_contacts(raw: str | None) -> list[Contact]:
    if raw is None:
        return []
    payload = _parse_json(raw, key=CONTACTS_KEY)
    if not isinstance(payload, list):
        raise StorageDeserializationError(f"{CONTACTS_KEY} must be a JSON array")
    return [Contact.from_payload(item) for item in payload]


def _decode_messages(raw: str | None) -> dict[str, list[Message]]:
    if raw is None:
        return {}
    payload = _parse_json(raw, key=MESSAGES_KEY)
    if not isinstance(payload, dict):
        raise StorageDeserializationError(f"{MESSAGES_KEY} must be a JSON object")
    messages: dict[str, list[Message]] = {}
    for phone, items in payload.items():
        if not isinstance(items, list):
            raise StorageDeserializationError(f"thread {phone!r} must be a JSON array")
        messages[str(phone)] = [Message.from_payload(item) for item in items]
    return messages
