from __future__ import annotations

import json
import logging

from beamchat.domain.errors import StorageDeserializationError
from beamchat.domain.models import User
from beamchat.services.storage import ALL_USERS_KEY, KeyValueStore

logger = logging.getLogger(__name__)


class UserDirectory:
    """Global append-only user registry indexed by phone and lower-cased nickname.

    Every session over the same store shares one directory, so the indexes are
    rebuilt whenever the stored value differs from the one last seen.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._users: list[User] = []
        self._by_phone: dict[str, User] = {}
        self._by_nickname: dict[str, User] = {}
        self._loaded_raw: str | None = None
        self._loaded = False

    def get_by_phone(self, phone: str) -> User | None:
        self._refresh()
        return self._by_phone.get(phone)

    def get_by_nickname(self, nickname: str) -> User | None:
        self._refresh()
        return self._by_nickname.get(nickname.lower())

    def find(self, nickname: str, phone: str) -> User | None:
        user = self.get_by_phone(phone)
        if user is None or user.nickname.lower() != nickname.lower():
            return None
        return user

    def add(self, user: User, *, persist: bool = True) -> bool:
        """Append `user` unless its phone is known.

        With `persist=False` the caller writes `encoded()` under
        `ALL_USERS_KEY` itself, in the same store batch as its own keys.
        """
        self._refresh()
        if user.phone in self._by_phone:
            return False
        self._users.append(user)
        self._index(user)
        raw = json.dumps([item.to_payload() for item in self._users], ensure_ascii=False)
        self._loaded_raw = raw
        if persist:
            self._store.set(ALL_USERS_KEY, raw)
        logger.info("directory_user_added phone=%s total=%s", user.phone, len(self._users))
        return True

    def encoded(self) -> str:
        return self._loaded_raw or "[]"

    def all(self) -> list[User]:
        self._refresh()
        return list(self._users)

    def __len__(self) -> int:
        self._refresh()
        return len(self._users)

    def _refresh(self) -> None:
        raw = self._store.get(ALL_USERS_KEY)
        if self._loaded and raw == self._loaded_raw:
            return
        self._users = []
        self._by_phone = {}
        self._by_nickname = {}
        self._loaded = True
        self._loaded_raw = raw
        if raw is None:
            return
        try:
            users = _decode_users(raw)
        except StorageDeserializationError as exc:
            logger.warning("directory_load_failed err=%s", exc)
            return
        for user in users:
            if user.phone in self._by_phone:
                continue
            self._users.append(user)
            self._index(user)

    def _index(self, user: User) -> None:
        self._by_phone[user.phone] = user
        self._by_nickname.setdefault(user.nickname.lower(), user)


def _decode_users(raw: str) -> list[User]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StorageDeserializationError("directory is not valid JSON") from exc
    if not isinstance(payload, list):
        raise StorageDeserializationError("directory must be a JSON array")
    return [User.from_payload(item) for item in payload]
