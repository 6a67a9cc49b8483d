from __future__ import annotations

from dataclasses import dataclass
from os import getenv

from beamchat.services.auto_reply import AutoReplyService
from beamchat.services.chat_session import DEFAULT_AUTO_REPLY_DELAY_SEC, ChatSession
from beamchat.services.directory import UserDirectory
from beamchat.services.scheduler import ReplyScheduler, ThreadTimerScheduler
from beamchat.services.storage import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
)


@dataclass
class ServiceContainer:
    store: KeyValueStore
    directory: UserDirectory
    auto_reply: AutoReplyService
    scheduler: ReplyScheduler
    chat_session: ChatSession
    storage_backend: str

    def storage_diagnostics(self) -> dict[str, object]:
        if isinstance(self.store, JsonFileKeyValueStore):
            return {"backend": self.storage_backend, **self.store.diagnostics()}
        return {"backend": self.storage_backend}


def build_container(*, scheduler: ReplyScheduler | None = None) -> ServiceContainer:
    storage_backend = (getenv("BEAMCHAT_STORAGE_BACKEND") or "file").strip().lower()
    store: KeyValueStore
    if storage_backend == "memory":
        store = InMemoryKeyValueStore()
    else:
        storage_backend = "file"
        store = JsonFileKeyValueStore(
            getenv("BEAMCHAT_STORAGE_FILE", "./data/beamchat_storage.json"),
        )
    directory = UserDirectory(store)
    auto_reply = AutoReplyService()
    reply_scheduler = scheduler or ThreadTimerScheduler()
    chat_session = ChatSession(
        store=store,
        directory=directory,
        scheduler=reply_scheduler,
        auto_reply=auto_reply,
        auto_reply_delay_sec=_parse_float(
            getenv("BEAMCHAT_AUTO_REPLY_DELAY_SEC"),
            default=DEFAULT_AUTO_REPLY_DELAY_SEC,
        ),
    )
    return ServiceContainer(
        store=store,
        directory=directory,
        auto_reply=auto_reply,
        scheduler=reply_scheduler,
        chat_session=chat_session,
        storage_backend=storage_backend,
    )


def _parse_float(value: str | None, *, default: float) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    if parsed < 0:
        return default
    return parsed
