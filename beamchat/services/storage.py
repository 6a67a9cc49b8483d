from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator, Mapping
from pathlib import Path
from tempfile import NamedTemporaryFile
from threading import Lock
from typing import Any, Protocol

CURRENT_USER_KEY = "beamchat_current_user"
CONTACTS_KEY = "beamchat_contacts"
MESSAGES_KEY = "beamchat_messages"
ALL_USERS_KEY = "beamchat_all_users"

BACKUP_GENERATIONS = 3
logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def set_many(self, values: Mapping[str, str]) -> None: ...


class InMemoryKeyValueStore:
    """Dict-backed store; state disappears with the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._lock = Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, str]) -> None:
        with self._lock:
            self._values.update(values)


class JsonFileKeyValueStore:
    """All keys in one JSON object file.

    Each `set`/`set_many` call is one generation: the file is rewritten once
    and the previous generation shifts into `<file>.bak1`, `.bak1` into
    `.bak2`, and so on up to `BACKUP_GENERATIONS`.
    """

    def __init__(self, storage_path: str) -> None:
        self._path = Path(storage_path)
        self._values: dict[str, str] = {}
        self._lock = Lock()
        self._load_source = "empty"
        self._save_error: str | None = None
        self._restore()

    @property
    def storage_path(self) -> str:
        return str(self._path)

    def backup_path(self, generation: int) -> Path:
        return self._path.with_name(f"{self._path.name}.bak{generation}")

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, str]) -> None:
        if not values:
            return
        with self._lock:
            self._values.update(values)
            self._commit()

    def diagnostics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "storage_path": str(self._path),
                "last_load_source": self._load_source,
                "last_save_ok": self._save_error is None,
                "last_save_error": self._save_error,
                "key_count": len(self._values),
            }

    def _generations(self) -> Iterator[tuple[str, Path]]:
        yield "primary", self._path
        for generation in range(1, BACKUP_GENERATIONS + 1):
            yield f"backup_{generation}", self.backup_path(generation)

    def _restore(self) -> None:
        for source, path in self._generations():
            values = _read_string_map(path)
            if values is None:
                continue
            self._values = values
            self._load_source = source
            if source != "primary":
                logger.warning("storage_restored_from_backup path=%s source=%s", self._path, source)
            return
        if self._path.exists():
            self._load_source = "unrecoverable"
            logger.warning("storage_load_unrecoverable path=%s", self._path)

    def _commit(self) -> None:
        staged: Path | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as fh:
                staged = Path(fh.name)
                json.dump(self._values, fh, ensure_ascii=False, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            self._shift_backups()
            staged.replace(self._path)
            self._save_error = None
        except OSError as exc:
            self._save_error = str(exc)
            logger.warning("storage_write_failed path=%s err=%s", self._path, exc)
            if staged is not None:
                staged.unlink(missing_ok=True)

    def _shift_backups(self) -> None:
        if not self._path.exists():
            return
        for generation in range(BACKUP_GENERATIONS, 1, -1):
            older = self.backup_path(generation - 1)
            if older.exists():
                older.replace(self.backup_path(generation))
        # The live file becomes .bak1 once the staged copy replaces it.
        self.backup_path(1).write_bytes(self._path.read_bytes())


def _read_string_map(path: Path) -> dict[str, str] | None:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    return {str(key): value for key, value in payload.items() if isinstance(value, str)}
