from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    VALIDATION = "validation"
    DUPLICATE_PHONE = "duplicate_phone"
    DUPLICATE_NICKNAME = "duplicate_nickname"
    USER_NOT_FOUND = "user_not_found"
    SELF_ADD = "self_add"
    DUPLICATE_CONTACT = "duplicate_contact"


class StorageDeserializationError(ValueError):
    """Persisted value could not be decoded into domain records."""


@dataclass(frozen=True)
class Result:
    success: bool
    error_kind: ErrorKind | None = None
    error: str | None = None

    @classmethod
    def ok(cls) -> Result:
        return cls(success=True)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> Result:
        return cls(success=False, error_kind=kind, error=message)
