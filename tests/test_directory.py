import json
from datetime import UTC, datetime

from beamchat.domain.models import User
from beamchat.services.directory import UserDirectory
from beamchat.services.storage import ALL_USERS_KEY, InMemoryKeyValueStore


def _user(nickname: str, phone: str) -> User:
    return User(nickname=nickname, phone=phone, registered_at=datetime(2024, 1, 1, tzinfo=UTC))


def test_directory_indexes_phone_and_nickname() -> None:
    directory = UserDirectory(InMemoryKeyValueStore())

    assert directory.add(_user("Alice", "5551234567")) is True

    assert directory.get_by_phone("5551234567") is not None
    assert directory.get_by_nickname("alice") is not None
    assert directory.get_by_nickname("ALICE") is not None
    assert directory.find("aLiCe", "5551234567") is not None
    assert directory.find("alice", "5550000000") is None


def test_directory_add_is_idempotent_on_phone() -> None:
    store = InMemoryKeyValueStore()
    directory = UserDirectory(store)
    directory.add(_user("alice", "5551234567"))

    assert directory.add(_user("other", "5551234567")) is False

    assert len(directory) == 1
    assert [item["nickname"] for item in json.loads(store.get(ALL_USERS_KEY))] == ["alice"]


def test_directories_over_one_store_see_each_other() -> None:
    store = InMemoryKeyValueStore()
    first = UserDirectory(store)
    second = UserDirectory(store)
    assert first.get_by_phone("5559876543") is None

    second.add(_user("bob", "5559876543"))

    assert first.get_by_phone("5559876543") is not None
    assert [user.nickname for user in first.all()] == ["bob"]


def test_directory_preserves_insertion_order_and_skips_duplicate_rows() -> None:
    raw = json.dumps(
        [
            _user("carol", "5550000001").to_payload(),
            _user("dave", "5550000002").to_payload(),
            _user("carol2", "5550000001").to_payload(),
        ]
    )
    directory = UserDirectory(InMemoryKeyValueStore({ALL_USERS_KEY: raw}))

    assert [user.nickname for user in directory.all()] == ["carol", "dave"]


def test_corrupt_directory_loads_empty_and_is_replaced_on_add() -> None:
    store = InMemoryKeyValueStore({ALL_USERS_KEY: "{oops"})
    directory = UserDirectory(store)

    assert len(directory) == 0
    assert directory.add(_user("erin", "5550000003")) is True
    assert json.loads(store.get(ALL_USERS_KEY))[0]["phone"] == "5550000003"
