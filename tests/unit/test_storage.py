"""
Unit tests for session store backends.
"""

import json
import os
from unittest.mock import MagicMock, patch

import pytest
import redis

from vaulton.errors import InvalidSession
from vaulton.models import Session
from vaulton.storage import (
    FileSessionStore,
    MemorySessionStore,
    RedisSessionStore,
    create_session_store,
)


class FakeRedis:
    """Dictionary-backed subset of the redis client API."""

    def __init__(self):
        self.data = {}
        self.expiry = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value.encode("utf-8")
        if ex:
            self.expiry[key] = ex

    def delete(self, key):
        self.data.pop(key, None)


@pytest.fixture(params=["memory", "file", "redis"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemorySessionStore()
    if request.param == "file":
        return FileSessionStore(tmp_path / "session.json")
    return RedisSessionStore(FakeRedis())


class TestSessionStoreContract:
    """Behaviour shared by every backend."""

    def test_empty_store(self, store):
        assert store.load() is None
        assert store.is_active() is False

    def test_save_and_load(self, store, sample_session):
        store.save(sample_session)

        assert store.load() == sample_session
        assert store.is_active() is True

    def test_save_overwrites(self, store, sample_session):
        store.save(sample_session)
        replacement = Session(user_id="other", smart_account_id=sample_session.smart_account_id)
        store.save(replacement)

        assert store.load() == replacement

    def test_clear(self, store, sample_session):
        store.save(sample_session)
        store.clear()

        assert store.load() is None
        assert store.is_active() is False

    def test_clear_when_empty(self, store):
        store.clear()
        assert store.load() is None

    @pytest.mark.parametrize(
        "session",
        [
            Session(user_id="", smart_account_id="CABC"),
            Session(user_id="u1", smart_account_id=""),
        ],
    )
    def test_save_rejects_incomplete(self, store, session):
        with pytest.raises(InvalidSession):
            store.save(session)
        assert store.load() is None


class TestMemorySessionStore:
    def test_instances_are_isolated(self, sample_session):
        first, second = MemorySessionStore(), MemorySessionStore()
        first.save(sample_session)

        assert second.load() is None

    def test_corrupt_record_is_absent(self):
        store = MemorySessionStore()
        store._write("{not json")

        assert store.load() is None

    def test_non_object_record_is_absent(self):
        store = MemorySessionStore()
        store._write(json.dumps(["a", "b"]))

        assert store.load() is None


class TestFileSessionStore:
    """Test the on-disk store."""

    def test_record_layout(self, tmp_path, sample_session):
        path = tmp_path / "nested" / "session.json"
        FileSessionStore(path, storage_key="my_key").save(sample_session)

        data = json.loads(path.read_text())
        assert list(data) == ["my_key"]
        assert json.loads(data["my_key"])["userId"] == "user_123"

    def test_file_permissions(self, tmp_path, sample_session):
        path = tmp_path / "session.json"
        FileSessionStore(path).save(sample_session)

        assert os.stat(path).st_mode & 0o777 == 0o600

    def test_keys_share_a_file(self, tmp_path, sample_session):
        path = tmp_path / "session.json"
        first = FileSessionStore(path, storage_key="a")
        second = FileSessionStore(path, storage_key="b")
        first.save(sample_session)
        second.save(sample_session)
        first.clear()

        assert first.load() is None
        assert second.load() == sample_session

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("garbage")

        assert FileSessionStore(path).load() is None

    def test_invalid_utf8_file(self, tmp_path, sample_session):
        path = tmp_path / "session.json"
        path.write_bytes(b'{"vaulton_wallet_sdk_session": "\xff\xfe"}')
        store = FileSessionStore(path)

        assert store.load() is None
        assert not store.is_active()

        store.save(sample_session)
        assert store.load() == sample_session

    def test_accepts_object_record(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text(json.dumps({"vaulton_wallet_sdk_session": {"userId": "u1", "smartAccountId": "CABC"}}))

        session = FileSessionStore(path).load()
        assert session.user_id == "u1"

    def test_unreadable_file(self, tmp_path):
        store = FileSessionStore(tmp_path / "session.json")
        with patch.object(store, "_read", side_effect=PermissionError("denied")):
            assert store.load() is None


class TestRedisSessionStore:
    """Test the Redis-backed store."""

    def test_ttl(self, sample_session):
        client = FakeRedis()
        RedisSessionStore(client, storage_key="k", ttl=60).save(sample_session)

        assert client.expiry == {"k": 60}

    def test_connection_error_reads_as_absent(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")

        assert RedisSessionStore(client).load() is None


class TestCreateSessionStore:
    """Test backend selection from configuration."""

    def test_memory(self):
        assert isinstance(create_session_store({"SESSION_BACKEND": "memory"}), MemorySessionStore)

    def test_file(self, tmp_path):
        store = create_session_store(
            {"SESSION_BACKEND": "file", "SESSION_FILE": str(tmp_path / "s.json"), "VAULTON_STORAGE_KEY": "custom"}
        )

        assert isinstance(store, FileSessionStore)
        assert store.storage_key == "custom"

    def test_redis(self):
        with patch("vaulton.database.init_redis", return_value=FakeRedis()):
            store = create_session_store({"SESSION_BACKEND": "redis"})

        assert isinstance(store, RedisSessionStore)

    def test_redis_unreachable(self):
        with patch("vaulton.database.init_redis", return_value=None):
            with pytest.raises(ValueError, match="unreachable"):
                create_session_store({"SESSION_BACKEND": "redis"})

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_session_store({"SESSION_BACKEND": "sqlite"})
