"""Session persistence backends.

A store holds at most one session record under a fixed storage key. The
record is a flat JSON object with the same keys the browser SDK writes to
``localStorage``, so a store is only ever written by explicit signup, login
and logout calls, never by the transfer flow.

Backends:

* ``MemorySessionStore``: per-instance dictionary, for tests and short-lived
  processes
* ``FileSessionStore``: JSON file on disk, the CLI/desktop equivalent of
  ``localStorage``
* ``RedisSessionStore``: shared Redis key, for server-side integrations
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import redis

from vaulton.config import DEFAULT_STORAGE_KEY
from vaulton.errors import InvalidSession
from vaulton.models import Session

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Persist, restore and clear the single logged-in identity."""

    def __init__(self, storage_key: str = DEFAULT_STORAGE_KEY):
        self.storage_key = storage_key

    @abstractmethod
    def _read(self) -> Optional[str]:
        """Return the raw stored record or None."""

    @abstractmethod
    def _write(self, raw: str) -> None:
        """Replace the stored record."""

    @abstractmethod
    def _delete(self) -> None:
        """Remove the stored record if present."""

    def save(self, session: Session) -> None:
        """
        Persist ``session``, overwriting any existing one.

        Raises:
            InvalidSession: user id or smart account id is empty
        """
        if not session.user_id:
            raise InvalidSession("session userId is required")
        if not session.smart_account_id:
            raise InvalidSession("session smartAccountId is required")
        self._write(json.dumps(session.to_dict()))

    def load(self) -> Optional[Session]:
        """Return the saved session, or None if absent or unreadable."""
        try:
            raw = self._read()
        except (OSError, redis.RedisError) as e:
            logger.warning(f"Could not read session from {type(self).__name__}: {e}")
            return None
        if not raw:
            return None

        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding corrupt session record under {self.storage_key!r}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Discarding non-object session record under {self.storage_key!r}")
            return None
        return Session.from_dict(data)

    def clear(self) -> None:
        """Remove the saved session. Safe to call when nothing is saved."""
        self._delete()

    def is_active(self) -> bool:
        session = self.load()
        return session is not None and session.is_complete


class MemorySessionStore(SessionStore):
    """In-process store. Records are kept serialized so reads never alias."""

    def __init__(self, storage_key: str = DEFAULT_STORAGE_KEY):
        super().__init__(storage_key)
        self._records: Dict[str, str] = {}

    def _read(self) -> Optional[str]:
        return self._records.get(self.storage_key)

    def _write(self, raw: str) -> None:
        self._records[self.storage_key] = raw

    def _delete(self) -> None:
        self._records.pop(self.storage_key, None)


class FileSessionStore(SessionStore):
    """
    JSON file store.

    The file holds a ``{storage_key: record}`` object so several keys can share
    one file. Writes go through a temp file and ``os.replace``; a crash never
    leaves a half-written record behind.
    """

    def __init__(self, path: Any, storage_key: str = DEFAULT_STORAGE_KEY):
        super().__init__(storage_key)
        self.path = Path(path).expanduser()

    def _read_all(self) -> Dict[str, Any]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except UnicodeDecodeError:
            logger.warning(f"Session file {self.path} is not valid UTF-8")
            return {}
        try:
            data = json.loads(text)
        except ValueError:
            logger.warning(f"Session file {self.path} is corrupt")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Mapping[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(dict(data), fh)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _read(self) -> Optional[str]:
        value = self._read_all().get(self.storage_key)
        if value is None:
            return None
        # Stored as a JSON string, like localStorage.setItem(key, JSON.stringify(...))
        return value if isinstance(value, str) else json.dumps(value)

    def _write(self, raw: str) -> None:
        data = self._read_all()
        data[self.storage_key] = raw
        self._write_all(data)

    def _delete(self) -> None:
        data = self._read_all()
        if self.storage_key in data:
            data.pop(self.storage_key)
            self._write_all(data)


class RedisSessionStore(SessionStore):
    """Redis-backed store; the record lives under ``storage_key``."""

    def __init__(self, client: redis.Redis, storage_key: str = DEFAULT_STORAGE_KEY, ttl: Optional[int] = None):
        super().__init__(storage_key)
        self.client = client
        self.ttl = ttl

    def _read(self) -> Optional[str]:
        value = self.client.get(self.storage_key)
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        return value

    def _write(self, raw: str) -> None:
        if self.ttl:
            self.client.set(self.storage_key, raw, ex=self.ttl)
        else:
            self.client.set(self.storage_key, raw)

    def _delete(self) -> None:
        self.client.delete(self.storage_key)


def create_session_store(cfg: Mapping[str, Any]) -> SessionStore:
    """Build the store selected by ``SESSION_BACKEND``."""
    backend = str(cfg.get("SESSION_BACKEND", "file")).lower()
    storage_key = cfg.get("VAULTON_STORAGE_KEY") or DEFAULT_STORAGE_KEY

    if backend == "memory":
        return MemorySessionStore(storage_key)
    if backend == "file":
        return FileSessionStore(cfg.get("SESSION_FILE") or "~/.vaulton/session.json", storage_key)
    if backend == "redis":
        from vaulton.database import init_redis

        client = init_redis(cfg)
        if client is None:
            raise ValueError("SESSION_BACKEND=redis but Redis is unreachable")
        return RedisSessionStore(client, storage_key)

    raise ValueError(f"Unknown SESSION_BACKEND {backend!r}")
