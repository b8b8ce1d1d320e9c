"""Key-value persistence for the trade state record."""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterator

import redis
from redis.exceptions import RedisError

from btc_alert.exceptions import ConfigError, StateStoreError
from btc_alert.risk.cooldown import TradeState

logger = logging.getLogger("state_store")


class StateStore(ABC):
    """get/set contract plus a lock scoped to one key."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @abstractmethod
    def get(self, key: str) -> TradeState | None:
        """Return the stored state, or None when absent."""

    @abstractmethod
    def set(self, key: str, state: TradeState) -> None:
        """Persist the state, raising StateStoreError on failure."""

    @contextlib.contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Serialize read-modify-write on `key` within this process."""
        with self._locks_guard:
            key_lock = self._locks.setdefault(key, threading.Lock())
        with key_lock:
            yield


class InMemoryStateStore(StateStore):
    """Process-local store, for tests and dry runs."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> TradeState | None:
        raw = self._data.get(key)
        return TradeState.from_dict(raw) if raw is not None else None

    def set(self, key: str, state: TradeState) -> None:
        self._data[key] = state.to_dict()


class JsonFileStateStore(StateStore):
    """Stores every key in one JSON document on disk.

    Writers in other processes are excluded with an flock on `<path>.lock`,
    held across the whole read-modify-write.
    """

    def __init__(self, path: str | Path, lock_timeout_seconds: float = 10.0) -> None:
        super().__init__()
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout_seconds = lock_timeout_seconds

    @contextlib.contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Thread lock on `key`, then an exclusive file lock shared with other processes."""
        with super().lock(key):
            try:
                self.lock_path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
            except OSError as exc:
                raise StateStoreError(f"cannot open lock file {self.lock_path}: {exc}") from exc
            try:
                deadline = time.monotonic() + self.lock_timeout_seconds
                while True:
                    try:
                        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        if time.monotonic() >= deadline:
                            raise StateStoreError(f"timed out waiting for lock on {key}") from None
                        time.sleep(0.05)
                    except OSError as exc:
                        raise StateStoreError(f"cannot lock {self.lock_path}: {exc}") from exc
                try:
                    yield
                finally:
                    fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StateStoreError(f"cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StateStoreError(f"unexpected content in {self.path}")
        return data

    def get(self, key: str) -> TradeState | None:
        raw = self._load().get(key)
        if raw is None:
            return None
        try:
            return TradeState.from_dict(raw)
        except (TypeError, ValueError, AttributeError) as exc:
            raise StateStoreError(f"malformed state under {key}: {exc}") from exc

    def set(self, key: str, state: TradeState) -> None:
        data = self._load()
        data[key] = state.to_dict()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StateStoreError(f"cannot write {self.path}: {exc}") from exc


class RedisStateStore(StateStore):
    """Redis-backed store; the lock is shared by every process using the same server."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        lock_timeout_seconds: float = 10.0,
        socket_timeout: float = 5.0,
        client: redis.Redis | None = None,
    ) -> None:
        super().__init__()
        self.lock_timeout_seconds = lock_timeout_seconds
        self._client = client or redis.Redis.from_url(
            url, decode_responses=True, socket_timeout=socket_timeout
        )

    def get(self, key: str) -> TradeState | None:
        try:
            raw = self._client.get(key)
        except RedisError as exc:
            raise StateStoreError(f"redis get {key} failed: {exc}") from exc
        if raw is None:
            return None
        try:
            return TradeState.from_dict(json.loads(raw))
        except (TypeError, ValueError, AttributeError) as exc:
            raise StateStoreError(f"malformed state under {key}: {exc}") from exc

    def set(self, key: str, state: TradeState) -> None:
        try:
            self._client.set(key, json.dumps(state.to_dict()))
        except RedisError as exc:
            raise StateStoreError(f"redis set {key} failed: {exc}") from exc

    @contextlib.contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Distributed lock on `<key>:lock`, released even if the body fails."""
        lock = self._client.lock(
            f"{key}:lock",
            timeout=self.lock_timeout_seconds,
            blocking_timeout=self.lock_timeout_seconds,
        )
        try:
            acquired = lock.acquire()
        except RedisError as exc:
            raise StateStoreError(f"redis lock {key} failed: {exc}") from exc
        if not acquired:
            raise StateStoreError(f"timed out waiting for lock on {key}")
        try:
            yield
        finally:
            try:
                lock.release()
            except RedisError as exc:
                logger.warning("lock release failed key=%s error=%s", key, exc)


def build_state_store(cfg: dict[str, Any]) -> StateStore:
    """Create the store named by the `state` config section."""
    backend = cfg.get("backend", "json")
    if backend == "memory":
        return InMemoryStateStore()
    if backend == "json":
        return JsonFileStateStore(
            cfg.get("path", "state/trade_state.json"),
            lock_timeout_seconds=float(cfg.get("lock_timeout_seconds", 10)),
        )
    if backend == "redis":
        url = os.environ.get("REDIS_URL") or cfg.get("redis_url", "redis://localhost:6379/0")
        return RedisStateStore(url=url, lock_timeout_seconds=float(cfg.get("lock_timeout_seconds", 10)))
    raise ConfigError(f"unknown state backend: {backend}")
