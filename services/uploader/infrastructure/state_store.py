from __future__ import annotations

import copy
import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping
from urllib.parse import quote, unquote

LOGGER = logging.getLogger(__name__)

LOCK_FILE = ".lock"


class JsonFileStore:
    """One JSON file per key in a state directory.

    Writes go through a temporary file and ``os.replace`` so a crash never
    leaves half a record behind. ``transaction`` takes an exclusive lock file
    that other processes sharing the directory also honour.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        lock_timeout_seconds: float = 10.0,
        stale_lock_seconds: float = 60.0,
    ) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock_timeout = lock_timeout_seconds
        self._stale_lock = stale_lock_seconds
        self._thread_lock = threading.RLock()

    def _path(self, key: str) -> Path:
        return self._dir / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Mapping[str, Any] | None:
        path = self._path(key)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable state file %s: %s", path.name, exc)
            return None

    def set(self, key: str, value: Mapping[str, Any]) -> None:
        path = self._path(key)
        partial = path.with_name(f"{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        partial.write_text(json.dumps(value), encoding="utf-8")
        os.replace(partial, path)

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def keys(self, prefix: str = "") -> list[str]:
        found = []
        for path in self._dir.glob("*.json"):
            key = unquote(path.name[: -len(".json")])
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._thread_lock:
            lock = self._dir / LOCK_FILE
            deadline = time.monotonic() + self._lock_timeout
            while True:
                try:
                    fd = os.open(lock, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                    break
                except FileExistsError:
                    self._break_stale_lock(lock)
                    if time.monotonic() >= deadline:
                        raise TimeoutError(f"Could not lock {self._dir}")
                    time.sleep(0.01)
            try:
                os.write(fd, str(os.getpid()).encode("ascii"))
                yield
            finally:
                os.close(fd)
                try:
                    lock.unlink()
                except FileNotFoundError:
                    pass

    def _break_stale_lock(self, lock: Path) -> None:
        try:
            age = time.time() - lock.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self._stale_lock:
            LOGGER.warning("Removing stale lock %s (%.0fs old)", lock, age)
            try:
                lock.unlink()
            except FileNotFoundError:
                pass


class InMemoryStore:
    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Mapping[str, Any] | None:
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Mapping[str, Any]) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(dict(value))

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield
