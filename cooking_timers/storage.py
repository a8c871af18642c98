"""
storage.py
──────────
Durable key → record mapping backed by one JSON file per timer.

  - Atomic file writes via os.replace() (rename-over-old-file trick), each
    from its own temp file
  - One lock per (directory, timer id): a threading.RLock for the threads of
    this process nested with an exclusive OS file lock (fcntl.flock /
    msvcrt.locking) on `.locks/<id>.lock`, so front ends running in separate
    processes serialize read-modify-write on the same record while different
    records proceed in parallel
  - Change subscription: callbacks run after every committed write
"""

import os
import re
import json
import errno
import logging
import tempfile
import threading
import weakref
from contextlib import suppress
from typing import Callable, List, Optional

from pydantic import ValidationError

from .errors import StorageFailure, TimerNotFound
from .models import TimerRecord

if os.name == "nt":
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_LOCK_DIR = ".locks"


# ── OS-level record locks ─────────────────────────────────────────────────────

if os.name == "nt":
    def _os_lock(fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        while True:
            try:
                msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
                return
            except OSError as e:
                # LK_LOCK gives up after ~10 s; keep waiting like flock does
                if e.errno != errno.EDEADLOCK:
                    raise

    def _os_unlock(fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
else:
    def _os_lock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX)

    def _os_unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


def _lock_file(path: str) -> int:
    """Open and exclusively lock `path`; returns the locked descriptor."""
    while True:
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            _os_lock(fd)
        except BaseException:
            os.close(fd)
            raise
        # A previous holder may have unlinked the file while we waited
        try:
            if os.path.samestat(os.fstat(fd), os.stat(path)):
                return fd
        except FileNotFoundError:
            pass
        _os_unlock(fd)
        os.close(fd)


class _RecordLock:
    """Re-entrant lock on one record, exclusive across threads and processes."""

    def __init__(self, root: str, timer_id: str):
        self._record_path = os.path.join(root, f"{timer_id}.json")
        self._lock_path = os.path.join(root, _LOCK_DIR, f"{timer_id}.lock")
        self._thread_lock = threading.RLock()
        self._depth = 0
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        self._thread_lock.acquire()
        if self._depth == 0:
            try:
                self._fd = _lock_file(self._lock_path)
            except OSError as e:
                self._thread_lock.release()
                raise StorageFailure(f"Could not lock {self._lock_path}: {e}") from e
        self._depth += 1

    def release(self) -> None:
        try:
            self._depth -= 1
            if self._depth == 0:
                fd, self._fd = self._fd, None
                # Lock files of records that no longer exist are removed while
                # still held; waiters on the old file notice and reopen.
                if os.name != "nt" and not os.path.exists(self._record_path):
                    with suppress(FileNotFoundError):
                        os.remove(self._lock_path)
                _os_unlock(fd)
                os.close(fd)
        finally:
            self._thread_lock.release()

    def __enter__(self) -> "_RecordLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


# Guards the per-key lock registry; entries vanish once no caller holds them
_registry_lock = threading.Lock()
_key_locks: "weakref.WeakValueDictionary[tuple, _RecordLock]" = weakref.WeakValueDictionary()


def _key_lock(root: str, timer_id: str) -> _RecordLock:
    with _registry_lock:
        lock = _key_locks.get((root, timer_id))
        if lock is None:
            lock = _RecordLock(root, timer_id)
            _key_locks[(root, timer_id)] = lock
        return lock


def _write(root: str, path: str, data: dict) -> None:
    """Atomic write: write to a unique tmp file then rename (os.replace)."""
    try:
        fd, tmp = tempfile.mkstemp(dir=root, prefix=".", suffix=".tmp")
    except OSError as e:
        raise StorageFailure(f"Could not write {path}: {e}") from e
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except OSError as e:
        with suppress(OSError):
            os.remove(tmp)
        raise StorageFailure(f"Could not write {path}: {e}") from e


def _read(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


ChangeCallback = Callable[[str, str], None]


class TimerStore:
    """
    Directory of `<id>.json` records.

    Every read goes to disk, so a store never serves a cached copy that
    another writer has since replaced.
    """

    def __init__(self, data_dir: str):
        self._root = os.path.abspath(os.path.join(data_dir, "timers"))
        self._subscribers: List[ChangeCallback] = []
        self._sub_lock = threading.Lock()
        try:
            os.makedirs(os.path.join(self._root, _LOCK_DIR), exist_ok=True)
        except OSError as e:
            raise StorageFailure(f"Could not create {self._root}: {e}") from e

    @property
    def root(self) -> str:
        return self._root

    def locked(self, timer_id: str) -> _RecordLock:
        """Lock serializing every read-modify-write on `timer_id`, across processes too."""
        if not _SAFE_ID.match(timer_id):
            raise TimerNotFound(timer_id)
        return _key_lock(self._root, timer_id)

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get(self, timer_id: str) -> TimerRecord:
        path = self._path(timer_id)
        with self.locked(timer_id):
            try:
                raw = _read(path)
            except FileNotFoundError:
                raise TimerNotFound(timer_id) from None
            except (OSError, json.JSONDecodeError) as e:
                raise StorageFailure(f"Could not read timer {timer_id}: {e}") from e
        try:
            return TimerRecord.model_validate(raw)
        except ValidationError as e:
            raise StorageFailure(f"Timer {timer_id} is not a valid record: {e}") from e

    def ids(self) -> List[str]:
        try:
            names = os.listdir(self._root)
        except OSError as e:
            raise StorageFailure(f"Could not list {self._root}: {e}") from e
        return [n[:-5] for n in names if n.endswith(".json")]

    def list(self) -> List[TimerRecord]:
        records = []
        for timer_id in self.ids():
            try:
                records.append(self.get(timer_id))
            except TimerNotFound:
                continue    # deleted between listdir and read
            except StorageFailure as e:
                logger.warning(f"Skipping unreadable timer record {timer_id}: {e}")
        return records

    def __contains__(self, timer_id: str) -> bool:
        return _SAFE_ID.match(timer_id) is not None and os.path.exists(self._path(timer_id))

    # ── Writes ────────────────────────────────────────────────────────────────

    def insert(self, record: TimerRecord) -> TimerRecord:
        with self.locked(record.id):
            if record.id in self:
                raise StorageFailure(f"Timer {record.id} already exists")
            _write(self._root, self._path(record.id), record.model_dump(mode="json"))
        self._notify("created", record.id)
        return record

    def put(self, record: TimerRecord) -> TimerRecord:
        """Replace an existing record as one atomic write."""
        with self.locked(record.id):
            if record.id not in self:
                raise TimerNotFound(record.id)
            _write(self._root, self._path(record.id), record.model_dump(mode="json"))
        self._notify("updated", record.id)
        return record

    def delete(self, timer_id: str) -> None:
        path = self._path(timer_id)
        with self.locked(timer_id):
            try:
                os.remove(path)
            except FileNotFoundError:
                raise TimerNotFound(timer_id) from None
            except OSError as e:
                raise StorageFailure(f"Could not delete timer {timer_id}: {e}") from e
        self._notify("deleted", timer_id)

    # ── Change subscription ───────────────────────────────────────────────────

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call `callback(event, timer_id)` after each commit; returns an unsubscribe."""
        with self._sub_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._sub_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: str, timer_id: str) -> None:
        with self._sub_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event, timer_id)
            except Exception:
                logger.exception(f"Store subscriber failed on {event} {timer_id}")

    def _path(self, timer_id: str) -> str:
        if not _SAFE_ID.match(timer_id):
            raise TimerNotFound(timer_id)
        return os.path.join(self._root, f"{timer_id}.json")
