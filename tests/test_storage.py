import gc
import os
import subprocess
import sys
import time
from pathlib import Path

import pytest

from cooking_timers import storage
from cooking_timers.errors import StorageFailure, TimerNotFound
from cooking_timers.models import TimerRecord
from cooking_timers.storage import TimerStore
from cooking_timers.timer_engine import TimerEngine


def test_one_json_file_per_record(store: TimerStore) -> None:
    record = store.insert(TimerRecord(name="Rice", duration_seconds=900))
    files = [n for n in os.listdir(store.root) if not n.startswith(".")]
    assert files == [f"{record.id}.json"]
    assert store.get(record.id) == record


def test_unknown_and_unsafe_ids_are_not_found(store: TimerStore) -> None:
    with pytest.raises(TimerNotFound):
        store.get("missing")
    with pytest.raises(TimerNotFound):
        store.get("../escape")
    with pytest.raises(TimerNotFound):
        store.put(TimerRecord(id="missing", duration_seconds=5))
    with pytest.raises(TimerNotFound):
        store.delete("missing")
    assert store.ids() == []


def test_insert_refuses_existing_id(store: TimerStore) -> None:
    record = store.insert(TimerRecord(duration_seconds=5))
    with pytest.raises(StorageFailure):
        store.insert(record)


def test_corrupt_record_is_skipped_by_list_and_fails_get(store: TimerStore) -> None:
    good = store.insert(TimerRecord(duration_seconds=5))
    with open(os.path.join(store.root, "broken.json"), "w", encoding="utf-8") as f:
        f.write("{not json")

    assert [r.id for r in store.list()] == [good.id]
    with pytest.raises(StorageFailure):
        store.get("broken")
    assert os.path.exists(os.path.join(store.root, "broken.json"))


def test_failed_write_leaves_previous_record(store: TimerStore, monkeypatch: pytest.MonkeyPatch) -> None:
    record = store.insert(TimerRecord(name="Stock", duration_seconds=3600))

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(storage.os, "replace", failing_replace)
    with pytest.raises(StorageFailure):
        store.put(record.replace(name="Broth"))

    monkeypatch.undo()
    assert store.get(record.id).name == "Stock"


def test_subscribers_see_each_commit(store: TimerStore) -> None:
    events = []
    unsubscribe = store.subscribe(lambda event, timer_id: events.append((event, timer_id)))

    record = store.insert(TimerRecord(duration_seconds=5))
    store.put(record.replace(name="Tea"))
    store.delete(record.id)
    unsubscribe()
    store.insert(TimerRecord(duration_seconds=5))

    assert events == [("created", record.id), ("updated", record.id), ("deleted", record.id)]


def test_failing_subscriber_does_not_undo_write(store: TimerStore) -> None:
    def boom(event, timer_id):
        raise RuntimeError("listener bug")

    store.subscribe(boom)
    record = store.insert(TimerRecord(duration_seconds=5))
    assert record.id in store


def test_stores_on_same_directory_share_record_locks(tmp_path) -> None:
    first = TimerStore(str(tmp_path))
    second = TimerStore(str(tmp_path))
    other = TimerStore(str(tmp_path / "elsewhere"))

    assert first.locked("abc") is second.locked("abc")
    assert first.locked("abc") is not first.locked("xyz")
    assert first.locked("abc") is not other.locked("abc")


_HOLD_AND_WRITE = """
import sys, time
from cooking_timers.storage import TimerStore

store = TimerStore(sys.argv[1])
with store.locked(sys.argv[2]):
    record = store.get(sys.argv[2])
    print("locked", flush=True)
    time.sleep(1.0)
    store.put(record.replace(remaining_seconds=10))
"""


def test_record_lock_serializes_separate_processes(tmp_path, scheduler, clock) -> None:
    engine = TimerEngine(TimerStore(str(tmp_path)), scheduler, now=clock)
    timer_id = engine.create(name="Brisket", duration_seconds=300).id
    engine.start(timer_id)

    repo_root = str(Path(__file__).resolve().parents[1])
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(p for p in (repo_root, env.get("PYTHONPATH")) if p)
    other_front_end = subprocess.Popen(
        [sys.executable, "-c", _HOLD_AND_WRITE, str(tmp_path), timer_id],
        stdout=subprocess.PIPE,
        env=env,
        text=True,
    )
    try:
        assert other_front_end.stdout.readline().strip() == "locked"

        began = time.monotonic()
        engine.reset(timer_id)
        waited = time.monotonic() - began
    finally:
        other_front_end.wait(timeout=30)
        other_front_end.stdout.close()

    assert other_front_end.returncode == 0
    assert waited >= 0.5
    stored = engine.store.get(timer_id)
    assert (stored.remaining_seconds, stored.is_running) == (300, False)


def test_writes_leave_no_temp_files(store: TimerStore) -> None:
    record = store.insert(TimerRecord(duration_seconds=60))
    for name in ("a", "b", "c"):
        store.put(record.replace(name=name))
    assert [n for n in os.listdir(store.root) if n.endswith(".tmp")] == []


def test_lock_registry_and_lock_files_do_not_grow(store: TimerStore) -> None:
    record = store.insert(TimerRecord(duration_seconds=60))
    store.delete(record.id)
    with pytest.raises(TimerNotFound):
        store.get("never-created")

    gc.collect()
    assert (store.root, record.id) not in storage._key_locks
    if os.name != "nt":   # open lock files cannot be unlinked on Windows
        assert os.listdir(os.path.join(store.root, ".locks")) == []
