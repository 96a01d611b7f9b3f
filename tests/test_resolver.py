import os
import time
import pytest

from dupewatch.config import DuplicateConfig
from dupewatch.dedupe.resolver import DuplicateResolver, SweepScheduler

SIZE = 10 * 1024

@pytest.fixture
def on_disk(tmp_path, store, make_record):
    """Writes files with identical content and indexes them; returns the saved records."""
    def _make(names, size=SIZE, file_hash="h1", content=None):
        records = []
        for i, name in enumerate(names):
            p = tmp_path / name
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(content if content is not None else b"z" * size)
            records.append(make_record(p, size=size, mtime=1000.0 + i, file_hash=file_hash))
        store.batch_upsert(records)
        return records
    return _make

def test_sweep_keeps_oldest_and_frees_space(tmp_path, store, on_disk):
    a, b, c = on_disk(["a.bin", "b.bin", "c.bin"])
    resolver = DuplicateResolver(store, DuplicateConfig(strategy="KEEP_OLDEST"))

    result = resolver.sweep()
    assert result.groups == 1
    assert result.duplicates_found == 2
    assert result.deleted_count == 2
    assert result.space_freed == 2 * SIZE

    assert a.path.exists()
    assert not b.path.exists()
    assert not c.path.exists()
    assert [r.name for r in store.find_by_hash("h1")] == ["a.bin"]

def test_second_sweep_is_a_no_op(store, on_disk):
    on_disk(["a.bin", "b.bin"])
    resolver = DuplicateResolver(store)
    assert resolver.sweep().deleted_count == 1

    again = resolver.sweep()
    assert again.groups == 0
    assert again.deleted_count == 0
    assert store.count() == 1

def test_keep_newest(store, on_disk):
    a, b = on_disk(["a.bin", "b.bin"])
    DuplicateResolver(store, DuplicateConfig(strategy="KEEP_NEWEST")).sweep()
    assert b.path.exists()
    assert not a.path.exists()

def test_distinct_hashes_are_left_alone(store, on_disk):
    on_disk(["a.bin"], file_hash="h1")
    on_disk(["b.bin"], file_hash="h2")
    result = DuplicateResolver(store).sweep()
    assert result.groups == 0
    assert store.count() == 2

def test_min_size_boundary_in_check_one(store, on_disk):
    small = on_disk(["s1.bin", "s2.bin"], size=1023, file_hash="small")
    exact = on_disk(["e1.bin", "e2.bin"], size=1024, file_hash="exact")
    resolver = DuplicateResolver(store, DuplicateConfig(auto_delete=False))

    outcome = resolver.check_one(small[1])
    assert not outcome.duplicates_found
    assert "too small" in outcome.message

    outcome = resolver.check_one(exact[1])
    assert outcome.duplicates_found
    assert outcome.duplicate_count == 1
    assert outcome.deleted_count == 0

def test_protected_extension_is_never_touched(store, on_disk):
    exe, copy = on_disk(["app.exe", "app_copy.bin"])
    resolver = DuplicateResolver(store)

    outcome = resolver.check_one(exe)
    assert not outcome.duplicates_found
    assert outcome.message == "Protected file extension"

    result = resolver.sweep()
    assert result.groups == 0
    assert exe.path.exists()
    assert copy.path.exists()

def test_protected_member_is_left_out_of_group(store, on_disk):
    exe, b, c = on_disk(["app.EXE", "b.bin", "c.bin"])
    result = DuplicateResolver(store).sweep()
    assert result.deleted_count == 1
    assert exe.path.exists()
    assert b.path.exists()
    assert not c.path.exists()

def test_check_one_resolves_group(store, on_disk):
    a, b, c = on_disk(["a.bin", "b.bin", "c.bin"])
    resolver = DuplicateResolver(store)

    outcome = resolver.check_one(c)
    assert outcome.duplicates_found
    assert outcome.duplicate_count == 2
    assert outcome.deleted_count == 2
    assert outcome.space_freed == 2 * SIZE
    assert a.path.exists()
    assert store.count() == 1

def test_check_one_without_hash(store, make_record, tmp_path):
    rec = make_record(tmp_path / "x.bin", file_hash=None)
    assert DuplicateResolver(store).check_one(rec).message == "File has no hash"

def test_missing_file_only_loses_its_record(store, on_disk):
    a, b = on_disk(["a.bin", "b.bin"])
    os.remove(b.path)

    result = DuplicateResolver(store).sweep()
    assert result.deleted_count == 0
    assert result.space_freed == 0
    assert a.path.exists()
    assert [r.name for r in store.find_by_hash("h1")] == ["a.bin"]

def test_same_path_rows_never_delete_the_file(tmp_path, store, make_record):
    p = tmp_path / "only.bin"
    p.write_bytes(b"z" * SIZE)
    store.batch_upsert([
        make_record(p, size=SIZE, mtime=1.0, id=1),
        make_record(p, size=SIZE, mtime=2.0, id=2),
    ])

    result = DuplicateResolver(store).sweep()
    assert result.deleted_count == 0
    assert p.exists()
    assert [r.id for r in store.find_by_path(str(tmp_path), "only.bin")] == [2]

def test_auto_delete_off_only_reports(store, on_disk):
    records = on_disk(["a.bin", "b.bin", "c.bin"])
    resolver = DuplicateResolver(store, DuplicateConfig(auto_delete=False))

    result = resolver.sweep()
    assert result.groups == 1
    assert result.duplicates_found == 2
    assert result.deleted_count == 0
    assert all(r.path.exists() for r in records)
    assert store.count() == 3

def test_statistics(store, on_disk):
    on_disk(["a.bin", "b.bin", "c.bin"])
    resolver = DuplicateResolver(store)
    before = resolver.statistics()
    assert before.duplicate_hash_groups == 1
    assert before.total_files == 3

    resolver.sweep()
    after = resolver.statistics()
    assert after.duplicates_detected == 2
    assert after.duplicates_deleted == 2
    assert after.space_reclaimed == 2 * SIZE
    assert after.total_files == 1
    assert after.auto_delete_enabled

def test_scheduler_runs_sweeps(store, on_disk):
    a, b = on_disk(["a.bin", "b.bin"])
    resolver = DuplicateResolver(store)
    scheduler = SweepScheduler(resolver, delay=0.05)
    scheduler.start()
    try:
        for _ in range(100):
            if not b.path.exists():
                break
            time.sleep(0.05)
    finally:
        scheduler.stop(timeout=5)
    assert not b.path.exists()
    assert a.path.exists()

def test_missing_keeper_is_dropped_and_reselected(store, on_disk):
    a, b, c = on_disk(["a.bin", "b.bin", "c.bin"])
    os.remove(a.path)

    result = DuplicateResolver(store, DuplicateConfig(strategy="KEEP_OLDEST")).sweep()
    assert result.deleted_count == 1
    assert b.path.exists()
    assert not c.path.exists()
    assert [r.name for r in store.find_by_hash("h1")] == ["b.bin"]

def test_missing_keeper_never_costs_the_last_copy(store, on_disk):
    a, b = on_disk(["a.bin", "b.bin"])
    os.remove(a.path)

    result = DuplicateResolver(store).sweep()
    assert result.deleted_count == 0
    assert b.path.exists()
    assert [r.name for r in store.find_by_hash("h1")] == ["b.bin"]

def test_check_one_on_replaced_record(tmp_path, store, make_record):
    """Two ingests of one path in a single batch leave exactly one row."""
    p = tmp_path / "new.bin"
    p.write_bytes(b"z" * SIZE)
    first = make_record(p, size=SIZE)
    second = make_record(p, size=SIZE)
    store.batch_upsert([first, second])

    resolver = DuplicateResolver(store)
    for rec in (first, second):
        outcome = resolver.check_one(rec)
        assert not outcome.duplicates_found

    assert first.id != second.id
    assert [r.id for r in store.find_by_path(str(tmp_path), "new.bin")] == [second.id]
    assert p.exists()
    assert resolver.statistics().duplicates_detected == 0

def test_check_one_ignores_same_path_rows(tmp_path, store, make_record):
    p = tmp_path / "only.bin"
    p.write_bytes(b"z" * SIZE)
    store.batch_upsert([make_record(p, size=SIZE, id=1), make_record(p, size=SIZE, id=2)])
    latest = store.find_by_id(2)

    outcome = DuplicateResolver(store).check_one(latest)
    assert not outcome.duplicates_found
    assert p.exists()
    assert store.find_by_id(2) is not None
