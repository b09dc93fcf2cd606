# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Tests for full scans, single-file indexing and incremental updates.
"""

import time

from ctxindex.errors import IndexIOError
from ctxindex.indexer import Indexer, IndexState
from ctxindex.models import ChunkType
from ctxindex.storage import ChunkStore


class TestFullScan:
    def test_scan_indexes_supported_files_only(self, indexer, chunk_store):
        result = indexer.start_full_scan()

        assert result.total == 3
        assert result.indexed == 3
        assert result.failed == 0
        assert result.cancelled is False
        assert sorted(chunk_store.files()) == ["app.js", "lib/Greeter.java", "main.py"]
        assert result.chunks == chunk_store.count()
        assert indexer.state is IndexState.IDLE
        assert indexer.last_result is result

    def test_progress_is_reported_per_batch(self, indexer):
        progress = []
        indexer.start_full_scan(on_progress=lambda done, total: progress.append((done, total)))
        assert progress == [(2, 3), (3, 3)]

    def test_progress_property_tracks_active_scan(self, indexer):
        seen = []
        indexer.start_full_scan(on_progress=lambda done, total: seen.append(indexer.progress))
        assert seen == [(2, 3), (3, 3)]
        assert indexer.progress is None

    def test_max_files_caps_the_scan(self, indexer, chunk_store):
        result = indexer.start_full_scan(max_files=1)
        assert result.total == 1
        assert len(chunk_store.files()) == 1

    def test_exclude_patterns(self, indexer, chunk_store):
        indexer.start_full_scan(exclude_patterns=["lib/*"])
        assert "lib/Greeter.java" not in chunk_store.files()
        assert "main.py" in chunk_store.files()

    def test_single_flight(self, indexer):
        nested = []

        def on_progress(done, total):
            nested.append(indexer.start_full_scan())
            nested.append(indexer.start_background_scan())

        result = indexer.start_full_scan(on_progress=on_progress)
        assert result.indexed == 3
        assert all(r.skipped for r in nested[::2])
        assert nested[1::2] == [False, False]

    def test_cancellation_keeps_committed_chunks(self, indexer, chunk_store):
        def on_progress(done, total):
            indexer.cancel()

        result = indexer.start_full_scan(on_progress=on_progress)
        assert result.cancelled is True
        assert result.processed == 2
        assert len(chunk_store.files()) == 2
        assert indexer.state is IndexState.IDLE

        # A fresh scan is accepted afterwards
        assert indexer.start_full_scan().indexed == 3

    def test_cancel_without_scan(self, indexer):
        assert indexer.cancel() is False

    def test_one_bad_file_does_not_abort(self, indexer, chunk_store, monkeypatch):
        real_read = indexer._read_text

        def flaky_read(path, max_chars=None):
            if path.name == "main.py":
                raise IndexIOError("disk on fire", component="test")
            return real_read(path, max_chars)

        monkeypatch.setattr(indexer, "_read_text", flaky_read)
        result = indexer.start_full_scan()
        assert result.indexed == 2
        assert result.failed == 1
        assert "main.py" not in chunk_store.files()

    def test_background_scan(self, indexer, chunk_store):
        assert indexer.start_background_scan() is True
        assert indexer.wait(timeout=30)
        assert indexer.last_result.indexed == 3
        assert chunk_store.count() > 3

    def test_scan_writes_snapshot_once(self, temp_dir, test_repo_path):
        for n in range(10):
            (test_repo_path / f"mod_{n}.py").write_text(
                "".join(f"def f{n}_{k}():\n    return {k}\n\n\n" for k in range(12))
            )
        store = ChunkStore(temp_dir / "flush_index", flush_every=1)
        indexer = Indexer(store, [test_repo_path], batch_size=2, batch_delay=0.0, workers=2)

        result = indexer.start_full_scan()

        assert result.indexed == 13
        # flush_every=1 would otherwise write once per file
        assert store.flush_count == 1
        assert ChunkStore(temp_dir / "flush_index").load() == store.count()

    def test_cancel_during_start_delay(self, indexer, chunk_store):
        assert indexer.start_background_scan(delay=30) is True
        started = time.monotonic()
        assert indexer.cancel() is True
        assert indexer.wait(timeout=5)
        assert time.monotonic() - started < 5
        assert indexer.last_result.cancelled is True
        assert chunk_store.count() == 0
        assert indexer.state is IndexState.IDLE

    def test_multiple_roots_are_prefixed(self, temp_dir):
        first = temp_dir / "first"
        second = temp_dir / "second"
        first.mkdir()
        second.mkdir()
        (first / "a.py").write_text("def a():\n    pass\n")
        (second / "b.py").write_text("def b():\n    pass\n")
        store = ChunkStore()
        indexer = Indexer(store, [first, second], batch_delay=0.0, workers=1)

        indexer.start_full_scan()
        assert sorted(store.files()) == ["first/a.py", "second/b.py"]
        assert indexer.absolute_path("second/b.py") == (second / "b.py").resolve()


class TestIndexFile:
    def test_every_file_yields_a_chunk(self, indexer, chunk_store, test_repo_path):
        (test_repo_path / "empty.py").write_text("")
        (test_repo_path / "data.xyz").write_text("opaque data")

        assert indexer.index_file("empty.py") == 1
        assert indexer.index_file(test_repo_path / "data.xyz") == 1
        for rel in ("empty.py", "data.xyz"):
            chunks = chunk_store.list_by_file(rel)
            assert [c.chunk_type for c in chunks] == [ChunkType.OTHER]

    def test_reindexing_is_idempotent(self, indexer, chunk_store):
        indexer.index_file("main.py")
        first_ids = {c.id for c in chunk_store.list_by_file("main.py")}
        first_count = chunk_store.count()

        indexer.index_file("main.py")
        assert {c.id for c in chunk_store.list_by_file("main.py")} == first_ids
        assert chunk_store.count() == first_count

    def test_removed_function_disappears(self, indexer, chunk_store, test_repo_path):
        path = test_repo_path / "ops.js"
        path.write_text("function keep() { return 1; }\nfunction drop() { return 2; }\n")
        indexer.index_file(path)
        assert any(c.metadata.get("name") == "drop" for c in chunk_store.list_by_file("ops.js"))

        path.write_text("function keep() { return 1; }\n")
        indexer.index_file(path)
        chunks = chunk_store.list_by_file("ops.js")
        assert not any(c.metadata.get("name") == "drop" for c in chunks)
        assert not any("return 2" in c.content for c in chunks)

    def test_missing_file_is_skipped(self, indexer, chunk_store):
        assert indexer.index_file("does_not_exist.py") == 0
        assert chunk_store.count() == 0

    def test_file_outside_roots_is_ignored(self, indexer, chunk_store, temp_dir):
        outside = temp_dir / "outside.py"
        outside.write_text("x = 1\n")
        assert indexer.index_file(outside) == 0
        assert chunk_store.count() == 0

    def test_remove_file(self, indexer, chunk_store):
        indexer.index_file("main.py")
        assert indexer.remove_file("main.py") > 0
        assert chunk_store.list_by_file("main.py") == []

    def test_clear(self, indexer, chunk_store):
        indexer.start_full_scan()
        indexer.clear()
        assert chunk_store.count() == 0


class TestOnFileChanged:
    def test_changed_file_is_reindexed(self, indexer, chunk_store, test_repo_path):
        path = test_repo_path / "main.py"
        indexer.on_file_changed(path)
        before = {c.metadata.get("name") for c in chunk_store.list_by_file("main.py")}
        assert "hello_world" in before

        path.write_text("def goodbye():\n    return 0\n")
        indexer.on_file_changed(path)
        after = {c.metadata.get("name") for c in chunk_store.list_by_file("main.py")}
        assert "goodbye" in after
        assert "hello_world" not in after

    def test_oversized_file_is_skipped_without_mutation(self, chunk_store, test_repo_path, monkeypatch):
        indexer = Indexer(chunk_store, [test_repo_path], max_file_chars=50)
        big = test_repo_path / "big.py"
        big.write_text("x = 1\n" * 100)

        calls = []
        monkeypatch.setattr(chunk_store, "replace_file", lambda *a, **k: calls.append(a))
        monkeypatch.setattr(chunk_store, "delete_by_file", lambda *a, **k: calls.append(a))
        monkeypatch.setattr(chunk_store, "put", lambda *a, **k: calls.append(a))

        indexer.on_file_changed(big)
        assert calls == []
        assert chunk_store.count() == 0

    def test_non_indexable_paths_are_ignored(self, indexer, chunk_store, test_repo_path, temp_dir):
        indexer.on_file_changed(test_repo_path / "notes.txt")
        indexer.on_file_changed(test_repo_path / "node_modules" / "dep" / "index.js")
        indexer.on_file_changed(temp_dir / "elsewhere.py")
        indexer.on_file_changed(test_repo_path / "gone.py")
        assert chunk_store.count() == 0

    def test_errors_are_not_raised(self, indexer, chunk_store, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(chunk_store, "replace_file", explode)
        indexer.on_file_changed("main.py")
        assert chunk_store.count() == 0

    def test_changes_during_full_scan_leave_one_version(self, chunk_store, test_repo_path):
        for n in range(40):
            (test_repo_path / f"filler_{n}.py").write_text(f"def filler_{n}():\n    return {n}\n")
        indexer = Indexer(chunk_store, [test_repo_path], batch_size=2, batch_delay=0.001, workers=2)
        target = test_repo_path / "main.py"

        def version(i):
            return f"def version_{i}():\n    return {i}\n\n\ndef shared():\n    return 0\n"

        assert indexer.start_background_scan() is True
        last = 0
        for i in range(30):
            last = i
            target.write_text(version(i))
            indexer.on_file_changed(target)
        assert indexer.wait(timeout=30)

        chunks = chunk_store.list_by_file("main.py")
        whole = [c for c in chunks if c.chunk_type == ChunkType.OTHER]
        assert len(whole) == 1
        assert whole[0].content == version(last)
        names = sorted(c.metadata["name"] for c in chunks if c.chunk_type == ChunkType.FUNCTION)
        assert names == ["shared", f"version_{last}"]
