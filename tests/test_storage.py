"""Tests for storage.py — JSONL reads, quarantine, atomic writes, per-path serialization."""
import asyncio
import json
import os

import pytest

from assistant.storage import JsonlStore


@pytest.fixture
def store():
    return JsonlStore()


class TestRead:
    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, store, tmp_path):
        assert await store.read(str(tmp_path / "nope.jsonl")) == []

    @pytest.mark.asyncio
    async def test_corrupt_lines_skipped_and_quarantined(self, store, tmp_path):
        path = tmp_path / "memory.jsonl"
        path.write_text('{"a": 1}\n{broken\n\n[1, 2]\n{"a": 2}\n')

        records = await store.read(str(path))

        assert records == [{"a": 1}, {"a": 2}]
        quarantined = (tmp_path / "memory.jsonl.corrupt").read_text().splitlines()
        assert quarantined == ["{broken", "[1, 2]"]
        # Bad lines are removed from the live file so they are quarantined once.
        assert path.read_text() == '{"a": 1}\n{"a": 2}\n'

    @pytest.mark.asyncio
    async def test_clean_file_not_rewritten(self, store, tmp_path):
        path = tmp_path / "tasks.jsonl"
        path.write_text('{"id": 1}\n')
        mtime = os.stat(path).st_mtime_ns
        await store.read(str(path))
        assert os.stat(path).st_mtime_ns == mtime
        assert not (tmp_path / "tasks.jsonl.corrupt").exists()


class TestWrite:
    @pytest.mark.asyncio
    async def test_append_creates_parents(self, store, tmp_path):
        path = tmp_path / "deep" / "dir" / "audit.jsonl"
        await store.append(str(path), {"n": 1})
        await store.append(str(path), {"n": 2, "text": "héllo"})
        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(l) for l in lines] == [{"n": 1}, {"n": 2, "text": "héllo"}]

    @pytest.mark.asyncio
    async def test_append_repairs_missing_newline(self, store, tmp_path):
        path = tmp_path / "a.jsonl"
        path.write_text('{"n": 1}')
        await store.append(str(path), {"n": 2})
        assert await store.read(str(path)) == [{"n": 1}, {"n": 2}]

    @pytest.mark.asyncio
    async def test_append_rotates_full_file(self, store, tmp_path):
        path = tmp_path / "audit.jsonl"
        path.write_text('{"n": 1}\n{"n": 2}\n')
        await store.append(str(path), {"n": 3}, max_bytes=10)
        assert await store.read(str(path)) == [{"n": 3}]
        assert (tmp_path / "audit.jsonl.1").read_text() == '{"n": 1}\n{"n": 2}\n'

    @pytest.mark.asyncio
    async def test_append_below_limit_keeps_file(self, store, tmp_path):
        path = tmp_path / "audit.jsonl"
        await store.append(str(path), {"n": 1}, max_bytes=1024)
        await store.append(str(path), {"n": 2}, max_bytes=1024)
        assert await store.read(str(path)) == [{"n": 1}, {"n": 2}]
        assert not (tmp_path / "audit.jsonl.1").exists()

    @pytest.mark.asyncio
    async def test_write_replaces_and_leaves_no_temp_files(self, store, tmp_path):
        path = tmp_path / "a.jsonl"
        await store.write(str(path), [{"n": 1}, {"n": 2}])
        await store.write(str(path), [{"n": 3}])
        assert await store.read(str(path)) == [{"n": 3}]
        assert sorted(os.listdir(tmp_path)) == ["a.jsonl"]

    @pytest.mark.asyncio
    async def test_concurrent_appends_never_interleave(self, store, tmp_path):
        path = str(tmp_path / "audit.jsonl")
        await asyncio.gather(*(store.append(path, {"n": i, "pad": "x" * 500}) for i in range(40)))
        records = await store.read(path)
        assert sorted(r["n"] for r in records) == list(range(40))
        assert not os.path.exists(path + ".corrupt")

    @pytest.mark.asyncio
    async def test_update_is_read_modify_write(self, store, tmp_path):
        path = str(tmp_path / "tasks.jsonl")

        def add(records):
            records.append({"id": len(records) + 1})
            return len(records)

        results = await asyncio.gather(*(store.update(path, add) for _ in range(10)))
        assert sorted(results) == list(range(1, 11))
        assert [r["id"] for r in await store.read(path)] == list(range(1, 11))

    def test_lock_per_path(self, store, tmp_path):
        a = store.lock_for(str(tmp_path / "a.jsonl"))
        assert store.lock_for(str(tmp_path / "a.jsonl")) is a
        assert store.lock_for(str(tmp_path / "b.jsonl")) is not a
