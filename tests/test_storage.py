"""Tests for the JSON binding store and the background persister."""

import asyncio
import json
import logging

import pytest

from reactroles.models.binding import BindingKind
from reactroles.storage import JsonBindingStore, NullBindingStore, Persister
from helpers import MESSAGE, MemoryBindingStore, make_binding


class TestJsonBindingStore:
    async def test_missing_file_loads_empty(self, tmp_path):
        store = JsonBindingStore(tmp_path / "roles.json")
        assert await store.load() == []

    async def test_empty_file_loads_empty(self, tmp_path):
        path = tmp_path / "roles.json"
        path.write_text("  \n", encoding="utf-8")
        assert await JsonBindingStore(path).load() == []

    async def test_save_then_load(self, tmp_path):
        store = JsonBindingStore(tmp_path / "data" / "roles.json")
        toggle = make_binding(emoji="x", kind=BindingKind.TOGGLE, max=2, winners=[4, 5])
        plain = make_binding(emoji="y")
        plain.disable()

        await store.save([toggle, plain], [toggle])
        loaded = await store.load()

        assert [b.id for b in loaded] == [toggle.id, plain.id]
        assert loaded[0].kind is BindingKind.TOGGLE
        assert loaded[0].winners == [4, 5]
        assert loaded[1].disabled

    async def test_file_is_array_of_records(self, tmp_path):
        path = tmp_path / "roles.json"
        binding = make_binding()

        await JsonBindingStore(path).save([binding], [binding])

        data = json.loads(path.read_text(encoding="utf-8"))
        assert isinstance(data, list)
        assert data[0]["id"] == f"{MESSAGE}-👍"
        assert set(data[0]) == {
            "id",
            "message",
            "channel",
            "group",
            "emoji",
            "roles",
            "max",
            "kind",
            "requirements",
            "disabled",
            "winners",
        }
        assert not path.with_suffix(".json.tmp").exists()

    async def test_invalid_records_skipped(self, tmp_path):
        path = tmp_path / "roles.json"
        good = make_binding().to_record()
        path.write_text(
            json.dumps([good, {"message": 1, "roles": []}, "junk", {"id": "no-message"}]),
            encoding="utf-8",
        )

        loaded = await JsonBindingStore(path).load()

        assert [b.id for b in loaded] == [good["id"]]

    async def test_non_list_root_ignored(self, tmp_path):
        path = tmp_path / "roles.json"
        path.write_text(json.dumps({"bindings": []}), encoding="utf-8")
        assert await JsonBindingStore(path).load() == []

    async def test_delete_rewrites_without_binding(self, tmp_path):
        store = JsonBindingStore(tmp_path / "roles.json")
        a = make_binding(emoji="a")
        b = make_binding(emoji="b")
        await store.save([a, b], [a, b])

        await store.delete(a, [a, b])

        assert [x.id for x in await store.load()] == [b.id]


class TestPersister:
    async def test_schedule_writes_in_background(self):
        store = MemoryBindingStore()
        binding = make_binding()
        persister = Persister(store, lambda: [binding])

        persister.schedule(binding)
        assert persister.pending == 1
        await persister.drain()

        assert store.saved == [[binding.id]]
        assert persister.pending == 0

    async def test_disabled_store_schedules_nothing(self):
        persister = Persister(NullBindingStore(), lambda: [])
        persister.schedule(make_binding())
        assert persister.pending == 0
        await persister.flush(make_binding())

    async def test_background_failure_logged(self, caplog):
        class BrokenStore(MemoryBindingStore):
            async def save(self, all_bindings, changed):
                raise OSError("disk full")

        persister = Persister(BrokenStore(), lambda: [])
        with caplog.at_level(logging.ERROR):
            persister.schedule(make_binding())
            await persister.drain()

        assert "persist_failed" in caplog.text

    async def test_flush_propagates_errors(self):
        class BrokenStore(MemoryBindingStore):
            async def save(self, all_bindings, changed):
                raise OSError("disk full")

        persister = Persister(BrokenStore(), lambda: [])
        with pytest.raises(OSError):
            await persister.flush(make_binding())

    async def test_snapshot_taken_at_write_time(self):
        store = MemoryBindingStore()
        bindings = [make_binding(emoji="a")]
        persister = Persister(store, lambda: list(bindings))

        persister.schedule(bindings[0])
        bindings.append(make_binding(emoji="b"))
        await asyncio.sleep(0)
        await persister.drain()

        assert len(store.records) == 2
