"""
Tests for state persistence (slotsniper/common/store.py, slotsniper/common/events.py)
"""
import json

from slotsniper.common.events import EventLog
from slotsniper.common.store import JsonFileStore, MemoryStore


class TestJsonFileStore:
    def test_missing_file(self, tmp_path):
        assert JsonFileStore(tmp_path / "state.json").load() is None

    def test_save_and_load(self, tmp_path):
        store = JsonFileStore(tmp_path / "data" / "state.json")
        store.save({"state": {"status": "running"}, "claim_queue": ["a"]})

        assert store.load() == {"state": {"status": "running"}, "claim_queue": ["a"]}
        assert not (tmp_path / "data" / "state.json.tmp").exists()

    def test_last_write_wins(self, tmp_path):
        store = JsonFileStore(tmp_path / "state.json")
        store.save({"n": 1})
        store.save({"n": 2})
        assert store.load() == {"n": 2}

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert JsonFileStore(path).load() is None

    def test_non_object(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps([1, 2, 3]))
        assert JsonFileStore(path).load() is None


class TestMemoryStore:
    def test_copies_on_save_and_load(self):
        store = MemoryStore()
        data = {"claim_queue": ["a"]}
        store.save(data)
        data["claim_queue"].append("b")

        loaded = store.load()
        assert loaded == {"claim_queue": ["a"]}
        loaded["claim_queue"].append("c")
        assert store.load() == {"claim_queue": ["a"]}
        assert store.saves == 1

    def test_empty(self):
        assert MemoryStore().load() is None


class TestEventLog:
    def test_newest_first(self):
        log = EventLog()
        log.record("info", "first")
        log.record("warning", "second", clicks=3)

        entries = log.entries()
        assert [e.message for e in entries] == ["second", "first"]
        assert entries[0].data == {"clicks": 3}
        assert entries[0].level == "warning"

    def test_bounded(self):
        log = EventLog(max_entries=3)
        for n in range(5):
            log.record("info", f"event {n}")

        assert len(log) == 3
        assert log.entries()[0].message == "event 4"
        assert log.entries()[-1].message == "event 2"

    def test_load_keeps_bound(self):
        source = EventLog()
        for n in range(5):
            source.record("info", f"event {n}")

        log = EventLog(max_entries=2)
        log.load(source.entries())
        assert [e.message for e in log.entries()] == ["event 4", "event 3"]
