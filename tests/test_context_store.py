"""
Tests for context_store.py - append-only persisted analysis contexts.
"""

import json
import logging

from context_store import ContextStore, StoredContext


def make_ctx(folder: str, digest: str = "h") -> StoredContext:
    return StoredContext(
        explanation=f"explained {folder}",
        stack_trace="Error: x",
        normalized_stack_trace="Error: x",
        stack_trace_hash=digest,
        folder_path=folder,
    )


class TestLoad:
    def test_absent_store_is_empty(self, tmp_path):
        assert ContextStore(tmp_path / "ai_context.json").load() == []

    def test_empty_file_is_empty(self, tmp_path):
        p = tmp_path / "ai_context.json"
        p.write_text("  \n", encoding="utf-8")
        assert ContextStore(p).load() == []

    def test_corrupt_store_warns_and_reads_empty(self, tmp_path, caplog):
        p = tmp_path / "ai_context.json"
        p.write_text("[{\"stackTrace\": ", encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="context_store"):
            assert ContextStore(p).load() == []
        assert any("corrupt" in r.getMessage() for r in caplog.records)

    def test_non_list_document_reads_empty(self, tmp_path):
        p = tmp_path / "ai_context.json"
        p.write_text(json.dumps({"contexts": []}), encoding="utf-8")
        assert ContextStore(p).load() == []

    def test_invalid_record_is_skipped(self, tmp_path):
        p = tmp_path / "ai_context.json"
        p.write_text(json.dumps([
            {"stackTraceHash": "a", "folderPath": "one"},
            "not a record",
            {"stackTraceHash": "b", "folderPath": "two"},
        ]), encoding="utf-8")
        loaded = ContextStore(p).load()
        assert [c.folder_path for c in loaded] == ["one", "two"]


class TestAppend:
    def test_append_keeps_order_and_camel_case(self, tmp_path):
        p = tmp_path / "scope" / "ai_context.json"
        store = ContextStore(p)
        store.append(make_ctx("run-1", "h1"))
        store.append(make_ctx("run-2", "h2"))

        loaded = store.load()
        assert [c.folder_path for c in loaded] == ["run-1", "run-2"]
        assert loaded[0].explanation == "explained run-1"

        doc = json.loads(p.read_text(encoding="utf-8"))
        assert len(doc) == 2
        for key in ("stackTraceHash", "normalizedStackTrace", "stackTrace", "folderPath", "timestamp", "explanation"):
            assert key in doc[0]
        assert doc[1]["stackTraceHash"] == "h2"

    def test_append_leaves_no_temp_files(self, tmp_path):
        store = ContextStore(tmp_path / "ai_context.json")
        store.append(make_ctx("run-1"))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["ai_context.json"]

    def test_existing_records_are_not_modified(self, tmp_path):
        p = tmp_path / "ai_context.json"
        store = ContextStore(p)
        store.append(make_ctx("run-1"))
        first = json.loads(p.read_text(encoding="utf-8"))[0]
        store.append(make_ctx("run-2"))
        assert json.loads(p.read_text(encoding="utf-8"))[0] == first

    def test_unknown_fields_survive_round_trip(self, tmp_path):
        p = tmp_path / "ai_context.json"
        p.write_text(json.dumps([{"stackTraceHash": "a", "folderPath": "one", "reviewer": "qa"}]), encoding="utf-8")
        store = ContextStore(p)
        store.append(make_ctx("two"))
        doc = json.loads(p.read_text(encoding="utf-8"))
        assert doc[0]["reviewer"] == "qa"

    def test_prior_entries_are_written_back_unchanged(self, tmp_path):
        p = tmp_path / "ai_context.json"
        original = [{"stackTraceHash": "a", "folderPath": "one"}, "legacy-garbage"]
        p.write_text(json.dumps(original), encoding="utf-8")

        ContextStore(p).append(make_ctx("two", "b"))

        doc = json.loads(p.read_text(encoding="utf-8"))
        assert doc[:-1] == original
        assert doc[-1]["stackTraceHash"] == "b"

    def test_corrupt_document_is_moved_aside(self, tmp_path):
        p = tmp_path / "ai_context.json"
        broken = '[{"stackTraceHash": "a", "folderPath": "one"},'
        p.write_text(broken, encoding="utf-8")

        ContextStore(p).append(make_ctx("two", "b"))

        kept = [x for x in tmp_path.iterdir() if x.name.startswith("ai_context.json.corrupt-")]
        assert len(kept) == 1
        assert kept[0].read_text(encoding="utf-8") == broken
        assert [c.folder_path for c in ContextStore(p).load()] == ["two"]

    def test_non_list_document_is_moved_aside(self, tmp_path):
        p = tmp_path / "ai_context.json"
        p.write_text(json.dumps({"contexts": [1]}), encoding="utf-8")

        ContextStore(p).append(make_ctx("two"))

        kept = [x for x in tmp_path.iterdir() if x.name.startswith("ai_context.json.corrupt-")]
        assert len(kept) == 1
        assert json.loads(kept[0].read_text(encoding="utf-8")) == {"contexts": [1]}


def test_stored_record_fields():
    assert set(make_ctx("run-1").to_json_dict()) == {
        "explanation", "stackTrace", "normalizedStackTrace", "stackTraceHash", "folderPath", "timestamp",
    }


def test_stored_context_accepts_both_key_styles():
    a = StoredContext.model_validate({"stackTraceHash": "x", "folderPath": "f"})
    b = StoredContext(stack_trace_hash="x", folder_path="f")
    assert a.stack_trace_hash == b.stack_trace_hash == "x"
    assert a.timestamp
