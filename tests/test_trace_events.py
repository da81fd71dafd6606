"""
Tests for trace_events.py - line decoding and event typing.
"""

from conftest import after, before, jsonl

from trace_events import decode_auxiliary_streams, decode_stream, to_raw_event


class TestDecodeStream:
    def test_kinds_and_timestamps(self):
        text = jsonl([
            before("c1", 1.5, "page.goto"),
            {"type": "stdout", "timestamp": 2.0, "text": "hello"},
            {"type": "stderr", "timestamp": 2.5, "text": "oops"},
            {"type": "screencast-frame", "timestamp": 3.0, "sha1": "abc.jpeg"},
            {"type": "context-options", "monotonicTime": 0.1},
            after("c1", 4.0),
        ])
        res = decode_stream(text)

        assert res.skipped == 0
        assert [e.kind for e in res.events] == ["before", "stdio", "stdio", "frame", "other", "after"]
        assert [e.timestamp for e in res.events] == [1.5, 2.0, 2.5, 3.0, 0.1, 4.0]
        assert res.events[0].api_name == "page.goto"
        assert res.events[1].text == "hello"
        assert res.events[3].sha1 == "abc.jpeg"

    def test_malformed_lines_are_skipped_and_counted(self):
        text = jsonl([
            before("c1", 0),
            "{not json",
            "[1, 2, 3]",
            "   ",
            after("c1", 1),
        ])
        res = decode_stream(text)

        assert [e.kind for e in res.events] == ["before", "after"]
        assert res.skipped == 2

    def test_truncated_final_line(self):
        text = jsonl([before("c1", 0)]) + '{"type": "after", "callId": "c1", "endT'
        res = decode_stream(text)
        assert len(res.events) == 1
        assert res.skipped == 1

    def test_deeply_nested_line_is_skipped(self):
        text = jsonl([before("c1", 0), "[" * 100000, after("c1", 1)])
        res = decode_stream(text)
        assert [e.kind for e in res.events] == ["before", "after"]
        assert res.skipped == 1

    def test_oversized_integer_line_does_not_abort(self):
        # rejected by the int digit limit on current interpreters
        text = jsonl([before("c1", 0), '{"n": ' + "1" * 5000 + "}", after("c1", 1)])
        res = decode_stream(text)
        assert [e.kind for e in res.events if e.kind != "other"] == ["before", "after"]
        assert len(res.events) + res.skipped == 3

    def test_empty_input(self):
        res = decode_stream("")
        assert res.events == []
        assert res.skipped == 0

    def test_other_events_keep_raw_record(self):
        ev = to_raw_event({"type": "log", "time": 7, "message": "m"})
        assert ev.kind == "other"
        assert ev.type == "log"
        assert ev.timestamp == 7.0
        assert ev.to_dict() == {"type": "log", "time": 7, "message": "m"}

    def test_missing_fields_read_as_none(self):
        ev = to_raw_event({"type": "before"})
        assert ev.call_id is None
        assert ev.parent_id is None
        assert ev.timestamp is None
        assert ev.attachments == []


class TestAuxiliaryStreams:
    def test_streams_are_pooled_as_network(self):
        s1 = jsonl([
            {"type": "resource-snapshot", "monotonicTime": 10, "snapshot": {"request": {"url": "a"}}},
            "garbage",
        ])
        s2 = jsonl([
            {"type": "resource-snapshot", "snapshot": {"_monotonicTime": 20, "request": {"url": "b"}}},
            {"type": "something-else", "monotonicTime": 30},
        ])
        res = decode_auxiliary_streams([s1, s2])

        assert [e.kind for e in res.events] == ["network", "network", "network"]
        assert [e.timestamp for e in res.events] == [10.0, 20.0, 30.0]
        assert res.skipped == 1

    def test_no_streams(self):
        res = decode_auxiliary_streams([])
        assert res.events == []
