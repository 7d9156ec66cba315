"""Tests for the NDJSON stream parser."""

import json

from agentrelay.agents.progress import ProgressFormatter
from agentrelay.agents.stream_parser import (
    StreamParser,
    extract_status_line,
    parse_record,
    status_message_for,
)
from agentrelay.models import StreamEvent, StreamEventType


def test_record_split_across_chunks():
    """A record split mid-line yields nothing until it is complete."""
    parser = StreamParser()
    first = (
        '{"type":"assistant","message":{"content":[{"type":"tool_use","name":"Read",'
        '"input":{"file_path":"/a.txt"}}]}}\n{"type":"ass'
    )
    second = (
        'istant","message":{"content":[{"type":"text",'
        '"text":"Now checking the configuration loader."}]}}\n'
    )

    events = parser.feed(first)
    assert [(e.type, e.detail) for e in events] == [(StreamEventType.FILE_READ, "/a.txt")]
    assert parser.pending == '{"type":"ass'

    events += parser.feed(second)
    reads = [e for e in events if e.type == StreamEventType.FILE_READ]
    assert len(reads) == 1
    assert events[-1].type == StreamEventType.STATUS_TEXT
    assert parser.pending == ""


def test_non_json_lines_are_skipped():
    parser = StreamParser()
    events = parser.feed('plain text\n{"type":"assistant", broken}\n{"type":"system"}\n')
    assert events == []
    assert parser.skipped_lines == 1


def test_tool_events():
    record = {
        "type": "assistant",
        "message": {"content": [
            {"type": "tool_use", "name": "Edit", "input": {"file_path": "src/app.py"}},
            {"type": "tool_use", "name": "Write", "input": {"path": "notes.md"}},
            {"type": "tool_use", "name": "Bash", "input": {"command": "pytest -q"}},
            {"type": "tool_use", "name": "Grep", "input": {"pattern": "TODO"}},
            {"type": "tool_use", "name": "WebSearch", "input": {"query": "x"}},
            {"type": "tool_use", "name": "Read", "input": {}},
        ]},
    }
    events = parse_record(record)
    assert [(e.type, e.detail) for e in events] == [
        (StreamEventType.FILE_EDIT, "src/app.py"),
        (StreamEventType.FILE_WRITE, "notes.md"),
        (StreamEventType.COMMAND, "pytest -q"),
        (StreamEventType.COMMAND, "Grep: TODO"),
        (StreamEventType.INFO, "Tool: WebSearch"),
    ]


def test_tool_error_record():
    events = parse_record({"type": "tool_result", "is_error": True, "content": "permission denied"})
    assert [(e.type, e.detail) for e in events] == [(StreamEventType.ERROR, "Tool error: permission denied")]


def test_extract_status_line():
    text = "**Looking** at the `parser`.\n\n```python\nprint('x')\n```\nI will now update the tokenizer. Then the tests."
    assert extract_status_line(text) == "I will now update the tokenizer."
    assert extract_status_line("ok") is None
    long_line = "word " * 40
    line = extract_status_line(long_line)
    assert len(line) == 100
    assert line.endswith("...")


def test_status_messages_for_events():
    assert status_message_for(StreamEvent(StreamEventType.FILE_READ, "/a.txt")) == "Reading /a.txt"
    assert status_message_for(StreamEvent(StreamEventType.COMMAND, "make test")) == "make test"
    assert status_message_for(StreamEvent(StreamEventType.COMMAND, "Glob: **/*.py")) is None
    assert status_message_for(StreamEvent(StreamEventType.INFO, "Tool: Task")) is None


def test_progress_formatter_counts():
    clock_value = [0.0]
    progress = ProgressFormatter(header="Working", clock=lambda: clock_value[0])
    assert "Starting up..." in progress.render()

    parser = StreamParser()
    lines = [
        {"type": "assistant", "message": {"content": [
            {"type": "tool_use", "name": "Read", "input": {"file_path": "a.py"}},
            {"type": "tool_use", "name": "Edit", "input": {"file_path": "a.py"}},
            {"type": "tool_use", "name": "Bash", "input": {"command": "ls"}},
            {"type": "text", "text": "Updating the handler now."},
        ]}},
    ]
    for event in parser.feed("".join(json.dumps(line) + "\n" for line in lines)):
        progress.add_event(event)

    clock_value[0] = 75
    panel = progress.render()
    assert panel.startswith("Working — 1m 15s")
    assert "1 edits  1 reads  1 commands" in panel
    assert "> Updating the handler now." in panel
    assert progress.render() == "", "Unchanged panel renders as empty"

    summary = progress.render_summary(success=False, duration_ms=5000, cost_usd=0.5)
    assert summary.splitlines()[0] == "Failed — 0m 5s"
    assert "Cost: $0.5000" in summary


def test_session_id_taken_from_first_system_record():
    parser = StreamParser()
    assert parser.session_id is None

    parser.feed('{"type":"system","subtype":"init","ses')
    assert parser.session_id is None
    parser.feed('sion_id":"sess-1"}\n{"type":"system","session_id":"sess-2"}\n')

    assert parser.session_id == "sess-1"
