"""Parser for the agent's newline-delimited JSON output stream."""

import json
import re
import time
from typing import Any, Callable, Dict, List, Optional

from agentrelay.models import StreamEvent, StreamEventType

_CODE_BLOCK_RE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_MARKUP_RE = re.compile(r"[*_~`#]")
_LINK_RE = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_BLANK_LINES_RE = re.compile(r"\n{2,}")
_SENTENCE_END_RE = re.compile(r"[.!?]\s")

_FILE_TOOLS = {
    "Read": StreamEventType.FILE_READ,
    "Edit": StreamEventType.FILE_EDIT,
    "Write": StreamEventType.FILE_WRITE,
}

STATUS_LINE_MAX = 100
MIN_STATUS_LINE_LENGTH = 10


def extract_status_line(text: str) -> Optional[str]:
    """
    Reduce an assistant text block to one short "latest thought" line.

    Markup is stripped, the last line longer than 10 characters is taken,
    cut at its first sentence end (when that end is past character 20) and
    capped at 100 characters.

    Returns:
        The status line, or None when nothing meaningful remains
    """
    clean = _CODE_BLOCK_RE.sub("", text)
    clean = _INLINE_MARKUP_RE.sub("", clean)
    clean = _LINK_RE.sub(r"\1", clean)
    clean = _BLANK_LINES_RE.sub("\n", clean)

    lines = [line.strip() for line in clean.split("\n")]
    lines = [line for line in lines if len(line) > MIN_STATUS_LINE_LENGTH]
    if not lines:
        return None

    line = lines[-1]
    match = _SENTENCE_END_RE.search(line)
    if match and match.start() > 20:
        line = line[:match.start() + 1]

    if len(line) > STATUS_LINE_MAX:
        line = line[:STATUS_LINE_MAX - 3] + "..."
    return line


def _assistant_content(obj: Dict[str, Any]) -> Optional[List[Any]]:
    if obj.get("type") != "assistant":
        return None
    content = obj.get("content")
    if isinstance(content, list):
        return content
    message = obj.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), list):
        return message["content"]
    return None


def _tool_event(name: str, tool_input: Dict[str, Any], now: float) -> Optional[StreamEvent]:
    if name in _FILE_TOOLS:
        path = tool_input.get("file_path") or tool_input.get("path") or ""
        if not path:
            return None
        return StreamEvent(type=_FILE_TOOLS[name], detail=str(path), timestamp=now)
    if name == "Bash":
        command = str(tool_input.get("command") or "")[:80]
        if not command:
            return None
        return StreamEvent(type=StreamEventType.COMMAND, detail=command, timestamp=now)
    if name in ("Glob", "Grep"):
        pattern = str(tool_input.get("pattern") or tool_input.get("glob") or "")
        if not pattern:
            return None
        return StreamEvent(type=StreamEventType.COMMAND, detail=f"{name}: {pattern[:70]}", timestamp=now)
    return StreamEvent(type=StreamEventType.INFO, detail=f"Tool: {name}", timestamp=now)


def parse_record(obj: Any, clock: Callable[[], float] = time.time) -> List[StreamEvent]:
    """Map one decoded record to zero or more StreamEvents."""
    if not isinstance(obj, dict):
        return []
    now = clock()
    events: List[StreamEvent] = []

    content = _assistant_content(obj)
    if content is not None:
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and isinstance(block.get("text"), str):
                status_line = extract_status_line(block["text"])
                if status_line:
                    events.append(StreamEvent(type=StreamEventType.STATUS_TEXT, detail=status_line, timestamp=now))
                continue
            if block.get("type") != "tool_use" or not block.get("name"):
                continue
            tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
            event = _tool_event(block["name"], tool_input, now)
            if event is not None:
                events.append(event)
    elif obj.get("type") == "tool_result" and obj.get("is_error"):
        raw = obj.get("content")
        error_text = (raw if isinstance(raw, str) else "")[:100]
        events.append(StreamEvent(type=StreamEventType.ERROR, detail=f"Tool error: {error_text}", timestamp=now))

    return events


class StreamParser:
    """Incremental NDJSON parser.

    Chunks may split a record anywhere; the trailing partial line is kept
    until a later chunk completes it, so no event ever comes from an
    incomplete record. Lines that are not JSON objects are skipped. The
    session id from the first ``system`` record is kept in ``session_id``.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._buffer = ""
        self._clock = clock
        self.skipped_lines = 0
        self.session_id: Optional[str] = None

    @property
    def pending(self) -> str:
        """The buffered, not yet complete, trailing line."""
        return self._buffer

    def feed(self, chunk: str) -> List[StreamEvent]:
        """Consume a chunk and return events for every record it completed."""
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")

        events: List[StreamEvent] = []
        for line in lines:
            line = line.strip()
            if not line.startswith("{"):
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                self.skipped_lines += 1
                continue
            if self.session_id is None and isinstance(obj, dict) and obj.get("type") == "system":
                self.session_id = obj.get("session_id") or None
            events.extend(parse_record(obj, self._clock))
        return events


def status_message_for(event: StreamEvent) -> Optional[str]:
    """Short caller-facing status text for tool events worth surfacing."""
    if event.type == StreamEventType.FILE_READ:
        return f"Reading {event.detail[:60]}"
    if event.type == StreamEventType.FILE_EDIT:
        return f"Editing {event.detail[:60]}"
    if event.type == StreamEventType.FILE_WRITE:
        return f"Writing {event.detail[:60]}"
    if event.type == StreamEventType.COMMAND and not event.detail.startswith(("Glob: ", "Grep: ")):
        return event.detail
    return None
