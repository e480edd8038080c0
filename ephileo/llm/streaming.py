"""Streaming primitives for chat-completion responses.

The pieces compose left to right while a response is still arriving:

* :class:`StreamDecoder` turns raw server-sent-event bytes into typed
  :data:`StreamEvent` objects.
* :class:`ReasoningSplitter` classifies content text as visible or
  reasoning (``<think>`` spans) so callers can render it live.
* :class:`ResponseAssembler` folds the events into one
  :class:`~ephileo.llm.LLMResponse`.

All three are per-request and hold no I/O of their own.
"""

from __future__ import annotations

import codecs
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Union

from ephileo.llm.messages import LLMResponse, ToolCall
from ephileo.logging import get_logger

log = get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
DEFAULT_FINISH_REASON = "stop"

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"
THINKING_BANNER = "[thinking] "
THINKING_END = "\n"

_THINK_SPAN_RE = re.compile(r"<think>([\s\S]*?)</think>")


@dataclass(frozen=True)
class ContentDelta:
    """A fragment of visible (or inline ``<think>``) model text."""

    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    """A fragment of reasoning delivered in a dedicated delta field."""

    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of a tool call, keyed by its position in the response."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class StreamDone:
    """End of the stream."""

    finish_reason: str = DEFAULT_FINISH_REASON


StreamEvent = Union[ContentDelta, ReasoningDelta, ToolCallDelta, StreamDone]


class StreamDecoder:
    """Incremental parser for an OpenAI-style ``text/event-stream`` body.

    Bytes may arrive in arbitrarily sized chunks; an incomplete trailing
    line is buffered until the next :meth:`feed`. Unknown record types and
    undecodable payloads are skipped so newer servers do not break older
    clients.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._finish_reason = DEFAULT_FINISH_REASON
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def finish_reason(self) -> str:
        return self._finish_reason

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Consume one chunk and return the events it completed."""
        if self._done:
            return []
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        events: list[StreamEvent] = []
        for line in lines:
            events.extend(self._parse_line(line))
            if self._done:
                break
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush the trailing record at a clean end of body.

        Emits :class:`StreamDone` unless the sentinel was already seen.
        """
        if self._done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        events = self._parse_line(tail) if tail else []
        if not self._done:
            self._done = True
            events.append(StreamDone(self._finish_reason))
        return events

    def _parse_line(self, line: str) -> list[StreamEvent]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return []
        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            self._done = True
            return [StreamDone(self._finish_reason)]

        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            log.debug("Skipping malformed stream record", record=data[:200])
            return []

        try:
            choice = payload["choices"][0]
        except (KeyError, IndexError, TypeError):
            return []
        if not isinstance(choice, dict):
            return []

        if choice.get("finish_reason"):
            self._finish_reason = str(choice["finish_reason"])

        delta = choice.get("delta")
        if not isinstance(delta, dict):
            return []

        events: list[StreamEvent] = []
        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if isinstance(reasoning, str) and reasoning:
            events.append(ReasoningDelta(reasoning))

        content = delta.get("content")
        if isinstance(content, str) and content:
            events.append(ContentDelta(content))

        tool_calls = delta.get("tool_calls") or []
        if not isinstance(tool_calls, list):
            log.debug("Skipping malformed tool_calls", tool_calls=str(tool_calls)[:200])
            return events
        for raw in tool_calls:
            tool_delta = _tool_call_delta(raw)
            if tool_delta is None:
                log.debug("Skipping malformed tool call delta", delta=str(raw)[:200])
                continue
            events.append(tool_delta)
        return events


def _tool_call_delta(raw: Any) -> ToolCallDelta | None:
    """Build a delta from one ``tool_calls`` entry, or None when it is malformed."""
    if not isinstance(raw, dict):
        return None
    function = raw.get("function") or {}
    if not isinstance(function, dict):
        return None
    try:
        index = int(raw.get("index") or 0)
    except (TypeError, ValueError):
        return None

    call_id = raw.get("id") or None
    name = function.get("name") or None
    arguments = function.get("arguments") or None
    for value in (call_id, name, arguments):
        if value is not None and not isinstance(value, str):
            return None
    return ToolCallDelta(index=index, call_id=call_id, name=name, arguments=arguments)


def _partial_marker_length(buffer: str, start: int, marker: str) -> int:
    """Length of the longest suffix of ``buffer[start:]`` that begins ``marker``."""
    longest = min(len(marker) - 1, len(buffer) - start)
    for size in range(longest, 0, -1):
        if buffer.endswith(marker[:size]):
            return size
    return 0


class ReasoningSplitter:
    """Split streamed content into visible and reasoning spans.

    ``on_span(text, is_reasoning)`` is called for every span. A marker that
    straddles two fragments is held back until it can be decided, so the
    per-flag concatenation of emitted text does not depend on how the
    content was chunked.
    """

    def __init__(
        self,
        on_span: Callable[[str, bool], None],
        open_marker: str = THINK_OPEN,
        close_marker: str = THINK_CLOSE,
        open_banner: str = THINKING_BANNER,
        close_banner: str = THINKING_END,
    ) -> None:
        self._on_span = on_span
        self._open_marker = open_marker
        self._close_marker = close_marker
        self._open_banner = open_banner
        self._close_banner = close_banner
        self._inside = False
        self._pending = ""

    @property
    def inside_reasoning(self) -> bool:
        return self._inside

    def _emit(self, text: str, is_reasoning: bool) -> None:
        if text:
            self._on_span(text, is_reasoning)

    def feed(self, text: str) -> None:
        buffer = self._pending + text
        self._pending = ""
        pos = 0
        while pos < len(buffer):
            marker = self._close_marker if self._inside else self._open_marker
            idx = buffer.find(marker, pos)
            if idx == -1:
                end = len(buffer) - _partial_marker_length(buffer, pos, marker)
                self._emit(buffer[pos:end], self._inside)
                self._pending = buffer[end:]
                return

            self._emit(buffer[pos:idx], self._inside)
            pos = idx + len(marker)
            if self._inside:
                self._emit(self._close_banner, True)
                self._inside = False
            else:
                self._inside = True
                self._emit(self._open_banner, False)

    def flush(self) -> None:
        """Emit any held-back partial marker in the current mode.

        An unterminated reasoning span stays open; the held-back text keeps
        the reasoning flag it had.
        """
        pending, self._pending = self._pending, ""
        self._emit(pending, self._inside)


def parse_tool_arguments(raw: str) -> dict[str, Any]:
    """Parse accumulated argument JSON, degrading to an empty map."""
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        log.warning("Discarding malformed tool arguments", arguments=raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


@dataclass
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


def split_reasoning(text: str) -> tuple[str | None, str | None]:
    """Separate complete ``<think>`` spans from the visible text."""
    reasoning = None
    match = _THINK_SPAN_RE.search(text)
    if match:
        reasoning = match.group(1).strip()
        text = _THINK_SPAN_RE.sub("", text)
    text = text.strip()
    return (text or None), (reasoning or None)


class ResponseAssembler:
    """Assembles a complete response from stream events."""

    def __init__(self) -> None:
        self._content: list[str] = []
        self._reasoning: list[str] = []
        self._pending: dict[int, _PendingToolCall] = {}
        self._finish_reason = DEFAULT_FINISH_REASON

    def feed(self, event: StreamEvent) -> None:
        if isinstance(event, ContentDelta):
            self._content.append(event.text)
        elif isinstance(event, ReasoningDelta):
            self._reasoning.append(event.text)
        elif isinstance(event, ToolCallDelta):
            tc = self._pending.setdefault(event.index, _PendingToolCall())
            if event.call_id:
                tc.id = event.call_id
            if event.name:
                tc.name += event.name
            if event.arguments:
                tc.arguments += event.arguments
        elif isinstance(event, StreamDone):
            self._finish_reason = event.finish_reason

    @property
    def raw_content(self) -> str:
        return "".join(self._content)

    def partial_content(self) -> str:
        """Visible text assembled so far, for the cancellation path."""
        content, _ = split_reasoning(self.raw_content)
        return content or ""

    def build(self) -> LLMResponse:
        """Return the final response in ascending tool-call index order."""
        tool_calls = [
            ToolCall(
                id=self._pending[index].id,
                name=self._pending[index].name,
                arguments=parse_tool_arguments(self._pending[index].arguments),
            )
            for index in sorted(self._pending)
        ]

        content, inline_reasoning = split_reasoning(self.raw_content)
        parts = [part for part in ("".join(self._reasoning).strip(), inline_reasoning) if part]
        reasoning = "\n".join(parts) or None

        return LLMResponse(
            content=content,
            reasoning=reasoning,
            tool_calls=tool_calls,
            finish_reason=self._finish_reason,
        )
