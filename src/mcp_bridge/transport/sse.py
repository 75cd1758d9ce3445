"""
SSE Decoder
===========

Incremental decoder for `text/event-stream` bodies.

Feeds on one line at a time (as produced by httpx's `aiter_lines`) and
returns a complete SSEEvent when a blank line terminates the event.

Field handling:
    - `event:` sets the event type (default "message")
    - `data:` lines are joined with "\\n"
    - `id:` and `retry:` are tracked but do not affect dispatch
    - lines starting with ":" are comments (server keepalives)
    - an event with no data lines is not dispatched
"""

from dataclasses import dataclass
from typing import List, Optional


# Application-level categories an MCP source may emit
KNOWN_EVENT_TYPES = frozenset({
    "message",
    "tool_call",
    "tool_response",
    "tool_result",
    "notification",
    "request",
    "response",
    "error",
    "ping",
    "pong",
})

DEFAULT_EVENT_TYPE = "message"


def normalize_event_type(event_type: Optional[str]) -> str:
    """Map an SSE event name to a known category; unknown names become "message"."""
    if event_type in KNOWN_EVENT_TYPES:
        return event_type
    return DEFAULT_EVENT_TYPE


@dataclass(frozen=True, slots=True)
class SSEEvent:
    """One dispatched server-sent event."""

    event: str
    data: str
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """
    Line-oriented SSE event decoder.

    Example:
        decoder = SSEDecoder()
        async for line in response.aiter_lines():
            event = decoder.decode(line)
            if event is not None:
                handle(event)
    """

    def __init__(self) -> None:
        self._event: str = ""
        self._data: List[str] = []
        self._last_event_id: Optional[str] = None
        self._retry: Optional[int] = None

    @property
    def last_event_id(self) -> Optional[str]:
        return self._last_event_id

    def decode(self, line: str) -> Optional[SSEEvent]:
        """
        Consume one line of the stream.

        Args:
            line: A single line without its terminator

        Returns:
            SSEEvent when the line completes an event, else None
        """
        line = line.rstrip("\r\n")

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)

        return None

    def _dispatch(self) -> Optional[SSEEvent]:
        if not self._data:
            self._event = ""
            return None

        event = SSEEvent(
            event=self._event or DEFAULT_EVENT_TYPE,
            data="\n".join(self._data),
            id=self._last_event_id,
            retry=self._retry,
        )
        self._event = ""
        self._data = []
        return event
