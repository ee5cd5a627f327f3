"""
Incremental parser for ``text/event-stream`` bodies.

Chunks may split lines and events anywhere; incomplete lines stay in the
buffer until the rest arrives.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ParsedEvent:
    data: str
    event_type: str = "message"
    event_id: Optional[str] = None


class SSEParser:
    """Accumulating server-sent events parser."""

    def __init__(self):
        self.buffer = ""
        self.retry: Optional[int] = None
        self._reset()

    def _reset(self) -> None:
        self._data: list[str] = []
        self._event_type = "message"
        self._event_id: Optional[str] = None

    def feed(self, chunk: str) -> list[ParsedEvent]:
        """Add ``chunk`` to the buffer and return the events it completed."""
        self.buffer += chunk
        lines = self.buffer.split("\n")
        self.buffer = lines.pop()

        events = []
        for line in lines:
            event = self._process_line(line.removesuffix("\r"))
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> Optional[ParsedEvent]:
        if line == "":
            event = None
            if self._data:
                event = ParsedEvent(
                    data="\n".join(self._data),
                    event_type=self._event_type,
                    event_id=self._event_id,
                )
            self._reset()
            return event

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event_type = value.strip() or "message"
        elif field == "id":
            self._event_id = value.strip()
        elif field == "retry":
            # Parsed only; reconnection is not automatic
            if value.strip().isdigit():
                self.retry = int(value.strip())
        return None
