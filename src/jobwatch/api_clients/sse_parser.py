"""SSE (Server-Sent Events) parser for the job event stream.

Turns the lines of a ``text/event-stream`` body into decoded JSON payloads,
one per event. Comment lines and the ``id``/``retry`` fields are ignored.
"""

import json
from typing import Any, Dict, List, Optional


class SseParseError(Exception):
    """SSE event parsing error."""

    pass


class SseParser:
    """Incremental parser for SSE frames carrying JSON ``data`` fields."""

    def __init__(self) -> None:
        self._data_lines: List[str] = []
        self._event_type: Optional[str] = None

    def feed_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Feed one line (without its terminator).

        Returns:
            The decoded payload when ``line`` completes an event, else None.
            Payloads of named events other than ``message`` are returned with
            their name under the ``"event"`` key.

        Raises:
            SseParseError: If a completed event's data is not a JSON object
        """
        line = line.rstrip("\r")

        if line == "":
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data_lines.append(value)
        elif field == "event":
            self._event_type = value or None

        return None

    def flush(self) -> Optional[Dict[str, Any]]:
        """Dispatch an event left unterminated at end of stream."""
        return self._dispatch()

    def _dispatch(self) -> Optional[Dict[str, Any]]:
        if not self._data_lines:
            self._event_type = None
            return None

        raw = "\n".join(self._data_lines)
        event_type = self._event_type
        self._data_lines = []
        self._event_type = None

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SseParseError(f"Invalid JSON in SSE event: {e}") from e

        if not isinstance(payload, dict):
            raise SseParseError("SSE event data must be a JSON object")

        if event_type and event_type != "message":
            payload = {**payload, "event": event_type}
        return payload
