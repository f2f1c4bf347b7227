from __future__ import annotations
import codecs
import json
import logging
import re
from typing import Any

from firetree.errors import DecodeError

## Frames sent by the server
PUT = "put"
PATCH = "patch"
KEEP_ALIVE = "keep-alive"
CANCEL = "cancel"
AUTH_REVOKED = "auth_revoked"

## Derived from the local snapshot (or forwarded when sent literally)
VALUE = "value"
CHILD_ADDED = "child_added"
CHILD_CHANGED = "child_changed"
CHILD_REMOVED = "child_removed"
CHILD_MOVED = "child_moved"

## Terminal notification, delivered to every listener when a session fails
ERROR = "error"

ANY = "*"

DATA_EVENTS = frozenset({PUT, PATCH, VALUE, CHILD_ADDED, CHILD_CHANGED, CHILD_REMOVED, CHILD_MOVED})
CONTROL_EVENTS = frozenset({KEEP_ALIVE, CANCEL, AUTH_REVOKED})
STREAM_EVENTS = DATA_EVENTS | CONTROL_EVENTS
EVENT_TYPES = STREAM_EVENTS | {ERROR}

logger = logging.getLogger("firetree.events")

LINE_BREAK = re.compile(r"\r\n|\r|\n")


class ChangeEvent:
    """One change notification from a stream: type, path within the watched location, payload."""

    def __init__(self, event_type: str, path: str = "/", data: Any = None) -> None:
        self.type = event_type
        self.path = path
        self.data = data

    def __repr__(self):
        return f"ChangeEvent({self.type!r}, {self.path!r}, {self.data!r})"

    def __eq__(self, other):
        if not isinstance(other, ChangeEvent):
            return NotImplemented
        return (self.type, self.path, self.data) == (other.type, other.path, other.data)

    @property
    def terminal(self) -> bool:
        return self.type == ERROR


def decode_frame(name: str, payload: str) -> ChangeEvent:
    """
    Turn one frame into a ChangeEvent.

    :raises DecodeError: if the event name is unknown or the payload does not parse.
    """
    if name not in STREAM_EVENTS:
        raise DecodeError(f"Unknown event type {name!r}")

    if name == KEEP_ALIVE:
        return ChangeEvent(KEEP_ALIVE)

    if name in (CANCEL, AUTH_REVOKED):
        # plain text or a JSON string
        try:
            reason = json.loads(payload) if payload else None
        except ValueError:
            reason = payload
        return ChangeEvent(name, "/", reason)

    try:
        body = json.loads(payload)
    except ValueError as e:
        raise DecodeError(f"Bad {name} payload: {e}") from e
    if isinstance(body, dict) and "path" in body:
        path = body["path"]
        if not isinstance(path, str):
            raise DecodeError(f"Bad {name} path {path!r}")
        return ChangeEvent(name, path, body.get("data"))
    if name in (PUT, PATCH):
        raise DecodeError(f"{name} payload without path: {payload[:100]}")
    return ChangeEvent(name, "/", body)


class FrameDecoder:
    """
    Decoder for ``event: <name>`` / ``data: <json>`` frames.
    A blank line ends a frame. Malformed frames are logged and skipped.

    ``feed_chunk`` takes raw bytes as they come off the socket and handles
    lines (``\\r\\n``, ``\\r`` or ``\\n``) and UTF-8 sequences split across
    chunks; ``feed`` takes one already split line.
    """

    def __init__(self):
        self.event = None
        self.data = []
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""
        self._after_cr = False   # previous chunk ended in \r, a leading \n belongs to it

    def feed_chunk(self, chunk: bytes) -> list[ChangeEvent]:
        text = self._utf8.decode(chunk)
        if self._after_cr and text.startswith("\n"):
            text = text[1:]
            self._after_cr = False
        if text:
            self._after_cr = text.endswith("\r")
        lines = LINE_BREAK.split(self._partial + text)
        self._partial = lines.pop()
        events = []
        for line in lines:
            event = self.feed(line)
            if event is not None:
                events.append(event)
        return events

    def feed(self, line: str) -> ChangeEvent | None:
        line = line.rstrip("\r")
        if line == "":
            return self._dispatch()
        if line.startswith(":"):   # comment
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self.event = value
        elif field == "data":
            self.data.append(value)
        else:
            logger.debug(f"Ignoring stream field {field!r}")
        return None

    def _dispatch(self) -> ChangeEvent | None:
        name, payload = self.event, "\n".join(self.data)
        self.event, self.data = None, []
        if name is None:
            if payload:
                logger.warning(f"Skipping frame without event name: {payload[:100]}")
            return None
        try:
            return decode_frame(name, payload)
        except DecodeError as e:
            logger.warning(f"Skipping malformed frame: {e}")
            return None


def split_path(path: str) -> list[str]:
    return [seg for seg in path.split("/") if seg]


def _set_path(node, segments, value):
    # copy-on-write along the path so older snapshots stay intact
    if not segments:
        return value
    head, rest = segments[0], segments[1:]
    children = dict(node) if isinstance(node, dict) else {}
    child = _set_path(children.get(head), rest, value)
    if child is None or child == {}:
        children.pop(head, None)
    else:
        children[head] = child
    return children or None


class Snapshot:
    """
    Local mirror of the watched location. Applying a put/patch returns the
    child and value events it implies.
    """

    def __init__(self):
        self.value = None

    def children(self) -> dict:
        return self.value if isinstance(self.value, dict) else {}

    def apply(self, event: ChangeEvent) -> list[ChangeEvent]:
        before = self.children()
        segments = split_path(event.path)
        if event.type == PUT:
            self.value = _set_path(self.value, segments, event.data)
        elif event.type == PATCH:
            if not isinstance(event.data, dict):
                logger.warning(f"Ignoring patch with non-object data at {event.path}")
                return []
            for key, child in event.data.items():
                self.value = _set_path(self.value, segments + split_path(key), child)
        else:
            return []
        if self.value == {}:
            self.value = None
        after = self.children()

        derived = []
        for key, child in after.items():
            if key not in before:
                derived.append(ChangeEvent(CHILD_ADDED, f"/{key}", child))
            elif before[key] != child:
                derived.append(ChangeEvent(CHILD_CHANGED, f"/{key}", child))
        for key, child in before.items():
            if key not in after:
                derived.append(ChangeEvent(CHILD_REMOVED, f"/{key}", child))
        derived.append(ChangeEvent(VALUE, "/", self.value))
        return derived
