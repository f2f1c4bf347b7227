import json
import queue
import threading
from urllib.parse import parse_qsl, urlsplit

import pytest
import requests

from firetree import Config, Reference, Transport
from firetree.events import split_path

DB_URL = "https://test-db.example.com"


def make_response(status_code, body=b"", url=None, reason=None):
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason or ("OK" if status_code < 400 else "Error")
    response._content = body if isinstance(body, bytes) else body.encode("utf-8")
    response._content_consumed = True
    response.url = url
    return response


class FakeRaw:
    """Blocking response body for event streams."""

    def __init__(self, db):
        self.db = db
        self.chunks = queue.Queue()
        self.closed = False
        self._lock = threading.Lock()

    def read(self, amt=None, **kwargs):
        chunk = self.chunks.get()
        if chunk is None:
            # end of stream: the connection is gone either way
            self.chunks.put(None)
            self._release()
            return b""
        if isinstance(chunk, Exception):
            raise chunk
        return chunk

    def close(self):
        self._release()
        self.chunks.put(None)

    def _release(self):
        with self._lock:
            if self.closed:
                return
            self.closed = True
        self.db.stream_closed()


class FakeStream:
    def __init__(self, db, url, headers):
        self.url = url
        self.headers = headers
        self.raw = FakeRaw(db)

    def send(self, event, data):
        self.send_raw(f"event: {event}\ndata: {json.dumps(data)}\n\n")

    def send_raw(self, text):
        self.raw.chunks.put(text.encode("utf-8"))

    def fail(self, error):
        """The next read raises ``error``, as a dropped or stalled connection would."""
        self.raw.chunks.put(error)

    def end(self):
        self.raw.chunks.put(None)

    @property
    def closed(self):
        return self.raw.closed


class FakeDatabase:
    """In-memory JSON tree answering the REST dialect, plus event streams."""

    def __init__(self):
        self.tree = None
        self.requests = []
        self.streams = []
        self.open_streams = 0
        self.reject_with = None
        self.raw_body = None
        self.push_counter = 0
        self._lock = threading.Lock()

    def stream_closed(self):
        with self._lock:
            self.open_streams -= 1

    def _get(self, segments):
        node = self.tree
        for seg in segments:
            if not isinstance(node, dict) or seg not in node:
                return None
            node = node[seg]
        return node

    def _set(self, segments, value):
        def assign(node, segments):
            if not segments:
                return value
            children = dict(node) if isinstance(node, dict) else {}
            child = assign(children.get(segments[0]), segments[1:])
            if child is None or child == {}:
                children.pop(segments[0], None)
            else:
                children[segments[0]] = child
            return children or None
        self.tree = assign(self.tree, segments)

    def request(self, method, url, data=None, headers=None, timeout=None, stream=False):
        parts = urlsplit(url)
        assert parts.path.endswith("/.json"), parts.path
        segments = split_path(parts.path[:-len("/.json")])
        query = dict(parse_qsl(parts.query))
        self.requests.append({"method": method, "url": url, "query": query, "body": data,
                              "headers": headers, "timeout": timeout, "stream": stream})

        if self.reject_with is not None:
            status, body = self.reject_with
            return make_response(status, body, url)
        if self.raw_body is not None:
            return make_response(200, self.raw_body, url)

        if stream:
            fake = FakeStream(self, url, headers)
            response = make_response(200, b"", url)
            response._content = False
            response._content_consumed = False
            response.raw = fake.raw
            with self._lock:
                self.streams.append(fake)
                self.open_streams += 1
            return response

        value = json.loads(data) if data else None
        if method == "GET":
            result = self._get(segments)
            if query.get("shallow") == "true" and isinstance(result, dict):
                result = {k: True if isinstance(v, dict) else v for k, v in result.items()}
        elif method == "PUT":
            self._set(segments, value)
            result = value
        elif method == "PATCH":
            for key, child in value.items():
                self._set(segments + split_path(key), child)
            result = value
        elif method == "POST":
            self.push_counter += 1
            key = f"-Nk{self.push_counter:06d}"
            self._set(segments + [key], value)
            result = {"name": key}
        elif method == "DELETE":
            self._set(segments, None)
            result = None
        else:
            return make_response(405, "method not allowed", url)
        return make_response(200, json.dumps(result), url)


class FakeSession:
    def __init__(self, db):
        self.db = db
        self.headers = {}
        self.closed = False

    def request(self, method, url, **kwargs):
        return self.db.request(method, url, **kwargs)

    def close(self):
        self.closed = True


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def transport(db):
    transport = Transport(Config(timeout=5), session=FakeSession(db))
    yield transport
    transport.close()


@pytest.fixture
def root(transport):
    return Reference(DB_URL, transport=transport)


@pytest.fixture
def watched(root):
    """A reference at /rooms with cleanup of any stream left open."""
    ref = root.child("rooms")
    yield ref
    ref.stop_watching()
