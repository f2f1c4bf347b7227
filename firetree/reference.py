import json
import logging
import threading
from collections.abc import Mapping
from urllib.parse import urlencode, urlsplit

from firetree.errors import DecodeError
from firetree.events import ANY
from firetree.stream import Watcher
from firetree.transport import Transport
from firetree.utils import jformat

## Query parameters understood by the REST API
AUTH_PARAM = "auth"
FORMAT_PARAM = "format"
FORMAT_EXPORT = "export"
SHALLOW_PARAM = "shallow"
ORDER_BY_PARAM = "orderBy"
START_AT_PARAM = "startAt"
END_AT_PARAM = "endAt"
EQUAL_TO_PARAM = "equalTo"
LIMIT_TO_FIRST_PARAM = "limitToFirst"
LIMIT_TO_LAST_PARAM = "limitToLast"

# carried over to the location returned by push()
LOCATION_PARAMS = (AUTH_PARAM, SHALLOW_PARAM, FORMAT_PARAM)


def sanitize_url(url):
    if not url.startswith("https://") and not url.startswith("http://"):
        url = "https://" + url
    if url.endswith("/"):
        url = url[:-1]
    return url


def sanitize_path(path):
    # /foo/.json -> foo/.json -> foo/ -> foo
    s = path.strip("/")
    if s.endswith(".json"):
        s = s[:-len(".json")]
    return s.rstrip("/")


def _query_value(value):
    if value is not None and not isinstance(value, (str, int, float, bool)):
        raise ValueError(f"Query values must be str, number, bool or None, got {type(value).__name__}")
    return json.dumps(value)


def _limit(n):
    if isinstance(n, bool) or not isinstance(n, int) or n < 0:
        raise ValueError(f"Limit must be a non-negative int, got {n!r}")
    return str(n)


class Reference:
    """
    A location in the remote JSON tree.

    Example usage:
        root = Reference("my-db.firebaseio.com")
        root.auth(token)
        users = root.child("users")
        users.set({"ada": {"born": 1815}})
        ref = users.push({"name": "grace"})
        print(users.order_by_key().limit_to_first(10).get())
    """

    def __init__(self, url, transport=None, config=None, params=None, encoder=None):
        self._url = sanitize_url(url)
        self._params = dict(params or {})
        self.transport = transport if transport is not None else Transport(config)
        self.encoder = encoder   # json.JSONEncoder subclass for set/update/push
        self._lock = threading.RLock()
        self._watcher = Watcher(self.transport, self._lock, self._url)
        self.logger = logging.getLogger(f"{self.__class__.__name__}")

    def __str__(self):
        return self.request_url()

    def __repr__(self):
        return f"Reference({self._url!r})"

    ## Address & query

    @property
    def url(self):
        return self._url

    @property
    def params(self):
        with self._lock:
            return dict(self._params)

    @property
    def key(self):
        segments = [s for s in urlsplit(self._url).path.split("/") if s]
        return segments[-1] if segments else None

    @property
    def parent(self):
        parts = urlsplit(self._url)
        path = parts.path.strip("/")
        if not path:
            return None
        return self._copy(f"{parts.scheme}://{parts.netloc}/{path}".rsplit("/", 1)[0])

    def request_url(self, extra_params=None):
        params = self.params
        if extra_params:
            params.update(extra_params)
        url = self._url + "/.json"
        if params:
            url += "?" + urlencode(sorted(params.items()))
        return url

    def _copy(self, url=None, **params):
        with self._lock:
            merged = dict(self._params)
        merged.update(params)
        return Reference(url or self._url, transport=self.transport, params=merged, encoder=self.encoder)

    def child(self, path):
        """New reference at ``path`` below this one, with the same transport and query parameters."""
        path = sanitize_path(path)
        if not path:
            return self._copy()
        return self._copy(f"{self._url}/{path}")

    def ref(self, path=""):
        """New reference at ``path`` below the database root (scheme and host of this reference)."""
        parts = urlsplit(self._url)
        root = f"{parts.scheme}://{parts.netloc}"
        path = sanitize_path(path)
        return self._copy(f"{root}/{path}" if path else root)

    def _set_param(self, name, value):
        with self._lock:
            if value is None:
                self._params.pop(name, None)
            else:
                self._params[name] = value

    def auth(self, token):
        self._set_param(AUTH_PARAM, token)

    def unauth(self):
        self._set_param(AUTH_PARAM, None)

    def shallow(self, flag=True):
        self._set_param(SHALLOW_PARAM, "true" if flag else None)

    def include_priority(self, flag=True):
        self._set_param(FORMAT_PARAM, FORMAT_EXPORT if flag else None)

    ## Ordering and ranges return configured copies

    def order_by(self, child):
        return self._copy(**{ORDER_BY_PARAM: json.dumps(str(child))})

    def order_by_key(self):
        return self.order_by("$key")

    def order_by_value(self):
        return self.order_by("$value")

    def order_by_priority(self):
        return self.order_by("$priority")

    def start_at(self, value):
        return self._copy(**{START_AT_PARAM: _query_value(value)})

    def end_at(self, value):
        return self._copy(**{END_AT_PARAM: _query_value(value)})

    def equal_to(self, value):
        return self._copy(**{EQUAL_TO_PARAM: _query_value(value)})

    def limit_to_first(self, n):
        return self._copy(**{LIMIT_TO_FIRST_PARAM: _limit(n)})

    def limit_to_last(self, n):
        return self._copy(**{LIMIT_TO_LAST_PARAM: _limit(n)})

    ## Requests

    def _encode(self, value):
        try:
            return json.dumps(value, cls=self.encoder).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Could not serialize value for {self._url}: {e}") from e

    def _decode(self, body, target=None):
        if not body.strip():
            value = None
        else:
            try:
                value = json.loads(body)
            except ValueError as e:
                raise DecodeError(f"Response from {self._url} is not JSON: {body[:200]!r}") from e
        if target is None:
            return value
        try:
            return target(value)
        except (TypeError, ValueError, KeyError) as e:
            raise DecodeError(f"Could not convert response from {self._url} with {target!r}: {e}") from e

    def _request(self, method, body=None, extra_params=None):
        return self.transport.execute(method, self.request_url(extra_params), body=body)

    def get(self, target=None):
        """
        Read the value at this location.

        :param target: Optional callable applied to the decoded JSON (e.g. a class or a parser).
        """
        return self._decode(self._request("GET"), target)

    def get_shallow(self):
        return self._decode(self._request("GET", extra_params={SHALLOW_PARAM: "true"}))

    def get_export(self):
        return self._decode(self._request("GET", extra_params={FORMAT_PARAM: FORMAT_EXPORT}))

    def set(self, value):
        """Replace the whole subtree at this location with ``value``."""
        body = self._encode(value)
        self.logger.debug(f"set {self._url}\n{jformat(value)}")
        return self._decode(self._request("PUT", body))

    def update(self, value):
        """Merge the keys of ``value`` into this location; siblings are left alone."""
        if not isinstance(value, Mapping):
            raise ValueError(f"update() needs a mapping, got {type(value).__name__}")
        body = self._encode(dict(value))
        self.logger.debug(f"update {self._url}\n{jformat(value)}")
        return self._decode(self._request("PATCH", body))

    def push(self, value=None):
        """Append ``value`` under a server generated, time ordered key and return a reference to it.

        The returned reference keeps auth, shallow and format but drops ordering, range and limit parameters.
        """
        body = self._encode(value)
        result = self._decode(self._request("POST", body))
        if not isinstance(result, dict) or not isinstance(result.get("name"), str):
            raise DecodeError(f"Push response from {self._url} has no generated name: {result!r}")
        with self._lock:
            params = {k: v for k, v in self._params.items() if k in LOCATION_PARAMS}
        return Reference(f"{self._url}/{sanitize_path(result['name'])}", transport=self.transport, params=params,
                         encoder=self.encoder)

    def delete(self):
        self._request("DELETE")

    ## Callback style, run on the transport's pool. ``callback`` receives the finished future.

    def get_async(self, target=None, callback=None):
        return self.transport.pool.submit(self.get, target, callback=callback)

    def set_async(self, value, callback=None):
        return self.transport.pool.submit(self.set, value, callback=callback)

    def update_async(self, value, callback=None):
        return self.transport.pool.submit(self.update, value, callback=callback)

    def push_async(self, value=None, callback=None):
        return self.transport.pool.submit(self.push, value, callback=callback)

    def delete_async(self, callback=None):
        return self.transport.pool.submit(self.delete, callback=callback)

    ## Streaming

    @property
    def watching(self):
        return self._watcher.active

    def watch(self):
        """
        Open the event stream for this location and start decoding it in the
        background. Raises StreamActiveError if this reference is already watching.
        """
        self._watcher.start(self.request_url())

    def stop_watching(self):
        return self._watcher.stop()

    def add_listener(self, event_type=ANY, callback=None, maxsize=0):
        """
        Register for events of ``event_type`` (default: all of them).

        :param callback: Called with each ChangeEvent on a worker thread. Without one, pull from the returned handle.
        :param maxsize: Bound on the handle's queue; when full the oldest event is dropped. 0 means unbounded,
            so a pull handle that is never drained keeps every event until it is removed.
        """
        return self._watcher.add_listener(event_type, callback, maxsize)

    def remove_listener(self, handle):
        return self._watcher.remove_listener(handle)

    def listener_count(self):
        return self._watcher.listener_count()
