import logging
import queue
import threading
import uuid

from firetree.errors import StreamActiveError, StreamTerminatedError
from firetree.events import ANY, AUTH_REVOKED, CANCEL, ERROR, EVENT_TYPES, PATCH, PUT, ChangeEvent, FrameDecoder, Snapshot
from firetree.transport import classify_error

_RELEASED = object()


class ListenerHandle:
    """
    One registration for events of ``event_type`` (or ANY).

    With a callback, a worker thread drains this listener's own queue and calls
    ``callback(event)`` in arrival order. Without one, pull events with
    ``get()`` or iterate the handle; both stop once the registration is released.

    The queue is unbounded unless ``maxsize`` is given. A pull handle nobody
    drains then grows with every event; with ``maxsize`` the oldest queued event
    is dropped (and logged) to make room, so delivery never blocks the stream.
    """

    def __init__(self, event_type, callback, remover, maxsize=0):
        self.id = uuid.uuid4().hex
        self.event_type = event_type
        self.callback = callback
        self.active = True
        self._remover = remover
        self._queue = queue.Queue(maxsize)
        self._thread = None
        self.logger = logging.getLogger(f"{self.__class__.__name__} {event_type}")

    def __repr__(self):
        return f"ListenerHandle({self.event_type!r}, active={self.active})"

    def __iter__(self):
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def matches(self, event):
        return event.type == ERROR or self.event_type in (ANY, event.type)

    def get(self, timeout=None):
        """
        Next event, or None once the registration has been released.

        :raises queue.Empty: if nothing arrives within ``timeout`` seconds.
        """
        event = self._queue.get(timeout=timeout)
        if event is _RELEASED:
            self._queue.put(_RELEASED)  # keep answering None
            return None
        return event

    def remove(self):
        return self._remover(self)

    def _deliver(self, event):
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                pass
            try:
                dropped = self._queue.get_nowait()
            except queue.Empty:
                continue
            self.logger.warning(f"Queue full ({self._queue.maxsize}), dropping {dropped!r}")

    def _start(self):
        if self.callback is None or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, daemon=True, name=f"firetree-listener-{self.id[:8]}")
        self._thread.start()

    def _release(self):
        self.active = False
        self._deliver(_RELEASED)

    def _run(self):
        while True:
            event = self._queue.get()
            if event is _RELEASED:
                return
            try:
                self.callback(event)
            except Exception:
                self.logger.error(f"Listener callback failed on {event!r}", exc_info=True)


class _Session:
    def __init__(self, response):
        self.response = response
        self.cancelled = threading.Event()
        self.thread = None


class Watcher:
    """
    Streaming state of one Reference: at most one session, plus the listener
    registry. ``lock`` is the owning Reference's lock.

    Registrations made while idle attach to the next session. Ending a session,
    by stop() or failure, releases every registration.
    """

    def __init__(self, transport, lock, name=""):
        self.transport = transport
        self.lock = lock
        self.listeners = {}
        self.session = None
        self._connecting = None   # token of a start() waiting on the server
        self.logger = logging.getLogger(f"{self.__class__.__name__} {name}")

    @property
    def active(self):
        with self.lock:
            return self.session is not None

    def add_listener(self, event_type=ANY, callback=None, maxsize=0):
        if event_type != ANY and event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type {event_type!r}")
        if not isinstance(maxsize, int) or maxsize < 0:
            raise ValueError(f"maxsize must be a non-negative int, got {maxsize!r}")
        handle = ListenerHandle(event_type, callback, self.remove_listener, maxsize)
        with self.lock:
            self.listeners[handle.id] = handle
            if self.session is not None:
                handle._start()
        return handle

    def remove_listener(self, handle):
        with self.lock:
            removed = self.listeners.pop(handle.id, None)
        if removed is None:
            return False
        removed._release()
        return True

    def listener_count(self):
        with self.lock:
            return len(self.listeners)

    def start(self, url):
        with self.lock:
            if self.session is not None or self._connecting is not None:
                raise StreamActiveError("Already watching this reference")
            token = self._connecting = object()
        # connect without the lock, a slow server must not block the Reference
        try:
            response = self.transport.open_stream(url)
        except BaseException:
            with self.lock:
                if self._connecting is token:
                    self._connecting = None
            raise
        with self.lock:
            if self._connecting is not token:
                # stop() arrived while connecting
                response.close()
                self.logger.info("Watch cancelled while connecting")
                return
            self._connecting = None
            session = _Session(response)
            self.session = session
            for handle in self.listeners.values():
                handle._start()
            session.thread = threading.Thread(target=self._run, args=(session,), daemon=True, name="firetree-watch")
            session.thread.start()
        self.logger.info("Watching")

    def stop(self):
        with self.lock:
            session = self.session
            if session is None:
                if self._connecting is None:
                    return False
                self._connecting = None
                self._release_all()
                self.logger.info("Stopped watching before the stream connected")
                return True
            self._end(session)
        if session.thread is not threading.current_thread():
            session.thread.join(self.transport.config.timeout)
            if session.thread.is_alive():
                self.logger.warning("Decode thread still blocked on the closed connection")
        self.logger.info("Stopped watching")
        return True

    def _end(self, session):
        # lock held
        session.cancelled.set()
        self.session = None
        try:
            session.response.close()
        except Exception:
            self.logger.warning("Error closing stream connection", exc_info=True)
        self._release_all()

    def _release_all(self):
        # lock held
        for handle in self.listeners.values():
            handle._release()
        self.listeners.clear()

    def _dispatch(self, session, events):
        with self.lock:
            if self.session is not session:
                return
            for handle in self.listeners.values():
                for event in events:
                    if handle.matches(event):
                        handle._deliver(event)

    def _fail(self, session, error):
        with self.lock:
            if self.session is not session:
                return
            self.logger.error(f"Stream terminated: {error}")
            terminal = ChangeEvent(ERROR, "/", error)
            for handle in self.listeners.values():
                handle._deliver(terminal)
            self._end(session)

    def _read(self, session):
        # chunk_size=None hands over each chunk as soon as it arrives
        decoder = FrameDecoder()
        for chunk in session.response.iter_content(chunk_size=None):
            if session.cancelled.is_set():
                return
            yield from decoder.feed_chunk(chunk)

    def _run(self, session):
        snapshot = Snapshot()
        error = None
        try:
            for event in self._read(session):
                if session.cancelled.is_set():
                    return
                events = [event]
                if event.type in (PUT, PATCH):
                    events += snapshot.apply(event)
                self._dispatch(session, events)
                if event.type in (CANCEL, AUTH_REVOKED):
                    error = StreamTerminatedError(f"Server sent {event.type}: {event.data}")
                    break
            else:
                error = StreamTerminatedError("Stream closed by server")
        except Exception as e:
            if session.cancelled.is_set():
                return
            self.logger.error("Stream read failed", exc_info=True)
            error = classify_error(e)
        if not session.cancelled.is_set():
            self._fail(session, error)
