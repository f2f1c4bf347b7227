import logging
import socket

import requests
from urllib3.exceptions import MaxRetryError, NewConnectionError
from urllib3.exceptions import TimeoutError as Urllib3TimeoutError

from firetree.async_compatible import LazyPool
from firetree.config import Config
from firetree.errors import FiretreeError, NetworkError, RedirectLimitError, RemoteRejectedError, RequestTimeoutError
from firetree.utils import redact_url

EVENT_STREAM_HEADERS = {"Accept": "text/event-stream"}


def _wraps_timeout(error):
    # walk causes, args and urllib3 retry reasons looking for a network timeout
    seen = set()
    stack = [error]
    while stack:
        e = stack.pop()
        if e is None or id(e) in seen:
            continue
        seen.add(id(e))
        if isinstance(e, NewConnectionError):
            continue  # subclasses ConnectTimeoutError but means refused/unreachable
        if isinstance(e, (Urllib3TimeoutError, socket.timeout)):
            return True
        if isinstance(e, MaxRetryError):
            stack.append(e.reason)
        stack.extend(a for a in getattr(e, "args", ()) if isinstance(a, BaseException))
        stack.append(e.__cause__)
        stack.append(e.__context__)
    return False


def classify_error(error):
    """
    Map an exception raised while talking to the server onto the firetree taxonomy.

    Timeouts show up three ways: a requests.Timeout when connecting or waiting
    for headers, a ConnectionError wrapping a urllib3/socket timeout, or a bare
    socket timeout. All of them become RequestTimeoutError.
    """
    if isinstance(error, FiretreeError):
        return error
    if isinstance(error, requests.exceptions.TooManyRedirects):
        return RedirectLimitError(str(error))
    if isinstance(error, requests.exceptions.Timeout):
        return RequestTimeoutError(str(error))
    if isinstance(error, requests.exceptions.RequestException):
        if _wraps_timeout(error):
            return RequestTimeoutError(str(error))
        return NetworkError(str(error))
    if isinstance(error, (socket.timeout, TimeoutError)):
        return RequestTimeoutError(str(error) or "timed out")
    if isinstance(error, OSError):
        return NetworkError(str(error))
    return NetworkError(f"{error.__class__.__name__}: {error}")


class RedirectPreservingSession(requests.Session):
    """
    requests drops Authorization (and anything set by auth hooks) when a
    redirect changes host. The database redirects between hosts, so copy the
    redirected request's headers onto every hop instead.
    """

    DROPPED_HEADERS = ("cookie", "content-length", "transfer-encoding")

    def __init__(self, redirect_limit=30):
        super().__init__()
        self.max_redirects = redirect_limit

    def rebuild_auth(self, prepared_request, response):
        previous = response.request
        if previous is None:
            return
        for key, value in previous.headers.items():
            if key.lower() in self.DROPPED_HEADERS:
                continue
            prepared_request.headers[key] = value


class Transport:
    """
    Issues requests for References. One Transport (and its connection pool) is
    normally shared by every Reference derived from the same root.
    """

    def __init__(self, config=None, session=None):
        self.config = config or Config()
        self.session = session if session is not None else RedirectPreservingSession(self.config.redirect_limit)
        self.session.headers.update(self.config.headers)
        self.pool = LazyPool(self.config.pool_size)
        self.logger = logging.getLogger(f"{self.__class__.__name__}")

    def __repr__(self):
        return f"Transport({self.config!r})"

    def send(self, method, url, body=None, headers=None, stream=False):
        # read the timeout per request; streams only bound the connect
        timeout = (self.config.timeout, None if stream else self.config.timeout)
        try:
            return self.session.request(method, url, data=body, headers=headers, timeout=timeout, stream=stream)
        except (requests.exceptions.RequestException, OSError) as error:
            raise classify_error(error) from error

    def execute(self, method, url, body=None, headers=None):
        """
        Run one request/response cycle.

        :return: The raw response body (bytes) for 2xx responses.
        :raises RemoteRejectedError: for any other status, carrying the body text.
        """
        self.logger.info(f"> {method} {redact_url(url)}")
        response = self.send(method, url, body=body, headers=headers)
        try:
            content = response.content or b""
        except (requests.exceptions.RequestException, OSError) as error:
            raise classify_error(error) from error
        finally:
            response.close()

        if not 200 <= response.status_code < 300:
            self.logger.error(f"< {response.status_code} {response.reason}")
            raise RemoteRejectedError(response.status_code, content.decode("utf-8", errors="replace"))
        self.logger.info(f"< {response.status_code} {response.reason}")
        return content

    def open_stream(self, url):
        """Open an event-stream connection and return the live response."""
        self.logger.info(f"> GET (stream) {redact_url(url)}")
        response = self.send("GET", url, headers=EVENT_STREAM_HEADERS, stream=True)
        if not 200 <= response.status_code < 300:
            try:
                body = response.content.decode("utf-8", errors="replace")
            except (requests.exceptions.RequestException, OSError) as error:
                raise classify_error(error) from error
            finally:
                response.close()
            self.logger.error(f"< {response.status_code} {response.reason}")
            raise RemoteRejectedError(response.status_code, body)
        self.logger.info(f"< {response.status_code} {response.reason} (streaming)")
        return response

    def close(self):
        self.pool.shutdown(wait=False)
        self.session.close()
