"""
Errors raised by firetree. Every error carries a ``kind`` tag so callers can
branch on the failure class without inspecting transport exceptions.
"""


class FiretreeError(Exception):
    kind = "error"


class RequestTimeoutError(FiretreeError):
    """Connect, header or response-read deadline exceeded."""
    kind = "timeout"


class NetworkError(FiretreeError):
    """Any other connection-level failure."""
    kind = "network"


class RedirectLimitError(FiretreeError):
    kind = "redirect_limit"


class RemoteRejectedError(FiretreeError):
    """
    The server answered with a non-2xx status.

    :param status_code: HTTP status of the response.
    :param body: Raw response body text; the database puts its error message here.
    """
    kind = "rejected"

    def __init__(self, status_code, body):
        super().__init__(body)
        self.status_code = status_code
        self.body = body

    def __str__(self):
        return f"{self.status_code}: {self.body}"


class DecodeError(FiretreeError):
    kind = "decode"


class StreamTerminatedError(FiretreeError):
    """The event stream ended: connection lost, closed or revoked by the server."""
    kind = "stream_terminated"


class StreamActiveError(FiretreeError):
    kind = "stream_active"
