"""
firetree - a client for the Firebase Realtime Database REST API.
"""

from firetree.config import Config, DEFAULT_TIMEOUT
from firetree.errors import (FiretreeError, RequestTimeoutError, NetworkError, RedirectLimitError,
                             RemoteRejectedError, DecodeError, StreamTerminatedError, StreamActiveError)
from firetree.events import ChangeEvent
from firetree.reference import Reference
from firetree.stream import ListenerHandle
from firetree.transport import Transport

__version__ = "1.0.0"

__all__ = [
    "Config", "DEFAULT_TIMEOUT", "Reference", "Transport", "ChangeEvent", "ListenerHandle",
    "FiretreeError", "RequestTimeoutError", "NetworkError", "RedirectLimitError",
    "RemoteRejectedError", "DecodeError", "StreamTerminatedError", "StreamActiveError",
]
