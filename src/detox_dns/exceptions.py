"""Exceptions raised by detox-dns components."""


class DetoxError(Exception):
    """Base class for detox-dns errors."""


class TransportError(DetoxError):
    """
    A resolver could not be reached or gave no usable reply.

    Covers socket errors, timeouts, TLS failures, HTTP errors from a DoH
    upstream, empty or unparsable responses and mismatching message ids.
    """

    def __init__(self, message: str, resolver: str = None):
        super().__init__(message)
        self.resolver = resolver


class CacheIOError(DetoxError):
    """The detection cache snapshot could not be read or written."""

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path
