"""
Exception taxonomy for the venue adapter layer.

**Conceptual**: Every failure the adapter layer can surface falls into one of
four buckets:

  - ConfigurationError: an adapter operation was called before configure(),
    or with a config that belongs to another venue family.
  - VenueConnectionError: the streaming socket could not be opened, was lost,
    or a stream-only operation was attempted without a live session.
  - RequestError: a REST call returned a non-2xx status (or never got a
    response at all).
  - NormalizationError: a streaming payload could not be translated into a
    canonical record. The connection manager logs and drops these; they never
    reach callers.

All of them derive from AdapterError so callers can catch the whole family
in one clause.
"""

from typing import Optional


class AdapterError(Exception):
    """Base exception for all venue adapter errors."""
    pass


class ConfigurationError(AdapterError):
    """
    Raised when an adapter is used before configure() or with a bad config.

    **Recovery**: call configure() with a VenueConfig for the adapter's family.
    """
    pass


class VenueConnectionError(AdapterError, ConnectionError):
    """
    Raised when the streaming session is unavailable.

    Subclasses the builtin ConnectionError so generic network handlers also
    catch it. Once the connection manager is inside its reconnect loop this is
    never raised; connection state is reported through is_connected instead.
    """
    pass


class RequestError(AdapterError):
    """
    Raised when a REST request fails.

    Attributes:
        status_code: HTTP status returned by the venue, or None when the
                     request never produced a response (DNS, refused, reset).
        body: Response body text (or transport error description).
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NormalizationError(AdapterError, ValueError):
    """Raised by normalizers when a payload has the right shape but bad values."""
    pass
