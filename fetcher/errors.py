"""
Error taxonomy for the fetcher.

Every error is handled at the smallest enclosing scope (one stop fetch,
one trip ingest, one stop event upsert) and never escapes a polling cycle.
Lines or stops rejected by the classifier are not errors; they are plain
boolean results.
"""


class FetcherError(Exception):
    """Base class for all fetcher errors."""


class UpstreamError(FetcherError):
    """Raised when talking to the journey-planning provider fails."""


class UpstreamTransportError(UpstreamError):
    """Network, HTTP status or JSON decoding failure. Retried next cycle."""


class UpstreamDataError(UpstreamError):
    """A well-formed response with missing or malformed fields."""


class StoreError(FetcherError):
    """A read or write against the persistent store failed."""
