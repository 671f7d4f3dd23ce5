"""Exception types shared across feedcircle modules."""


class FeedCircleError(Exception):
    """Base class for all feedcircle errors."""


class FetchError(FeedCircleError):
    """Raised when a single source's feed cannot be fetched or parsed."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class TransportError(FetchError):
    """Connection-level failure (refused, reset, timeout). Retryable."""


class UpstreamStatusError(FetchError):
    """The feed server answered with a non-success HTTP status."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class ParseError(FetchError):
    """The response body is not a usable syndication feed."""


class DirectoryError(FeedCircleError):
    """The friend directory could not be loaded; the whole cycle is aborted."""


class PersistenceError(FeedCircleError):
    """The digest could not be written or read."""


class ConfigurationError(FeedCircleError):
    """A component was given an invalid configuration value."""
