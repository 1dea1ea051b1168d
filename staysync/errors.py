class StaysyncError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(StaysyncError):
    """Malformed caller input (bad date range, non-numeric id...). Never retried."""


class NotFoundError(StaysyncError):
    pass


class ParseError(StaysyncError):
    """Malformed calendar document. Fails the enclosing sync job only."""


class UpstreamError(StaysyncError):
    """Remote API or network failure, timeouts included."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class Cancelled(StaysyncError):
    """The caller withdrew interest. Distinct from a failure."""
