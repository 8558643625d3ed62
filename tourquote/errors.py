"""Exception taxonomy for the estimate pipeline."""


class TourQuoteError(Exception):
    """Base exception for tourquote errors."""

    pass


class NotFoundError(TourQuoteError):
    """Raised when a session, estimate, item or catalog entry does not exist."""

    pass


class StateConflictError(TourQuoteError):
    """Raised when an operation is attempted from an illegal lifecycle state."""

    def __init__(self, message: str, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status


class UpstreamUnavailableError(TourQuoteError):
    """Raised when retrieval or drafting fails or times out.

    Never reaches callers of the orchestrator; it always triggers the
    placeholder fallback.
    """

    pass


class PersistenceError(TourQuoteError):
    """Raised when the transactional estimate write fails.

    Nothing was committed, so the attempt is safe to retry.
    """

    pass
