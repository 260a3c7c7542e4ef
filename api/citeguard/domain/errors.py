class CiteGuardError(Exception):
    """Base error for citation hygiene operations."""


class NotFoundError(CiteGuardError):
    """Raised when a job, chunk, revision or article does not exist."""


class RollbackExpiredError(CiteGuardError):
    """Raised when a revision's rollback window has passed."""

    reason = "expired"


class RollbackAlreadyUsedError(CiteGuardError):
    """Raised when a revision was already rolled back or is not rollbackable."""

    reason = "already_used"


class ExternalServiceError(CiteGuardError):
    """Raised when an AI/search API call fails, times out or answers non-2xx."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AIResponseParseError(CiteGuardError):
    """Raised when an AI response does not contain the expected JSON payload."""

    def __init__(self, message: str, *, raw_excerpt: str = "") -> None:
        super().__init__(message)
        self.raw_excerpt = raw_excerpt
