from typing import Optional


class ProoflyError(Exception):
    """Base for every error the trust/usage core raises on purpose."""


class ValidationError(ProoflyError):
    """Caller supplied malformed input (bad contact address, missing job fields)."""

    def __init__(self, message: str, fields: Optional[list] = None):
        super().__init__(message)
        self.fields = fields or []


class AuthError(ProoflyError):
    pass


class NotFoundError(ProoflyError):
    pass


class PersistenceError(ProoflyError):
    """Durable local write/read failed. Nothing was committed."""


class MirrorSyncError(ProoflyError):
    """Remote mirror write failed. Logged and queued, never raised to callers."""


class NotificationDispatchError(ProoflyError):
    """Email/SMS delivery failed after the request was already committed locally."""

    def __init__(self, message: str, request_id: Optional[str] = None, review_url: Optional[str] = None):
        super().__init__(message)
        self.request_id = request_id
        self.review_url = review_url


class PolicyLookupError(ProoflyError):
    """Tier could not be determined. Policy gates fail open on this."""


class PhotoLimitError(ProoflyError):
    """The job already holds its tier's maximum number of photos."""

    def __init__(self, current_count: int, limit: int):
        super().__init__(f"Maximum {limit} photos per job")
        self.current_count = current_count
        self.limit = limit


class InvalidTransitionError(ProoflyError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move remote signing request from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested
