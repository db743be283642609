"""Error taxonomy shared by the store gateways, ledger and orchestrator.

Idempotence-class errors (:class:`DuplicateError`, :class:`NotFoundError`)
are absorbed by the orchestrator and reported as success.  Everything else
propagates to the caller with the displayed state rolled back.
"""

from enum import Enum


class ErrorKind(str, Enum):
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    TRANSIENT = "transient"
    ASSEMBLY = "assembly"


class TrackingError(Exception):
    """Base class for every store / tracking failure."""

    kind: ErrorKind
    retryable = False

    def __init__(self, message: str = "", *, collection: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.collection = collection


class DuplicateError(TrackingError):
    """The row already exists (unique constraint or pre-check)."""

    kind = ErrorKind.DUPLICATE


class NotFoundError(TrackingError):
    """Delete target was absent."""

    kind = ErrorKind.NOT_FOUND


class PermissionDeniedError(TrackingError):
    """Store policy (RLS / grants) refused the mutation."""

    kind = ErrorKind.PERMISSION


class TransientError(TrackingError):
    """Network or store unavailable; safe to retry."""

    kind = ErrorKind.TRANSIENT
    retryable = True


class AssemblyError(TrackingError):
    """A record-assembly fetch stage failed; the whole batch is void."""

    kind = ErrorKind.ASSEMBLY
    retryable = True


IDEMPOTENT_ERRORS = (DuplicateError, NotFoundError)

USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.PERMISSION: "You don't have permission to change this grant's tracking status.",
    ErrorKind.TRANSIENT: "We couldn't reach the server. Please try again.",
    ErrorKind.ASSEMBLY: "Your tracked grants could not be loaded. Please refresh.",
}
