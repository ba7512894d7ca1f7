"""
core/errors.py -- Error taxonomy shared by every Oynas layer.

Stores, the token issuer and the authorization gate raise these; the API
layer maps each class to an HTTP status and a machine-readable code in one
place (api/main.py). Nothing below api/ knows about HTTP.

Hierarchy:
  OynasError
    RecordNotFound
    EditConflict
    DuplicateEmail
    InvalidRatingFormat        (also ValueError -- Pydantic validators turn it into a 422)
    Forbidden
      AuthenticationRequired   (raised for the anonymous identity)
    AccountNotActivated
    InvalidOrExpiredToken
    PersistenceError
      PersistenceTimeout
    WeakHashingError
    CorruptPasswordHash

Layer rule: core/ is the kernel. No imports from api/, auth/, or catalog/.
"""


class OynasError(Exception):
    """Base class for every error raised by Oynas code."""

    message = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class RecordNotFound(OynasError):
    message = "The requested resource could not be found."


class EditConflict(OynasError):
    """A version-matched write found no row at the expected version.

    The record was modified (or deleted) after it was read. Callers re-fetch
    and retry, or surface the conflict -- nothing retries automatically.
    """

    message = "Unable to update the record due to an edit conflict, please try again."


class DuplicateEmail(OynasError):
    message = "A user with this email address already exists."


class InvalidRatingFormat(OynasError, ValueError):
    message = "Invalid rating format."


class Forbidden(OynasError):
    message = "Your user account doesn't have the necessary permissions to access this resource."


class AuthenticationRequired(Forbidden):
    message = "You must be authenticated to access this resource."


class AccountNotActivated(OynasError):
    message = "Your user account must be activated to access this resource."


class InvalidOrExpiredToken(OynasError):
    message = "Invalid or missing authentication token."


class PersistenceError(OynasError):
    """Backing-store failure that is not otherwise classified."""

    message = "The backing store failed to complete the operation."


class PersistenceTimeout(PersistenceError):
    message = "The backing store did not complete the operation in time."


class WeakHashingError(OynasError):
    """The hashing primitive itself failed. Never raised for password policy."""

    message = "Password hashing failed."


class CorruptPasswordHash(OynasError):
    """The stored hash could not be used for verification (distinct from a mismatch)."""

    message = "Stored password hash is unusable."
