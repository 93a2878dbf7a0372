class StoreError(Exception):
    """Base class for one-time store exceptions."""

    status_code: int = 500


class InvalidInput(StoreError):
    """Raised when an upload is empty or malformed."""

    status_code = 400


class PayloadTooLarge(InvalidInput):
    """Raised when an upload exceeds the configured size limit."""

    status_code = 413


class NotFound(StoreError):
    """Raised when no record exists for a token."""

    status_code = 404


class Expired(StoreError):
    """Raised when a record aged past its time-to-live."""

    status_code = 404


class AlreadyConsumed(StoreError):
    """Raised when a record was already downloaded once."""

    status_code = 410


class IOFailure(StoreError):
    """Raised when the backing table can't be read or written."""

    status_code = 500
