class PairingError(Exception):
    """Base error for pairing operations. ``status_code`` is the HTTP mapping used by the routes."""

    status_code = 500
    hint: str | None = None

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if hint is not None:
            self.hint = hint


class InvalidOverride(PairingError):
    status_code = 400


class MemberNotFound(InvalidOverride):
    status_code = 404


class ConcurrencyConflict(PairingError):
    status_code = 409
    hint = "Retry once the current operation has finished."


class StorageFailure(PairingError):
    status_code = 503


class DuplicatePartnership(StorageFailure):
    status_code = 409


class ReshuffleTimeout(StorageFailure):
    status_code = 504


class InvalidRequest(PairingError):
    status_code = 400


class RequestNotFound(InvalidRequest):
    status_code = 404


class RequestForbidden(InvalidRequest):
    status_code = 403
