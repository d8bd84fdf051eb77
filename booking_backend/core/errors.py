"""Error taxonomy for the booking core.

Services raise these; the HTTP layer maps each class to a status code.
None of them is fatal, and a write that raises one has already been rolled
back.
"""


class BookingError(Exception):
    """Base class for recoverable booking failures."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(BookingError):
    """A referenced appointment, practitioner or requester does not exist."""

    status_code = 404


class ConflictError(BookingError):
    """The requested slot is held by another booking."""

    status_code = 409


class InvalidTransitionError(BookingError):
    """The status change is not in the state table."""

    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(f'Cannot change status from {current} to {requested}.')
        self.current = current
        self.requested = requested


class InvalidStateError(BookingError):
    """The operation is not allowed in the appointment's current status."""

    status_code = 409


class BookingValidationError(BookingError):
    status_code = 400


class PermissionDeniedError(BookingError):
    status_code = 403
