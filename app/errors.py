from __future__ import annotations


class PharmacyError(Exception):
    """Base for failures that are shown to the user and leave the UI re-triable."""

    status_code = 400
    message = 'Operation failed'

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    @property
    def user_message(self) -> str:
        return str(self)


class AuthFailure(PharmacyError):
    status_code = 401
    message = 'Invalid email or password'


class ProfileLookupFailure(PharmacyError):
    status_code = 503
    message = 'Profile could not be loaded'


class ReferenceNotFound(PharmacyError):
    status_code = 404
    message = 'Referenced record no longer exists'


class InsufficientStock(PharmacyError):
    status_code = 409

    def __init__(self, *, medicine_name: str, available: int, requested: int) -> None:
        self.medicine_name = medicine_name
        self.available = available
        self.requested = requested
        super().__init__(f'Insufficient stock for {medicine_name}: {available} available, {requested} requested')


class EmptyPrescription(PharmacyError):
    message = 'A prescription needs at least one medicine'


class PartialWriteInconsistency(PharmacyError):
    status_code = 500
    message = 'The change could not be saved. Please try again.'

    def __init__(self, operation: str, *, compensated: bool, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.compensated = compensated
        self.cause = cause
        super().__init__()
