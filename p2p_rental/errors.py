"""Exceptions raised by the booking core.

Routes translate these into JSON error responses; nothing in the core
retries on its own.
"""


class RentalError(Exception):
    """Base class for all booking-core errors"""
    status_code = 400


class StepBlockedError(RentalError):
    """Input for the current step is incomplete; the step cannot advance yet."""
    status_code = 409


class InvalidTransitionError(RentalError):
    """Requested state or status change is not allowed from the current one."""
    status_code = 409


class SessionClosedError(RentalError):
    """Action attempted on a session that was abandoned or already finished."""
    status_code = 409


class ContractUnavailableError(StepBlockedError):
    """Listing asks for a custom contract but has no document to point at."""


class BookingStoreError(RentalError):
    """Persisting or loading a booking failed."""
    status_code = 502


class PaymentError(RentalError):
    """The payment collector rejected or could not process the charge."""
    status_code = 402


class ImageUploadError(RentalError):
    """Uploaded file is missing or is not a readable image."""
    status_code = 400
