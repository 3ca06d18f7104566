"""
Booking error taxonomy; main.py renders these as {"detail", "code"} responses
"""


class BookingError(Exception):
    """Base class for user-actionable booking failures"""
    status_code = 400
    code = "booking_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class SlotUnavailable(BookingError):
    """This time slot is no longer available. Please pick another time."""
    status_code = 409
    code = "slot_unavailable"


class BookingCancelled(BookingError):
    """This booking has been cancelled and cannot be rescheduled."""
    status_code = 409
    code = "booking_cancelled"


class NotFound(BookingError):
    """Not found."""
    status_code = 404
    code = "not_found"


class PaymentMisconfigured(BookingError):
    """Online payments are not set up for this business."""
    status_code = 400
    code = "payment_misconfigured"


class ValidationError(BookingError):
    """Invalid booking request."""
    status_code = 422
    code = "validation_error"


class PaymentGatewayError(BookingError):
    """The payment processor could not be reached."""
    status_code = 502
    code = "payment_gateway_error"
