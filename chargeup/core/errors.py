"""
Charge flow error taxonomy.

Every error carries a stable machine-readable code, the HTTP status the API
maps it to, and a single human-readable message shown to the driver or owner.
"""
from typing import Optional


class ChargeFlowError(Exception):
    """Base exception for charge flow and settlement errors"""
    code = "error"
    status_code = 400
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class AlreadyOccupied(ChargeFlowError):
    """Station is held by another driver (or deactivated by its owner)"""
    code = "already_occupied"
    status_code = 409
    default_message = "This station is currently in use. Please pick another station."


class NotReserved(ChargeFlowError):
    """Station is not en route for this driver"""
    code = "not_reserved"
    status_code = 409
    default_message = "You do not have an active reservation for this station."


class TooFar(ChargeFlowError):
    code = "too_far"
    status_code = 422
    default_message = "You must be within 0.5 miles to start charging."


class Busy(ChargeFlowError):
    """Driver already navigating to or charging at another station"""
    code = "busy"
    status_code = 409
    default_message = "You're already navigating to or charging at a station."


class BillingRequired(ChargeFlowError):
    code = "billing_required"
    status_code = 402
    default_message = "Please set up your billing information before starting a charge."


class DuplicateActiveSession(ChargeFlowError):
    code = "duplicate_active_session"
    status_code = 409
    default_message = "You already have an active charge session."


class NoPaymentMethod(ChargeFlowError):
    code = "no_payment_method"
    status_code = 402
    default_message = "No card on file for this driver."


class NotFound(ChargeFlowError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class AlreadyClosed(ChargeFlowError):
    code = "already_closed"
    status_code = 409
    default_message = "This charge session has already ended."


class Unavailable(ChargeFlowError):
    """Transient failure talking to the store or a remote provider"""
    code = "unavailable"
    status_code = 503
    default_message = "Service temporarily unavailable. Please try again."


class PaymentFailed(ChargeFlowError):
    """Capture, authorization or transfer rejected by the payment provider"""
    code = "payment_failed"
    status_code = 402
    default_message = "Payment could not be processed."


class Forbidden(ChargeFlowError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to modify this resource."


class InvalidStation(ChargeFlowError):
    code = "invalid_station"
    status_code = 400
    default_message = "Please fill in all station fields."
