class BillingError(Exception):
    reason = "billing_error"

    def __init__(self, message: str, reason: str = None):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason


class ConflictError(BillingError):
    reason = "conflict"


class NotFoundError(BillingError):
    reason = "not_found"


class AuthorizationError(BillingError):
    reason = "not_authorized"


class InvalidStateError(BillingError):
    """Illegal transition. `reason` tells the caller which one."""

    reason = "invalid_state"


class InvalidRequestError(BillingError):
    reason = "invalid_request"


class ChargeError(BillingError):
    reason = "charge_unavailable"
