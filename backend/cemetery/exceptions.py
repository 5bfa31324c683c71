"""
Typed exceptions for purchase and payment processing.

Every error carries a machine-readable ``code`` and the HTTP status it maps
to, so routes never have to parse messages:

    CemeteryError
    +-- ValidationError             (400)
    +-- OwnershipError              (403)
    +-- NotFoundError               (404)
    +-- StateConflictError          (409)
    |   +-- RedemptionConflictError
    |   +-- PricingConfigurationError
    +-- GatewayError                (502)
        +-- GatewayConfigurationError
"""
from typing import Optional


class CemeteryError(Exception):
    """Base class for all domain errors."""

    code: str = "CEMETERY_ERROR"
    status_code: int = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(CemeteryError):
    """Request data is malformed or violates an amount/format rule."""

    code = "VALIDATION_ERROR"
    status_code = 400


class OwnershipError(CemeteryError):
    """The caller does not own the purchase or payment."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(CemeteryError):
    code = "NOT_FOUND"
    status_code = 404


class StateConflictError(CemeteryError):
    """The entity is in a state that does not allow the operation."""

    code = "STATE_CONFLICT"
    status_code = 409


class RedemptionConflictError(StateConflictError):
    code = "ALREADY_REDEEMED"


class PricingConfigurationError(StateConflictError):
    code = "PRICING_NOT_CONFIGURED"


class GatewayError(CemeteryError):
    """The payment gateway rejected the request or could not be reached."""

    code = "GATEWAY_ERROR"
    status_code = 502


class GatewayConfigurationError(GatewayError):
    code = "GATEWAY_NOT_CONFIGURED"
