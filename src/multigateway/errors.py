"""Error taxonomy for gateway operations.

Every failure the core can produce is one of the classes below, each tagged
with an ``ErrorCode``. The orchestrator converts them into ``PaymentResult``
objects so callers match on the tag instead of catching exceptions.
"""

import enum
from typing import Optional


class ErrorCode(str, enum.Enum):
    """Tags for the known failure kinds."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNSUPPORTED_GATEWAY = "UNSUPPORTED_GATEWAY"
    NO_GATEWAY_CONFIGURED = "NO_GATEWAY_CONFIGURED"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    GATEWAY_COMMUNICATION_ERROR = "GATEWAY_COMMUNICATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    GATEWAY_MISMATCH = "GATEWAY_MISMATCH"
    NOT_REFUNDABLE = "NOT_REFUNDABLE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class GatewayError(Exception):
    """Base class for all gateway failures."""
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        internal_id: Optional[str] = None,
        gateway_name: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.internal_id = internal_id
        self.gateway_name = gateway_name


class UnsupportedGateway(GatewayError):
    code = ErrorCode.UNSUPPORTED_GATEWAY


class NoGatewayConfigured(GatewayError):
    code = ErrorCode.NO_GATEWAY_CONFIGURED


class GatewayUnavailable(GatewayError):
    code = ErrorCode.GATEWAY_UNAVAILABLE


class GatewayCommunicationError(GatewayError):
    """A provider call failed or timed out.

    ``declined`` marks a definitive rejection by the provider (bad card,
    invalid request), as opposed to a transport or server problem.
    ``timed_out`` marks a call whose true outcome is unknown.
    """
    code = ErrorCode.GATEWAY_COMMUNICATION_ERROR

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        declined: bool = False,
        timed_out: bool = False,
        internal_id: Optional[str] = None,
        gateway_name: Optional[str] = None,
    ):
        super().__init__(message, internal_id=internal_id, gateway_name=gateway_name)
        self.cause = cause
        self.declined = declined
        self.timed_out = timed_out


class NotFound(GatewayError):
    code = ErrorCode.NOT_FOUND


class GatewayMismatch(GatewayError):
    code = ErrorCode.GATEWAY_MISMATCH


class NotRefundable(GatewayError):
    code = ErrorCode.NOT_REFUNDABLE


class InvalidAmount(GatewayError):
    code = ErrorCode.INVALID_AMOUNT


class InternalError(GatewayError):
    code = ErrorCode.INTERNAL_ERROR


class InvalidRequest(GatewayError):
    """Arguments an adapter refuses before contacting its provider."""
    code = ErrorCode.VALIDATION_ERROR
