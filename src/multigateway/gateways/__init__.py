"""Payment provider adapters."""

from .base import (
    GatewayAdapter,
    UnavailableGateway,
    InitiateResult,
    StatusResult,
    RefundResult,
    to_minor_units,
    from_minor_units,
    select_attempt,
)
from .stripe_gateway import StripeGateway, STRIPE_STATUS_MAP, STRIPE_REFUND_STATUS_MAP
from .razorpay_gateway import (
    RazorpayGateway,
    RAZORPAY_ORDER_STATUS_MAP,
    RAZORPAY_PAYMENT_STATUS_MAP,
    RAZORPAY_REFUND_STATUS_MAP,
)
from .simulator_gateway import SimulatorGateway, SimulatorConfig, SimulatedPayment
from .registry import GatewayRegistry, build_adapter

__all__ = [
    # Contract
    "GatewayAdapter",
    "UnavailableGateway",
    "InitiateResult",
    "StatusResult",
    "RefundResult",
    "to_minor_units",
    "from_minor_units",
    "select_attempt",
    # Adapters
    "StripeGateway",
    "RazorpayGateway",
    "SimulatorGateway",
    "SimulatorConfig",
    "SimulatedPayment",
    # Status tables
    "STRIPE_STATUS_MAP",
    "STRIPE_REFUND_STATUS_MAP",
    "RAZORPAY_ORDER_STATUS_MAP",
    "RAZORPAY_PAYMENT_STATUS_MAP",
    "RAZORPAY_REFUND_STATUS_MAP",
    # Registry
    "GatewayRegistry",
    "build_adapter",
]
