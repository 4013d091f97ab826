"""Simulator gateway for exercising payment flows without real provider calls."""

import itertools
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..errors import GatewayCommunicationError, NotRefundable
from ..status import PaymentStatus, REFUNDABLE_STATUSES, MappedStatus, map_native_status
from .base import (
    GatewayAdapter,
    InitiateResult,
    RefundResult,
    StatusResult,
    from_minor_units,
    select_attempt,
    status_fields,
    to_minor_units,
)

logger = logging.getLogger(__name__)

SIM_ORDER_STATUS_MAP: Dict[str, PaymentStatus] = {
    "created": PaymentStatus.PENDING_USER_ACTION,
    "attempted": PaymentStatus.PENDING_USER_ACTION,
    "paid": PaymentStatus.SUCCESS,
}

SIM_PAYMENT_STATUS_MAP: Dict[str, PaymentStatus] = {
    "created": PaymentStatus.PENDING,
    "authorized": PaymentStatus.AUTHORIZED,
    "captured": PaymentStatus.SUCCESS,
    "failed": PaymentStatus.FAILED,
    "partially_refunded": PaymentStatus.PARTIALLY_REFUNDED,
    "refunded": PaymentStatus.REFUNDED,
}

SIM_REFUND_STATUS_MAP: Dict[str, PaymentStatus] = {
    "processed": PaymentStatus.REFUNDED,
    "failed": PaymentStatus.REFUND_FAILED,
}

SIM_PAYMENT_RANK = {
    "refunded": 3,
    "partially_refunded": 3,
    "captured": 3,
    "authorized": 2,
    "failed": 1,
    "created": 0,
}
SETTLED = frozenset({"captured", "partially_refunded", "refunded", "authorized"})

_sequence = itertools.count(1)


@dataclass
class SimulatedPayment:
    """A customer's attempt to pay a simulated order."""
    id: str
    order_id: str
    amount: int
    status: str
    refunded_amount: int = 0
    created_at: int = field(default_factory=lambda: next(_sequence))


@dataclass
class SimulatedOrder:
    """In-memory representation of a simulated order (the initiation object)."""
    id: str
    amount: int
    currency: str
    status: str = "created"
    reference: Optional[str] = None
    payment_ids: List[str] = field(default_factory=list)


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    delay_ms: int = 0  # Simulated response delay in ms
    fail_refunds: bool = False  # Provider answers refunds with "failed"


class SimulatorGateway(GatewayAdapter):
    """
    In-process provider with order/payment identities like Razorpay: initiation
    returns a ``sim_order_`` id and settlement happens on ``sim_pay_`` payments.

    Special payment-method tokens (``details["token"]``) trigger scenarios:
    ``sim_success`` pays the order immediately, ``sim_requires_action`` (the
    default) leaves it waiting for the customer, ``sim_decline`` rejects the
    initiation and ``sim_timeout`` raises TimeoutError. Use ``complete_payment``
    to play the customer paying (or failing to pay).
    """

    TOKEN_SUCCESS = "sim_success"
    TOKEN_REQUIRES_ACTION = "sim_requires_action"
    TOKEN_DECLINE = "sim_decline"
    TOKEN_TIMEOUT = "sim_timeout"
    ORDER_PREFIX = "sim_order_"
    PAYMENT_PREFIX = "sim_pay_"

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()
        self._orders: Dict[str, SimulatedOrder] = {}
        self._payments: Dict[str, SimulatedPayment] = {}
        self._lock = threading.Lock()
        logger.info("SimulatorGateway initialized")

    @property
    def name(self) -> str:
        return "simulator"

    def is_intermediate_id(self, provider_id: Optional[str]) -> bool:
        return bool(provider_id) and provider_id.startswith(self.ORDER_PREFIX)

    def _apply_delay(self) -> None:
        if self.config.delay_ms > 0:
            time.sleep(self.config.delay_ms / 1000.0)

    def _not_found(self, provider_id: str) -> GatewayCommunicationError:
        return GatewayCommunicationError(
            f"Simulator has no object {provider_id}", declined=True, gateway_name=self.name
        )

    def initiate(
        self,
        amount: Decimal,
        currency_code: str,
        payment_method: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        reference: Optional[str] = None,
    ) -> InitiateResult:
        self.check_initiate_args(amount, currency_code)
        self._apply_delay()
        token = (details or {}).get("token", "")
        if token == self.TOKEN_TIMEOUT:
            raise TimeoutError("Simulated timeout")
        if token == self.TOKEN_DECLINE:
            raise GatewayCommunicationError(
                "Simulated decline: card_declined", declined=True, gateway_name=self.name
            )

        order = SimulatedOrder(
            id=f"{self.ORDER_PREFIX}{uuid.uuid4().hex[:20]}",
            amount=to_minor_units(amount),
            currency=currency_code.upper(),
            reference=reference,
        )
        with self._lock:
            self._orders[order.id] = order
        if token == self.TOKEN_SUCCESS:
            self.complete_payment(order.id)
        mapped = map_native_status(SIM_ORDER_STATUS_MAP, order.status, self.name)
        return InitiateResult(
            provider_id=order.id,
            message=f"Simulated order created. Complete the payment for order {order.id}.",
            provider_payload={"simulator": True, "order_id": order.id},
            **status_fields(mapped),
        )

    def complete_payment(self, order_id: str, success: bool = True, capture: bool = True) -> SimulatedPayment:
        """Record a customer payment attempt against ``order_id`` (simulator-specific)."""
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise self._not_found(order_id)
            if success:
                status = "captured" if capture else "authorized"
            else:
                status = "failed"
            payment = SimulatedPayment(
                id=f"{self.PAYMENT_PREFIX}{uuid.uuid4().hex[:20]}",
                order_id=order_id,
                amount=order.amount,
                status=status,
            )
            self._payments[payment.id] = payment
            order.payment_ids.append(payment.id)
            order.status = "paid" if status == "captured" else "attempted"
            return payment

    def capture(self, payment_id: str) -> SimulatedPayment:
        """Capture an authorized simulated payment (simulator-specific)."""
        with self._lock:
            payment = self._payments.get(payment_id)
            if payment is None:
                raise self._not_found(payment_id)
            if payment.status == "authorized":
                payment.status = "captured"
                self._orders[payment.order_id].status = "paid"
            return payment

    def _payment_result(self, payment: SimulatedPayment) -> StatusResult:
        mapped = map_native_status(SIM_PAYMENT_STATUS_MAP, payment.status, self.name)
        return StatusResult(
            provider_id=payment.id,
            message=f"Simulated payment status: {payment.status}",
            provider_payload={
                "simulator": True,
                "order_id": payment.order_id,
                "payment_id": payment.id,
                "refunded_amount": payment.refunded_amount,
            },
            refunded_amount=from_minor_units(payment.refunded_amount),
            **status_fields(mapped),
        )

    def query_status(self, provider_id: str) -> StatusResult:
        self._apply_delay()
        with self._lock:
            if not self.is_intermediate_id(provider_id):
                payment = self._payments.get(provider_id)
                if payment is None:
                    raise self._not_found(provider_id)
                return self._payment_result(payment)

            order = self._orders.get(provider_id)
            if order is None:
                raise self._not_found(provider_id)
            attempts = [asdict(self._payments[pid]) for pid in order.payment_ids]
            best = select_attempt(attempts, SIM_PAYMENT_RANK)
            if best is not None and best["status"] in SETTLED:
                return self._payment_result(self._payments[best["id"]])

            mapped = map_native_status(SIM_ORDER_STATUS_MAP, order.status, self.name)
            return StatusResult(
                provider_id=order.id,
                message=f"Simulated order status: {order.status}",
                provider_payload={"simulator": True, "order_id": order.id},
                **status_fields(mapped),
            )

    def refund(self, provider_id: str, amount: Optional[Decimal] = None) -> RefundResult:
        if self.is_intermediate_id(provider_id):
            provider_id = self.query_status(provider_id).provider_id
            if self.is_intermediate_id(provider_id):
                raise NotRefundable(
                    f"Cannot refund: no settled payment for order {provider_id}",
                    gateway_name=self.name,
                )
        self._apply_delay()
        with self._lock:
            payment = self._payments.get(provider_id)
            if payment is None:
                raise self._not_found(provider_id)
            current = map_native_status(SIM_PAYMENT_STATUS_MAP, payment.status, self.name)
            if current.status not in REFUNDABLE_STATUSES:
                raise NotRefundable(
                    f"Simulated payment {payment.id} is not refundable (status: {payment.status})",
                    gateway_name=self.name,
                )
            remaining = from_minor_units(payment.amount - payment.refunded_amount)
            to_refund = self.check_refund_amount(amount, remaining)

            refund_status = "failed" if self.config.fail_refunds else "processed"
            outcome: MappedStatus = map_native_status(SIM_REFUND_STATUS_MAP, refund_status, self.name)
            status = outcome.status
            if status is PaymentStatus.REFUNDED:
                payment.refunded_amount += to_minor_units(to_refund)
                if payment.refunded_amount < payment.amount:
                    payment.status = "partially_refunded"
                    status = PaymentStatus.PARTIALLY_REFUNDED
                else:
                    payment.status = "refunded"

            refund_id = f"sim_rfnd_{uuid.uuid4().hex[:20]}"
            return RefundResult(
                refund_id=refund_id,
                provider_id=payment.id,
                status=status,
                amount=to_refund,
                native_status=outcome.native,
                message=f"Simulated refund {refund_status}",
                provider_payload={"simulator": True, "refund_id": refund_id, "refund_status": refund_status},
            )

    def get_payment(self, payment_id: str) -> Optional[SimulatedPayment]:
        """Get a payment from in-memory storage (for testing)."""
        return self._payments.get(payment_id)

    def health_check(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "provider": "simulator",
            "order_count": len(self._orders),
            "payment_count": len(self._payments),
        }
