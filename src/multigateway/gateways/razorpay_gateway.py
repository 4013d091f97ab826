"""Razorpay adapter built on Orders and Payments.

Initiation creates an Order; the customer then pays against it, producing one
or more Payment attempts. The order id (``order_...``) is therefore an
intermediate identifier. Status queries resolve it to the settlement-level
payment id (``pay_...``) once one exists.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

import razorpay
from razorpay.errors import BadRequestError, GatewayError, ServerError
import requests

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

RAZORPAY_ERRORS = (
    BadRequestError,
    GatewayError,
    ServerError,
    requests.RequestException,
)

RAZORPAY_ORDER_STATUS_MAP: Dict[str, PaymentStatus] = {
    "created": PaymentStatus.PENDING_USER_ACTION,
    "attempted": PaymentStatus.PENDING_USER_ACTION,
    "paid": PaymentStatus.SUCCESS,
}

RAZORPAY_PAYMENT_STATUS_MAP: Dict[str, PaymentStatus] = {
    "created": PaymentStatus.PENDING,
    "authorized": PaymentStatus.AUTHORIZED,
    "captured": PaymentStatus.SUCCESS,
    "failed": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
}

# REFUNDED means "accepted"; refined to PARTIALLY_REFUNDED when money remains.
RAZORPAY_REFUND_STATUS_MAP: Dict[str, PaymentStatus] = {
    "processed": PaymentStatus.REFUNDED,
    "pending": PaymentStatus.REFUNDED,
    "failed": PaymentStatus.REFUND_FAILED,
}

# Attempt ranking: settled/captured > authorized > attempted > created.
PAYMENT_RANK = {
    "captured": 3,
    "refunded": 3,
    "authorized": 2,
    "failed": 1,
    "created": 0,
}
SETTLEMENT_STATES = frozenset({"captured", "refunded", "authorized"})


def select_payment(payments: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    return select_attempt(payments, PAYMENT_RANK)


def map_payment_status(payment: Dict[str, Any]) -> MappedStatus:
    mapped = map_native_status(RAZORPAY_PAYMENT_STATUS_MAP, payment.get("status"), "razorpay")
    refunded = int(payment.get("amount_refunded") or 0)
    if mapped.status is PaymentStatus.SUCCESS and refunded > 0:
        amount = int(payment.get("amount") or 0)
        status = PaymentStatus.REFUNDED if refunded >= amount else PaymentStatus.PARTIALLY_REFUNDED
        return MappedStatus(status, mapped.native)
    return mapped


class RazorpayGateway(GatewayAdapter):
    """Razorpay adapter. ``client`` may be injected; otherwise one is built from the keys."""

    ORDER_PREFIX = "order_"

    def __init__(self, key_id: str, key_secret: str, client: Optional[razorpay.Client] = None):
        if client is None:
            if not key_id or not key_secret:
                raise ValueError("Razorpay key id and key secret must be provided")
            client = razorpay.Client(auth=(key_id, key_secret))
        self._client = client
        logger.info("Razorpay client initialized successfully.")

    @property
    def name(self) -> str:
        return "razorpay"

    def is_intermediate_id(self, provider_id: Optional[str]) -> bool:
        return bool(provider_id) and provider_id.startswith(self.ORDER_PREFIX)

    def _wrap(self, action: str, provider_id: Optional[str], e: Exception) -> GatewayCommunicationError:
        logger.error(f"Razorpay API error during {action} for {provider_id or 'new order'}: {e}")
        return GatewayCommunicationError(
            f"Razorpay {action} failed: {e}",
            cause=e,
            declined=isinstance(e, BadRequestError),
            gateway_name=self.name,
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
        order_request: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": currency_code.upper(),
        }
        if reference:
            order_request["receipt"] = reference
        notes = {k: str(v) for k, v in (details or {}).items()}
        if payment_method:
            notes["payment_method"] = payment_method
        if notes:
            order_request["notes"] = notes

        try:
            order = self._client.order.create(data=order_request)
        except RAZORPAY_ERRORS as e:
            raise self._wrap("payment", None, e) from e

        order_id = order["id"]
        mapped = map_native_status(RAZORPAY_ORDER_STATUS_MAP, order.get("status"), self.name)
        logger.info(f"Razorpay Order created: {order_id} for reference {reference}")
        return InitiateResult(
            provider_id=order_id,
            message=(
                "Razorpay order created successfully. Please complete the payment "
                f"using the order_id: {order_id}"
            ),
            provider_payload={"razorpay_order_id": order_id},
            **status_fields(mapped),
        )

    def _payment_result(self, payment: Dict[str, Any], order_id: Optional[str]) -> StatusResult:
        mapped = map_payment_status(payment)
        payload = {"razorpay_payment_id": payment["id"], "razorpay_status": payment.get("status")}
        if order_id or payment.get("order_id"):
            payload["razorpay_order_id"] = order_id or payment.get("order_id")
        return StatusResult(
            provider_id=payment["id"],
            message=f"Payment status retrieved successfully from Razorpay: {payment.get('status')}",
            provider_payload=payload,
            refunded_amount=from_minor_units(int(payment.get("amount_refunded") or 0)),
            **status_fields(mapped),
        )

    def query_status(self, provider_id: str) -> StatusResult:
        try:
            if not self.is_intermediate_id(provider_id):
                return self._payment_result(self._client.payment.fetch(provider_id), None)

            payments = self._client.order.payments(provider_id).get("items", [])
            best = select_payment(payments)
            if best is not None and str(best.get("status", "")).lower() in SETTLEMENT_STATES:
                logger.info(
                    f"Found Razorpay payment {best['id']} with status {best['status']} "
                    f"for order {provider_id}"
                )
                return self._payment_result(best, provider_id)

            order = self._client.order.fetch(provider_id)
        except RAZORPAY_ERRORS as e:
            raise self._wrap("status fetch", provider_id, e) from e

        order_status = order.get("status")
        mapped = map_native_status(RAZORPAY_ORDER_STATUS_MAP, order_status, self.name)
        payload: Dict[str, Any] = {"razorpay_order_id": provider_id, "razorpay_status": order_status}
        if best is not None:
            payload["razorpay_latest_attempt"] = best.get("id")
        return StatusResult(
            provider_id=provider_id,
            message=f"Razorpay order status: {order_status}. No successful payment captured yet.",
            provider_payload=payload,
            **status_fields(mapped),
        )

    def refund(self, provider_id: str, amount: Optional[Decimal] = None) -> RefundResult:
        payment_id = provider_id
        if self.is_intermediate_id(provider_id):
            logger.warning(f"Resolving Razorpay payment id for order {provider_id} before refund")
            payment_id = self.query_status(provider_id).provider_id
            if self.is_intermediate_id(payment_id):
                raise NotRefundable(
                    f"Cannot refund: no settled Razorpay payment found for order {provider_id}",
                    gateway_name=self.name,
                )

        try:
            payment = self._client.payment.fetch(payment_id)
        except RAZORPAY_ERRORS as e:
            raise self._wrap("status fetch", payment_id, e) from e

        current = map_payment_status(payment).status
        if current not in REFUNDABLE_STATUSES:
            raise NotRefundable(
                f"Razorpay payment {payment_id} is not in a refundable state "
                f"(current status: {current.value})",
                gateway_name=self.name,
            )
        captured = int(payment.get("amount") or 0)
        already_refunded = int(payment.get("amount_refunded") or 0)
        to_refund = self.check_refund_amount(amount, from_minor_units(captured - already_refunded))

        try:
            refund = self._client.payment.refund(payment_id, {"amount": to_minor_units(to_refund)})
        except RAZORPAY_ERRORS as e:
            raise self._wrap("refund", payment_id, e) from e

        outcome = map_native_status(RAZORPAY_REFUND_STATUS_MAP, refund.get("status"), self.name)
        status = outcome.status
        if status is PaymentStatus.REFUNDED and already_refunded + to_minor_units(to_refund) < captured:
            status = PaymentStatus.PARTIALLY_REFUNDED
        logger.info(
            f"Razorpay refund initiated for payment {payment_id}. "
            f"Refund ID: {refund.get('id')}, Status: {refund.get('status')}"
        )
        return RefundResult(
            refund_id=refund.get("id"),
            provider_id=payment_id,
            status=status,
            amount=to_refund,
            native_status=outcome.native,
            message=f"Refund request processed by Razorpay. Current refund status: {refund.get('status')}",
            provider_payload={
                "razorpay_payment_id": payment_id,
                "razorpay_refund_id": refund.get("id"),
                "razorpay_refund_status": refund.get("status"),
            },
        )
