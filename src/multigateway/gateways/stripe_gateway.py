import logging
from decimal import Decimal
from typing import Dict, Any, Optional

import stripe

from ..errors import GatewayCommunicationError, NotRefundable
from ..status import PaymentStatus, REFUNDABLE_STATUSES, map_native_status
from .base import (
    GatewayAdapter,
    InitiateResult,
    RefundResult,
    StatusResult,
    from_minor_units,
    status_fields,
    to_minor_units,
)

logger = logging.getLogger(__name__)

# PaymentIntent.status -> canonical status
STRIPE_STATUS_MAP: Dict[str, PaymentStatus] = {
    "requires_payment_method": PaymentStatus.PENDING_USER_ACTION,
    "requires_confirmation": PaymentStatus.PENDING_USER_ACTION,
    "requires_action": PaymentStatus.PENDING_USER_ACTION,
    "processing": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.AUTHORIZED,
    "succeeded": PaymentStatus.SUCCESS,
    "canceled": PaymentStatus.CANCELED,
}

# Refund.status -> canonical status; REFUNDED means "accepted" and is refined
# to PARTIALLY_REFUNDED when money remains on the charge.
STRIPE_REFUND_STATUS_MAP: Dict[str, PaymentStatus] = {
    "succeeded": PaymentStatus.REFUNDED,
    "pending": PaymentStatus.REFUNDED,
    "requires_action": PaymentStatus.REFUNDED,
    "failed": PaymentStatus.REFUND_FAILED,
    "canceled": PaymentStatus.REFUND_FAILED,
}

# Errors where Stripe definitively rejected the request.
DECLINE_ERRORS = (stripe.CardError, stripe.InvalidRequestError)


def refine_refund_state(status: PaymentStatus, received: int, refunded: int) -> PaymentStatus:
    """Fold the charge's refunded total into a succeeded intent's status."""
    if status is PaymentStatus.SUCCESS and refunded > 0:
        return PaymentStatus.REFUNDED if refunded >= received else PaymentStatus.PARTIALLY_REFUNDED
    return status


class StripeGateway(GatewayAdapter):
    """
    Stripe adapter built on PaymentIntents. The PaymentIntent id is used as the
    provider id for the whole lifecycle; it is never an intermediate id.
    """

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("Stripe secret key must be provided")
        self._api_key = api_key
        logger.info("Stripe client initialized successfully.")

    @property
    def name(self) -> str:
        return "stripe"

    def _wrap(self, action: str, provider_id: Optional[str], e: stripe.StripeError) -> GatewayCommunicationError:
        logger.error(f"Stripe API error during {action} for {provider_id or 'new intent'}: {e}")
        return GatewayCommunicationError(
            f"Stripe {action} failed: {getattr(e, 'user_message', None) or e}",
            cause=e,
            declined=isinstance(e, DECLINE_ERRORS),
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
        details = details or {}
        params: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": currency_code.lower(),
            "payment_method_types": [payment_method or "card"],
            "metadata": {"internal_id": reference} if reference else {},
        }
        payment_method_id = details.get("payment_method_id")
        if payment_method_id:
            params["payment_method"] = payment_method_id
            params["confirm"] = True
        else:
            # client confirms with the client_secret
            params["confirm"] = False
        if details.get("description"):
            params["description"] = details["description"]

        try:
            pi = stripe.PaymentIntent.create(api_key=self._api_key, **params)
        except stripe.StripeError as e:
            raise self._wrap("payment", None, e) from e

        mapped = map_native_status(STRIPE_STATUS_MAP, pi.status, self.name)
        logger.info(f"Stripe PaymentIntent created: {pi.id} for reference {reference} ({pi.status})")
        if mapped.status is PaymentStatus.PENDING_USER_ACTION:
            message = "Stripe PaymentIntent created. Client action required using client_secret."
        elif mapped.status is PaymentStatus.SUCCESS:
            message = "Stripe payment processed successfully."
        else:
            message = f"Stripe PaymentIntent created. Status: {pi.status}"
        return InitiateResult(
            provider_id=pi.id,
            message=message,
            provider_payload=self._payload(pi),
            **status_fields(mapped),
        )

    def _retrieve(self, provider_id: str):
        try:
            return stripe.PaymentIntent.retrieve(
                provider_id, api_key=self._api_key, expand=["latest_charge"]
            )
        except stripe.StripeError as e:
            raise self._wrap("status fetch", provider_id, e) from e

    @staticmethod
    def _amounts(pi) -> tuple[int, int]:
        """Return (amount received, amount refunded) in minor units."""
        received = int(getattr(pi, "amount_received", None) or getattr(pi, "amount", 0) or 0)
        charge = getattr(pi, "latest_charge", None)
        if charge is None or isinstance(charge, str):
            return received, 0
        return received, int(getattr(charge, "amount_refunded", 0) or 0)

    def _payload(self, pi) -> Dict[str, Any]:
        payload = {"stripe_payment_intent_id": pi.id, "stripe_status": pi.status}
        client_secret = getattr(pi, "client_secret", None)
        if client_secret:
            payload["stripe_client_secret"] = client_secret
        return payload

    def query_status(self, provider_id: str) -> StatusResult:
        pi = self._retrieve(provider_id)
        mapped = map_native_status(STRIPE_STATUS_MAP, pi.status, self.name)
        received, refunded = self._amounts(pi)
        status = refine_refund_state(mapped.status, received, refunded)
        logger.info(f"Stripe PaymentIntent {provider_id} status: {pi.status}")
        return StatusResult(
            provider_id=pi.id,
            status=status,
            native_status=mapped.native,
            message=f"Payment status retrieved successfully from Stripe: {pi.status}",
            provider_payload=self._payload(pi),
            refunded_amount=from_minor_units(refunded),
        )

    def refund(self, provider_id: str, amount: Optional[Decimal] = None) -> RefundResult:
        pi = self._retrieve(provider_id)
        mapped = map_native_status(STRIPE_STATUS_MAP, pi.status, self.name)
        received, refunded = self._amounts(pi)
        current = refine_refund_state(mapped.status, received, refunded)
        if current not in REFUNDABLE_STATUSES:
            raise NotRefundable(
                f"Stripe PaymentIntent {provider_id} is not in a refundable state "
                f"(current status: {current.value})",
                gateway_name=self.name,
            )
        to_refund = self.check_refund_amount(amount, from_minor_units(received - refunded))

        try:
            r = stripe.Refund.create(
                payment_intent=provider_id,
                amount=to_minor_units(to_refund),
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            raise self._wrap("refund", provider_id, e) from e

        outcome = map_native_status(STRIPE_REFUND_STATUS_MAP, r.status, self.name)
        status = outcome.status
        if status is PaymentStatus.REFUNDED and refunded + to_minor_units(to_refund) < received:
            status = PaymentStatus.PARTIALLY_REFUNDED
        logger.info(f"Stripe refund initiated for PaymentIntent {provider_id}. Refund ID: {r.id}, Status: {r.status}")
        return RefundResult(
            refund_id=r.id,
            provider_id=provider_id,
            status=status,
            amount=to_refund,
            native_status=outcome.native,
            message=f"Refund request processed by Stripe. Current refund status: {r.status}",
            provider_payload={"stripe_refund_id": r.id, "stripe_refund_status": r.status},
        )
