"""Tests for StripeGateway."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from multigateway.errors import ErrorCode, GatewayCommunicationError, InvalidAmount, InvalidRequest, NotRefundable
from multigateway.gateways import StripeGateway
from multigateway.status import PaymentStatus


class TestStripeGatewayInit:
    """Tests for StripeGateway initialization."""

    def test_init_with_api_key(self):
        gateway = StripeGateway(api_key="sk_test_key")
        assert gateway._api_key == "sk_test_key"
        assert gateway.name == "stripe"
        assert gateway.available

    def test_init_without_api_key_raises(self):
        with pytest.raises(ValueError):
            StripeGateway(api_key="")

    def test_payment_intent_id_is_final(self):
        gateway = StripeGateway(api_key="sk_test_key")
        assert not gateway.is_intermediate_id("pi_3OabcDEF123")


class TestStripeGatewayInitiate:
    """Tests for StripeGateway.initiate."""

    @pytest.fixture
    def gateway(self):
        return StripeGateway(api_key="sk_test_key")

    def test_initiate_requires_client_action(self, gateway, make_stripe_intent):
        with patch("stripe.PaymentIntent.create", return_value=make_stripe_intent()) as create:
            result = gateway.initiate(Decimal("100.00"), "USD", None, {}, "internal-1")

        assert result.provider_id == "pi_3OabcDEF123"
        assert result.status is PaymentStatus.PENDING_USER_ACTION
        assert result.native_status == "requires_payment_method"
        assert result.provider_payload["stripe_client_secret"] == "pi_3OabcDEF123_secret_xyz"
        kwargs = create.call_args.kwargs
        assert kwargs["amount"] == 10000
        assert kwargs["currency"] == "usd"
        assert kwargs["payment_method_types"] == ["card"]
        assert kwargs["metadata"] == {"internal_id": "internal-1"}
        assert kwargs["confirm"] is False
        assert kwargs["api_key"] == "sk_test_key"

    def test_initiate_confirms_with_payment_method_id(self, gateway, make_stripe_intent):
        intent = make_stripe_intent(status="succeeded", amount_received=10000)
        with patch("stripe.PaymentIntent.create", return_value=intent) as create:
            result = gateway.initiate(
                Decimal("100.00"), "USD", "card", {"payment_method_id": "pm_card_visa"}
            )

        assert result.status is PaymentStatus.SUCCESS
        kwargs = create.call_args.kwargs
        assert kwargs["payment_method"] == "pm_card_visa"
        assert kwargs["confirm"] is True

    def test_initiate_card_declined(self, gateway):
        error = stripe.CardError("Your card was declined.", None, "card_declined")
        with patch("stripe.PaymentIntent.create", side_effect=error):
            with pytest.raises(GatewayCommunicationError) as exc_info:
                gateway.initiate(Decimal("10.00"), "USD")

        assert exc_info.value.declined
        assert exc_info.value.__cause__ is error
        assert exc_info.value.gateway_name == "stripe"

    def test_initiate_connection_error_is_not_a_decline(self, gateway):
        with patch("stripe.PaymentIntent.create", side_effect=stripe.APIConnectionError("Network down")):
            with pytest.raises(GatewayCommunicationError) as exc_info:
                gateway.initiate(Decimal("10.00"), "USD")

        assert not exc_info.value.declined

    def test_initiate_rejects_non_positive_amount(self, gateway):
        with patch("stripe.PaymentIntent.create") as create:
            with pytest.raises(InvalidAmount):
                gateway.initiate(Decimal("0"), "USD")
        create.assert_not_called()

    def test_initiate_rejects_bad_currency(self, gateway):
        with patch("stripe.PaymentIntent.create") as create:
            with pytest.raises(InvalidRequest) as excinfo:
                gateway.initiate(Decimal("1.00"), "US")
        assert excinfo.value.code is ErrorCode.VALIDATION_ERROR
        create.assert_not_called()


class TestStripeGatewayQueryStatus:
    """Tests for StripeGateway.query_status."""

    @pytest.fixture
    def gateway(self):
        return StripeGateway(api_key="sk_test_key")

    @pytest.mark.parametrize("native,expected", [
        ("requires_action", PaymentStatus.PENDING_USER_ACTION),
        ("processing", PaymentStatus.PENDING),
        ("requires_capture", PaymentStatus.AUTHORIZED),
        ("succeeded", PaymentStatus.SUCCESS),
        ("canceled", PaymentStatus.CANCELED),
    ])
    def test_query_status_maps_native_status(self, gateway, make_stripe_intent, native, expected):
        with patch("stripe.PaymentIntent.retrieve", return_value=make_stripe_intent(status=native)) as retrieve:
            result = gateway.query_status("pi_3OabcDEF123")

        assert result.status is expected
        assert result.provider_id == "pi_3OabcDEF123"
        assert retrieve.call_args.kwargs["expand"] == ["latest_charge"]

    def test_query_status_partially_refunded(self, gateway, make_stripe_intent):
        intent = make_stripe_intent(status="succeeded", amount_received=10000, amount_refunded=4000)
        with patch("stripe.PaymentIntent.retrieve", return_value=intent):
            result = gateway.query_status("pi_3OabcDEF123")
        assert result.status is PaymentStatus.PARTIALLY_REFUNDED
        assert result.refunded_amount == Decimal("40.00")

    def test_query_status_fully_refunded(self, gateway, make_stripe_intent):
        intent = make_stripe_intent(status="succeeded", amount_received=10000, amount_refunded=10000)
        with patch("stripe.PaymentIntent.retrieve", return_value=intent):
            result = gateway.query_status("pi_3OabcDEF123")
        assert result.status is PaymentStatus.REFUNDED
        assert result.refunded_amount == Decimal("100.00")

    def test_query_status_unknown_native_status(self, gateway, make_stripe_intent):
        with patch("stripe.PaymentIntent.retrieve", return_value=make_stripe_intent(status="on_hold")):
            result = gateway.query_status("pi_3OabcDEF123")
        assert result.status is PaymentStatus.UNKNOWN
        assert result.native_status == "on_hold"

    def test_query_status_api_error(self, gateway):
        with patch("stripe.PaymentIntent.retrieve", side_effect=stripe.APIError("Server error")):
            with pytest.raises(GatewayCommunicationError):
                gateway.query_status("pi_3OabcDEF123")


class TestStripeGatewayRefund:
    """Tests for StripeGateway.refund."""

    @pytest.fixture
    def gateway(self):
        return StripeGateway(api_key="sk_test_key")

    @pytest.fixture
    def succeeded_intent(self, make_stripe_intent):
        return make_stripe_intent(status="succeeded", amount_received=10000, amount_refunded=0)

    def test_partial_refund(self, gateway, succeeded_intent, stripe_refund):
        with patch("stripe.PaymentIntent.retrieve", return_value=succeeded_intent), \
             patch("stripe.Refund.create", return_value=stripe_refund) as create:
            result = gateway.refund("pi_3OabcDEF123", Decimal("40.00"))

        assert result.status is PaymentStatus.PARTIALLY_REFUNDED
        assert result.amount == Decimal("40.00")
        assert result.refund_id == "re_3OabcDEF123"
        assert create.call_args.kwargs["amount"] == 4000
        assert create.call_args.kwargs["payment_intent"] == "pi_3OabcDEF123"

    def test_full_refund_when_amount_absent(self, gateway, succeeded_intent, stripe_refund):
        with patch("stripe.PaymentIntent.retrieve", return_value=succeeded_intent), \
             patch("stripe.Refund.create", return_value=stripe_refund) as create:
            result = gateway.refund("pi_3OabcDEF123")

        assert result.status is PaymentStatus.REFUNDED
        assert result.amount == Decimal("100.00")
        assert create.call_args.kwargs["amount"] == 10000

    def test_refund_remaining_after_partial(self, gateway, make_stripe_intent, stripe_refund):
        intent = make_stripe_intent(status="succeeded", amount_received=10000, amount_refunded=4000)
        with patch("stripe.PaymentIntent.retrieve", return_value=intent), \
             patch("stripe.Refund.create", return_value=stripe_refund):
            result = gateway.refund("pi_3OabcDEF123", Decimal("60.00"))
        assert result.status is PaymentStatus.REFUNDED

    def test_refund_exceeding_remaining(self, gateway, succeeded_intent):
        with patch("stripe.PaymentIntent.retrieve", return_value=succeeded_intent), \
             patch("stripe.Refund.create") as create:
            with pytest.raises(InvalidAmount):
                gateway.refund("pi_3OabcDEF123", Decimal("150.00"))
        create.assert_not_called()

    def test_refund_not_refundable(self, gateway, make_stripe_intent):
        with patch("stripe.PaymentIntent.retrieve", return_value=make_stripe_intent(status="requires_action")):
            with pytest.raises(NotRefundable):
                gateway.refund("pi_3OabcDEF123")

    def test_refund_failed_status(self, gateway, succeeded_intent):
        failed = SimpleNamespace(id="re_failed", status="failed")
        with patch("stripe.PaymentIntent.retrieve", return_value=succeeded_intent), \
             patch("stripe.Refund.create", return_value=failed):
            result = gateway.refund("pi_3OabcDEF123", Decimal("10.00"))
        assert result.status is PaymentStatus.REFUND_FAILED

    def test_refund_api_error(self, gateway, succeeded_intent):
        with patch("stripe.PaymentIntent.retrieve", return_value=succeeded_intent), \
             patch("stripe.Refund.create", side_effect=stripe.InvalidRequestError("Charge already refunded", None)):
            with pytest.raises(GatewayCommunicationError) as exc_info:
                gateway.refund("pi_3OabcDEF123", Decimal("10.00"))
        assert exc_info.value.declined
