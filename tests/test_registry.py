"""Tests for the adapter registry and adapter construction from settings."""

import pytest

from multigateway.config import Settings, is_placeholder
from multigateway.errors import GatewayUnavailable, NoGatewayConfigured, UnsupportedGateway
from multigateway.gateways import (
    GatewayRegistry,
    RazorpayGateway,
    SimulatorGateway,
    StripeGateway,
    UnavailableGateway,
    build_adapter,
)


def settings(**overrides):
    values = {"gateways": "stripe,razorpay", "stripe_secret_key": "", "razorpay_key_id": "", "razorpay_key_secret": ""}
    values.update(overrides)
    return Settings(**values)


class TestBuildAdapter:
    """Tests for build_adapter."""

    def test_placeholder_stripe_key_is_unavailable(self, caplog):
        adapter = build_adapter("stripe", settings(stripe_secret_key="sk_test_YOUR_STRIPE_SECRET_KEY"))

        assert isinstance(adapter, UnavailableGateway)
        assert not adapter.available
        assert "will not be available" in caplog.text

    def test_configured_stripe(self):
        adapter = build_adapter("Stripe", settings(stripe_secret_key="sk_test_real"))
        assert isinstance(adapter, StripeGateway)

    def test_configured_razorpay(self):
        adapter = build_adapter("razorpay", settings(razorpay_key_id="rzp_test_1", razorpay_key_secret="s3cr3t"))
        assert isinstance(adapter, RazorpayGateway)

    def test_partial_razorpay_credentials(self):
        adapter = build_adapter("razorpay", settings(razorpay_key_id="rzp_test_1"))
        assert isinstance(adapter, UnavailableGateway)

    def test_simulator_needs_no_credentials(self):
        assert isinstance(build_adapter("simulator", settings()), SimulatorGateway)

    def test_unknown_provider(self):
        with pytest.raises(UnsupportedGateway):
            build_adapter("paypal", settings())

    def test_unavailable_gateway_raises_on_every_call(self):
        adapter = UnavailableGateway("stripe", "no key")
        with pytest.raises(GatewayUnavailable):
            adapter.initiate(1, "USD")
        with pytest.raises(GatewayUnavailable):
            adapter.query_status("pi_1")
        with pytest.raises(GatewayUnavailable):
            adapter.refund("pi_1")
        assert adapter.health_check() == {"ok": False, "provider": "stripe", "reason": "no key"}

    @pytest.mark.parametrize("value", ["", "  ", "YOUR_RAZORPAY_KEY_ID", "YOUR_STRIPE_SECRET_KEY"])
    def test_placeholders(self, value):
        assert is_placeholder(value)


class TestGatewayRegistry:
    """Tests for GatewayRegistry lookups and the default policy."""

    def test_lookup_is_case_insensitive(self):
        simulator = SimulatorGateway()
        registry = GatewayRegistry([simulator])

        assert registry.resolve("SIMULATOR") is simulator
        assert registry.get(" Simulator ") is simulator

    def test_unknown_name(self):
        registry = GatewayRegistry([SimulatorGateway()])
        with pytest.raises(UnsupportedGateway):
            registry.resolve("stripe")

    def test_empty_registry(self):
        with pytest.raises(NoGatewayConfigured):
            GatewayRegistry([]).resolve(None)

    def test_default_is_first_available_in_order(self):
        simulator = SimulatorGateway()
        registry = GatewayRegistry([UnavailableGateway("stripe", "no key"), simulator])

        assert registry.resolve("") is simulator
        assert registry.default() is simulator

    def test_default_falls_back_to_first_registered(self):
        stripe = UnavailableGateway("stripe", "no key")
        registry = GatewayRegistry([stripe, UnavailableGateway("razorpay", "no key")])
        assert registry.resolve(None) is stripe

    def test_duplicate_registration(self):
        with pytest.raises(ValueError):
            GatewayRegistry([SimulatorGateway(), SimulatorGateway()])

    def test_from_settings_keeps_configuration_order(self):
        registry = GatewayRegistry.from_settings(settings(gateways="razorpay, Simulator ,stripe"))

        assert registry.names == ["razorpay", "simulator", "stripe"]
        assert registry.default().name == "simulator"

    def test_registry_is_read_only(self):
        registry = GatewayRegistry([SimulatorGateway()])
        with pytest.raises(TypeError):
            registry._adapters["stripe"] = SimulatorGateway()

    def test_health(self):
        registry = GatewayRegistry([UnavailableGateway("stripe", "no key"), SimulatorGateway()])
        health = registry.health()
        assert health["stripe"]["ok"] is False
        assert health["simulator"]["ok"] is True
