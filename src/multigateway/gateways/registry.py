"""Adapter registry: provider name -> adapter, built once at startup."""

import logging
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Optional

from ..config import Settings, is_placeholder
from ..errors import NoGatewayConfigured, UnsupportedGateway
from .base import GatewayAdapter, UnavailableGateway
from .razorpay_gateway import RazorpayGateway
from .simulator_gateway import SimulatorGateway
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


def _build_stripe(settings: Settings) -> GatewayAdapter:
    if is_placeholder(settings.stripe_secret_key):
        return UnavailableGateway("stripe", "Stripe API key is not configured or is a placeholder")
    return StripeGateway(api_key=settings.stripe_secret_key)


def _build_razorpay(settings: Settings) -> GatewayAdapter:
    if is_placeholder(settings.razorpay_key_id) or is_placeholder(settings.razorpay_key_secret):
        return UnavailableGateway(
            "razorpay", "Razorpay key id or secret is not configured or is a placeholder"
        )
    return RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret)


def _build_simulator(settings: Settings) -> GatewayAdapter:
    return SimulatorGateway()


BUILDERS: Dict[str, Callable[[Settings], GatewayAdapter]] = {
    "stripe": _build_stripe,
    "razorpay": _build_razorpay,
    "simulator": _build_simulator,
}


def build_adapter(name: str, settings: Settings) -> GatewayAdapter:
    """Build the adapter for ``name``: a ready adapter or an UnavailableGateway marker."""
    builder = BUILDERS.get(name.lower())
    if builder is None:
        raise UnsupportedGateway(f"Unknown payment gateway in configuration: {name}")
    try:
        adapter = builder(settings)
    except Exception as e:
        logger.error(f"Error initializing {name} client: {e}", exc_info=True)
        return UnavailableGateway(name.lower(), f"client initialization failed: {e}")
    if not adapter.available:
        logger.warning(f"{name} gateway will not be available: {getattr(adapter, 'reason', 'unknown')}")
    return adapter


class GatewayRegistry:
    """
    Read-only lookup of adapters keyed by lower-cased provider name.

    Default policy when no gateway is requested: the first *available* adapter in
    registration (configuration) order; if none is available, the first registered
    one, so the caller gets a GatewayUnavailable rather than a misleading answer.
    """

    def __init__(self, adapters: Iterable[GatewayAdapter]):
        ordered: Dict[str, GatewayAdapter] = {}
        for adapter in adapters:
            key = adapter.name.lower()
            if key in ordered:
                raise ValueError(f"Duplicate gateway registration: {key}")
            ordered[key] = adapter
        self._adapters = MappingProxyType(ordered)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayRegistry":
        return cls(build_adapter(name, settings) for name in settings.gateway_names)

    @property
    def names(self) -> List[str]:
        return list(self._adapters)

    def get(self, name: str) -> Optional[GatewayAdapter]:
        return self._adapters.get((name or "").strip().lower())

    def resolve(self, preferred_name: Optional[str] = None) -> GatewayAdapter:
        if preferred_name and preferred_name.strip():
            adapter = self.get(preferred_name)
            if adapter is None:
                raise UnsupportedGateway(
                    f"Invalid or unsupported payment gateway specified: {preferred_name}",
                    gateway_name=preferred_name,
                )
            return adapter
        return self.default()

    def default(self) -> GatewayAdapter:
        if not self._adapters:
            raise NoGatewayConfigured("No payment gateway is configured")
        for adapter in self._adapters.values():
            if adapter.available:
                return adapter
        return next(iter(self._adapters.values()))

    def health(self) -> Dict[str, Dict]:
        return {name: adapter.health_check() for name, adapter in self._adapters.items()}
