"""Shared test fixtures and configuration."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from multigateway.database import DatabaseManager, SqlAlchemyTransactionStore
from multigateway.gateways import GatewayRegistry, SimulatorConfig, SimulatorGateway
from multigateway.orchestrator import InitiateIntent, PaymentOrchestrator

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Database fixtures
@pytest.fixture
async def db_manager():
    """In-memory SQLite database with tables created."""
    manager = DatabaseManager(TEST_DATABASE_URL)
    await manager.initialize()
    yield manager
    await manager.shutdown()


@pytest.fixture
async def store(db_manager):
    return SqlAlchemyTransactionStore(db_manager)


# Gateway fixtures
@pytest.fixture
def simulator():
    return SimulatorGateway()


@pytest.fixture
def registry(simulator):
    return GatewayRegistry([simulator])


@pytest.fixture
async def orchestrator(registry, store):
    return PaymentOrchestrator(registry, store, timeout_seconds=2.0)


@pytest.fixture
def initiate_intent():
    """A $100.00 USD payment through the simulator."""
    return InitiateIntent(
        amount=Decimal("100.00"),
        currency_code="usd",
        payment_method="card",
        preferred_gateway="simulator",
    )


@pytest.fixture
def slow_simulator():
    return SimulatorGateway(SimulatorConfig(delay_ms=300))


# Stripe object fixtures
def stripe_intent(
    status="requires_payment_method",
    amount=10000,
    amount_received=0,
    amount_refunded=None,
    intent_id="pi_3OabcDEF123",
):
    """Build a stand-in for a Stripe PaymentIntent."""
    charge = None
    if amount_refunded is not None:
        charge = SimpleNamespace(id="ch_3OabcDEF123", amount_refunded=amount_refunded)
    return SimpleNamespace(
        id=intent_id,
        status=status,
        amount=amount,
        amount_received=amount_received,
        latest_charge=charge,
        client_secret=f"{intent_id}_secret_xyz",
    )


@pytest.fixture
def make_stripe_intent():
    return stripe_intent


@pytest.fixture
def stripe_refund():
    return SimpleNamespace(id="re_3OabcDEF123", status="succeeded")
